# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# pv2hvm/ec2/mapping.py

from __future__ import annotations

import re
from typing import Any, Dict, Iterable, List, Optional

from ..core.exceptions import wrap_validation
from .models import VolumeDescriptor

# PV images expose their root disk as /dev/sda1 or /dev/xvde*.
ROOT_DEVICE_RE = re.compile(r"sda|xvde")

DEFAULT_ROOT_DEVICE_NAME = "/dev/sda1"


def _int_or_none(v: Any) -> Optional[int]:
    if v is None or v == "":
        return None
    try:
        return int(v)
    except (TypeError, ValueError):
        return None


def parse_block_devices(image: Dict[str, Any]) -> List[VolumeDescriptor]:
    """
    Turn an image's BlockDeviceMappings into VolumeDescriptors.

    Instance-store (ephemeral) mappings carry no Ebs block and are skipped.
    The first device matching the PV root pattern becomes root; every other
    EBS device is a data volume numbered in discovery order. A provisioned
    IOPS device without an Iops value is rejected here, since EC2 would
    refuse both the volume and the registration later.
    """
    out: List[VolumeDescriptor] = []
    seq = 0
    have_root = False
    for m in image.get("BlockDeviceMappings") or []:
        ebs = m.get("Ebs")
        device = str(m.get("DeviceName") or "")
        if not ebs or not device:
            continue
        volume_type = str(ebs.get("VolumeType") or "standard")
        is_root = not have_root and bool(ROOT_DEVICE_RE.search(device))
        desc = VolumeDescriptor(
            device_name=device,
            snapshot_id=str(ebs.get("SnapshotId") or ""),
            size_gb=_int_or_none(ebs.get("VolumeSize")) or 0,
            volume_type=volume_type,
            iops=_int_or_none(ebs.get("Iops")),
            is_root=is_root,
            sequence=0 if is_root else seq,
        )
        if desc.needs_iops and desc.iops is None:
            raise wrap_validation(
                f"{device} is {volume_type} but the image carries no Iops for it",
                device=device,
                snapshot_id=desc.snapshot_id,
            )
        if is_root:
            have_root = True
        else:
            seq += 1
        out.append(desc)
    return out


def image_snapshot_ids(image: Dict[str, Any]) -> List[str]:
    """Snapshot ids backing an image's EBS mappings, in mapping order."""
    ids = []
    for m in image.get("BlockDeviceMappings") or []:
        snap = (m.get("Ebs") or {}).get("SnapshotId")
        if snap:
            ids.append(str(snap))
    return ids


def root_descriptor(descriptors: Iterable[VolumeDescriptor]) -> Optional[VolumeDescriptor]:
    for d in descriptors:
        if d.is_root:
            return d
    return None


def data_descriptors(descriptors: Iterable[VolumeDescriptor]) -> List[VolumeDescriptor]:
    return sorted((d for d in descriptors if not d.is_root), key=lambda d: d.sequence)


def _with_iops(params: Dict[str, Any], desc: VolumeDescriptor, key: str = "Iops") -> Dict[str, Any]:
    # Iops must be absent, not zero/empty, for non-provisioned volume types.
    if desc.needs_iops and desc.iops is not None:
        params[key] = int(desc.iops)
    return params


def create_volume_params(
    desc: VolumeDescriptor,
    *,
    availability_zone: str,
    from_snapshot: bool = True,
    tags: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """Keyword arguments for ec2.create_volume() cloned from desc."""
    params: Dict[str, Any] = {
        "AvailabilityZone": availability_zone,
        "Size": int(desc.size_gb),
        "VolumeType": desc.volume_type,
    }
    if from_snapshot:
        params["SnapshotId"] = desc.snapshot_id
    _with_iops(params, desc)
    if tags:
        params["TagSpecifications"] = [
            {"ResourceType": "volume", "Tags": [{"Key": k, "Value": v} for k, v in tags.items()]}
        ]
    return params


def mapping_entry(desc: VolumeDescriptor, snapshot_id: str, *, device_name: Optional[str] = None) -> Dict[str, Any]:
    """One BlockDeviceMappings element for register_image()."""
    ebs: Dict[str, Any] = {
        "SnapshotId": snapshot_id,
        "VolumeSize": int(desc.size_gb),
        "VolumeType": desc.volume_type,
    }
    _with_iops(ebs, desc)
    return {"DeviceName": device_name or desc.device_name, "Ebs": ebs}


def root_mapping_entry(
    desc: VolumeDescriptor,
    snapshot_id: str,
    root_device_name: str = DEFAULT_ROOT_DEVICE_NAME,
) -> Dict[str, Any]:
    """The root entry is always normalized to the primary boot slot."""
    return mapping_entry(desc, snapshot_id, device_name=root_device_name)


def device_letter(device: str) -> str:
    """'/dev/sdp' -> 'p', '/dev/xvdh' -> 'h'."""
    m = re.match(r"^/dev/(?:sd|xvd)([a-z]+)\d*$", device or "")
    if not m:
        raise ValueError(f"unsupported device name {device!r}, expected /dev/sdX or /dev/xvdX")
    return m.group(1)


def slot_aliases(device: str) -> List[str]:
    """Both naming schemes under which the same attachment slot may appear."""
    letter = device_letter(device)
    return [f"/dev/sd{letter}", f"/dev/xvd{letter}"]


def slot_occupied(device: str, mapped_device_names: Iterable[str]) -> bool:
    """
    True when any existing mapping uses the slot of device, under either
    naming scheme and with or without a partition suffix.
    """
    aliases = slot_aliases(device)
    for name in mapped_device_names:
        for alias in aliases:
            if name == alias or (name.startswith(alias) and name[len(alias):].isdigit()):
                return True
    return False
