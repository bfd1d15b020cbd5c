# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# pv2hvm/ec2/api.py

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional

import boto3
from botocore.config import Config

from ..core.retry import retry_while
from .exceptions import is_throttled, wrap_ec2_throttled

LOG = logging.getLogger(__name__)


def make_ec2_client(region: str) -> Any:
    """
    EC2 client with botocore's own retries disabled; throttling is
    retried by Ec2Api.invoke() so jitter and logging stay in one place.
    """
    config = Config(
        region_name=region,
        retries={"max_attempts": 1, "mode": "standard"},
    )
    return boto3.client("ec2", config=config)


class Ec2Api:
    """
    Rate-limited invoker over a boto3 EC2 client.

    Every call goes through invoke(): throttling responses are absorbed with
    a random wait in [throttle_min_s, throttle_max_s] and retried; any other
    error propagates unmodified.
    """

    def __init__(
        self,
        client: Any,
        *,
        logger: Optional[logging.Logger] = None,
        throttle_min_s: float = 5.0,
        throttle_max_s: float = 15.0,
        max_throttle_retries: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.logger = logger or LOG
        self.throttle_min_s = throttle_min_s
        self.throttle_max_s = throttle_max_s
        self.max_throttle_retries = max_throttle_retries
        self._sleep = sleep

    @property
    def region(self) -> str:
        return str(getattr(getattr(self.client, "meta", None), "region_name", "") or "")

    def invoke(self, operation: str, **params: Any) -> Dict[str, Any]:
        fn = getattr(self.client, operation)
        self.logger.debug("EC2 %s %s", operation, params)
        try:
            return retry_while(
                lambda: fn(**params),
                should_retry=is_throttled,
                min_wait_s=self.throttle_min_s,
                max_wait_s=self.throttle_max_s,
                max_retries=self.max_throttle_retries,
                operation_name=operation,
                logger=self.logger,
                sleep=self._sleep,
            )
        except Exception as e:
            if is_throttled(e):
                raise wrap_ec2_throttled(
                    f"{operation} still rate limited after {self.max_throttle_retries} retries",
                    e,
                    operation=operation,
                )
            raise

    # ── Describe ─────────────────────────────────────────────────

    def describe_instance(self, instance_id: str) -> Optional[Dict[str, Any]]:
        resp = self.invoke("describe_instances", InstanceIds=[instance_id])
        for reservation in resp.get("Reservations") or []:
            for inst in reservation.get("Instances") or []:
                return inst
        return None

    def describe_image(self, image_id: str) -> Optional[Dict[str, Any]]:
        images = self.invoke("describe_images", ImageIds=[image_id]).get("Images") or []
        return images[0] if images else None

    def describe_volume(self, volume_id: str) -> Optional[Dict[str, Any]]:
        volumes = self.invoke("describe_volumes", VolumeIds=[volume_id]).get("Volumes") or []
        return volumes[0] if volumes else None

    def describe_snapshot(self, snapshot_id: str) -> Optional[Dict[str, Any]]:
        snaps = self.invoke("describe_snapshots", SnapshotIds=[snapshot_id]).get("Snapshots") or []
        return snaps[0] if snaps else None

    def device_names(self, instance_id: str) -> List[str]:
        inst = self.describe_instance(instance_id) or {}
        return [str(m.get("DeviceName") or "") for m in inst.get("BlockDeviceMappings") or []]

    def create_tags(self, resource_ids: List[str], tags: Dict[str, str]) -> None:
        self.invoke(
            "create_tags",
            Resources=list(resource_ids),
            Tags=[{"Key": k, "Value": v} for k, v in tags.items()],
        )

    # ── Images ───────────────────────────────────────────────────

    def create_image(self, *, instance_id: str, name: str, description: str, reboot: bool = True) -> Optional[str]:
        resp = self.invoke(
            "create_image",
            InstanceId=instance_id,
            Name=name,
            Description=description,
            NoReboot=not reboot,
        )
        return resp.get("ImageId")

    def register_image(self, **params: Any) -> Optional[str]:
        return self.invoke("register_image", **params).get("ImageId")

    def deregister_image(self, image_id: str) -> None:
        self.invoke("deregister_image", ImageId=image_id)

    # ── Volumes ──────────────────────────────────────────────────

    def create_volume(self, **params: Any) -> Optional[str]:
        return self.invoke("create_volume", **params).get("VolumeId")

    def attach_volume(self, *, volume_id: str, instance_id: str, device: str) -> None:
        self.invoke("attach_volume", VolumeId=volume_id, InstanceId=instance_id, Device=device)

    def detach_volume(self, volume_id: str) -> None:
        self.invoke("detach_volume", VolumeId=volume_id)

    def delete_volume(self, volume_id: str) -> None:
        self.invoke("delete_volume", VolumeId=volume_id)

    # ── Snapshots ────────────────────────────────────────────────

    def create_snapshot(self, *, volume_id: str, description: str) -> Optional[str]:
        return self.invoke("create_snapshot", VolumeId=volume_id, Description=description).get("SnapshotId")

    def copy_snapshot(self, *, source_snapshot_id: str, source_region: str, description: str) -> Optional[str]:
        resp = self.invoke(
            "copy_snapshot",
            SourceRegion=source_region,
            SourceSnapshotId=source_snapshot_id,
            Description=description,
        )
        return resp.get("SnapshotId")

    def delete_snapshot(self, snapshot_id: str) -> None:
        self.invoke("delete_snapshot", SnapshotId=snapshot_id)
