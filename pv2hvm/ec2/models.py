# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# pv2hvm/ec2/models.py

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

# Volume types whose create/register requests carry an explicit Iops value.
PROVISIONED_IOPS_TYPES = frozenset({"io1", "io2"})


class ResourceKind(str, Enum):
    IMAGE = "image"
    VOLUME = "volume"
    SNAPSHOT = "snapshot"


class ResourceRole(str, Enum):
    TEMP_IMAGE = "temp-image"
    TEMP_IMAGE_SNAPSHOT = "temp-image-snapshot"
    SOURCE_ROOT_VOLUME = "source-root-volume"
    DEST_ROOT_VOLUME = "destination-root-volume"
    DEST_ROOT_SNAPSHOT = "destination-root-snapshot"
    AUXILIARY_SNAPSHOT = "auxiliary-snapshot"
    DEST_IMAGE = "destination-image"


@dataclass(frozen=True)
class ResourceRef:
    kind: ResourceKind
    id: str
    role: ResourceRole

    def __str__(self) -> str:
        return f"{self.role.value}:{self.id}"


@dataclass(frozen=True)
class VolumeDescriptor:
    device_name: str
    snapshot_id: str
    size_gb: int
    volume_type: str
    iops: Optional[int] = None
    is_root: bool = False
    sequence: int = 0   # data volumes: 0..n-1 in discovery order

    @property
    def needs_iops(self) -> bool:
        return self.volume_type in PROVISIONED_IOPS_TYPES

    @property
    def label(self) -> str:
        return "root" if self.is_root else f"vol{self.sequence}"


@dataclass
class PollResult:
    ok: bool
    state: str
    reason: Optional[str] = None

    @staticmethod
    def success(state: str) -> "PollResult":
        return PollResult(ok=True, state=state)

    @staticmethod
    def failure(state: str, reason: Optional[str] = None) -> "PollResult":
        return PollResult(ok=False, state=state, reason=reason)

    def describe(self) -> str:
        if self.reason:
            return f"state={self.state} reason={self.reason}"
        return f"state={self.state}"


@dataclass
class CleanupReport:
    reclaimed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.failed

    def to_jsonable(self) -> Dict[str, Any]:
        return asdict(self)
