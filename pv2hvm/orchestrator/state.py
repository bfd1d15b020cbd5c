# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# pv2hvm/orchestrator/state.py

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..core.exceptions import ExitCode, Pv2HvmError
from ..ec2.ledger import ResourceLedger
from ..ec2.models import CleanupReport, VolumeDescriptor
from ..transform.collaborator import SourceGeometry


class Stage(Enum):
    INIT = "Init"
    SOURCE_PREFLIGHT = "SourcePreflight"
    CAPTURE_SOURCE_IMAGE = "CaptureSourceImage"
    DISCOVER_VOLUMES = "DiscoverVolumes"
    PROVISION_SOURCE_ROOT_VOLUME = "ProvisionSourceRootVolume"
    ATTACH_SOURCE_ROOT_VOLUME = "AttachSourceRootVolume"
    HANDOFF_TO_DISK_TRANSFORM = "HandoffToDiskTransform"
    PROVISION_DEST_ROOT_VOLUME = "ProvisionDestRootVolume"
    ATTACH_DEST_ROOT_VOLUME = "AttachDestRootVolume"
    HANDOFF_TO_DISK_PARTITION_AND_COPY = "HandoffToDiskPartitionAndCopy"
    CAPTURE_DEST_SNAPSHOT = "CaptureDestSnapshot"
    COPY_AUXILIARY_SNAPSHOTS = "CopyAuxiliarySnapshots"
    REGISTER_DESTINATION_IMAGE = "RegisterDestinationImage"
    CLEANUP = "Cleanup"
    DONE = "Done"

    @property
    def order(self) -> int:
        return _STAGE_ORDER[self]


_STAGE_ORDER = {s: i for i, s in enumerate(Stage)}


class Outcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED_BEFORE_RESOURCES = "failed-before-resources"
    FAILED_WITH_CLEANUP = "failed-with-cleanup"

    @property
    def exit_code(self) -> int:
        return {
            Outcome.SUCCEEDED: ExitCode.OK,
            Outcome.FAILED_BEFORE_RESOURCES: ExitCode.FAILED_BEFORE_RESOURCES,
            Outcome.FAILED_WITH_CLEANUP: ExitCode.FAILED_WITH_CLEANUP,
        }[self]


class StageRegression(RuntimeError):
    """A stage transition tried to move backwards."""


@dataclass
class AuxiliaryFailure:
    """A data-volume snapshot copy that did not complete; the run goes on without it."""
    device_name: str
    source_snapshot_id: str
    reason: str
    snapshot_id: Optional[str] = None

    def to_jsonable(self) -> Dict[str, Any]:
        return {
            "device_name": self.device_name,
            "source_snapshot_id": self.source_snapshot_id,
            "snapshot_id": self.snapshot_id,
            "reason": self.reason,
        }


@dataclass
class MigrationState:
    """
    Everything one run knows. Mutated only by the orchestrator, never
    persisted; stage only moves forward.
    """
    source_instance_id: str
    working_instance_id: str
    ledger: ResourceLedger = field(default_factory=ResourceLedger)
    stage: Stage = Stage.INIT
    source_instance_state: Optional[str] = None
    temp_image_id: Optional[str] = None
    volumes: List[VolumeDescriptor] = field(default_factory=list)
    source_volume_id: Optional[str] = None
    destination_volume_id: Optional[str] = None
    source_device_path: Optional[str] = None
    destination_device_path: Optional[str] = None
    geometry: Optional[SourceGeometry] = None
    destination_snapshot_id: Optional[str] = None
    block_device_mapping: List[Dict[str, Any]] = field(default_factory=list)
    auxiliary_failures: List[AuxiliaryFailure] = field(default_factory=list)
    destination_image_id: Optional[str] = None

    def advance(self, stage: Stage) -> None:
        if stage.order < self.stage.order:
            raise StageRegression(f"stage cannot move from {self.stage.value} back to {stage.value}")
        self.stage = stage


@dataclass
class MigrationResult:
    outcome: Outcome
    stage: Stage
    destination_image_id: Optional[str] = None
    block_device_mapping: List[Dict[str, Any]] = field(default_factory=list)
    auxiliary_failures: List[AuxiliaryFailure] = field(default_factory=list)
    error: Optional[BaseException] = None
    failed_stage: Optional[Stage] = None
    cleanup: Optional[CleanupReport] = None

    @property
    def ok(self) -> bool:
        return self.outcome == Outcome.SUCCEEDED

    @property
    def exit_code(self) -> int:
        return int(self.outcome.exit_code)

    def to_jsonable(self) -> Dict[str, Any]:
        err: Optional[Dict[str, Any]] = None
        if isinstance(self.error, Pv2HvmError):
            err = self.error.to_dict(include_cause=True)
        elif self.error is not None:
            err = {"type": type(self.error).__name__, "message": str(self.error)}
        return {
            "outcome": self.outcome.value,
            "exit_code": self.exit_code,
            "stage": self.stage.value,
            "failed_stage": self.failed_stage.value if self.failed_stage else None,
            "destination_image_id": self.destination_image_id,
            "block_device_mapping": self.block_device_mapping,
            "auxiliary_failures": [f.to_jsonable() for f in self.auxiliary_failures],
            "cleanup": self.cleanup.to_jsonable() if self.cleanup else None,
            "error": err,
        }
