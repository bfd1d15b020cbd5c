# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# pv2hvm/orchestrator/workflow.py
"""
PV → HVM migration workflow.

A linear stage machine. Every stage either completes and the run moves on,
or raises; any failure jumps straight to Cleanup, which compensates
whatever the ledger holds. Cleanup runs exactly once per run; the
registered image and its snapshots survive only a run that completed.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from botocore.exceptions import ClientError

from ..config.loader import MigrationConfig
from ..core.exceptions import Pv2HvmError, wrap_collaborator, wrap_provisioning, wrap_validation
from ..core.logger import Log
from ..core.logging_utils import log_step
from ..core.utils import U
from ..ec2.api import Ec2Api
from ..ec2.cleanup import CompensationEngine, make_tags
from ..ec2.exceptions import error_code, error_message, is_not_found, wrap_ec2_api_error
from ..ec2.mapping import (
    create_volume_params,
    data_descriptors,
    image_snapshot_ids,
    mapping_entry,
    parse_block_devices,
    root_descriptor,
    root_mapping_entry,
    slot_occupied,
)
from ..ec2.models import PollResult, ResourceKind, ResourceRole, VolumeDescriptor
from ..ec2.poller import StatePoller
from ..transform.collaborator import DiskTransform
from ..transform.devices import resolve_device
from .state import AuxiliaryFailure, MigrationResult, MigrationState, Outcome, Stage

LOG = logging.getLogger(__name__)

StageFn = Callable[[MigrationState], None]


class MigrationOrchestrator:
    def __init__(
        self,
        api: Ec2Api,
        poller: StatePoller,
        transform: DiskTransform,
        config: MigrationConfig,
        *,
        logger: Optional[logging.Logger] = None,
        engine: Optional[CompensationEngine] = None,
        resolve: Callable[..., Optional[str]] = resolve_device,
        run_tag: Optional[str] = None,
    ):
        self.api = api
        self.poller = poller
        self.transform = transform
        self.config = config
        self.logger = logger or LOG
        self.engine = engine or CompensationEngine(api, poller, logger=self.logger, release=transform.release)
        self._resolve = resolve
        self.tags = make_tags(
            enable=config.tag_resources,
            run_tag=run_tag or U.now_ts(),
            source_instance_id=config.source_instance_id,
        )

    def _stages(self) -> List[Tuple[Stage, StageFn]]:
        return [
            (Stage.SOURCE_PREFLIGHT, self._source_preflight),
            (Stage.CAPTURE_SOURCE_IMAGE, self._capture_source_image),
            (Stage.DISCOVER_VOLUMES, self._discover_volumes),
            (Stage.PROVISION_SOURCE_ROOT_VOLUME, self._provision_source_root_volume),
            (Stage.ATTACH_SOURCE_ROOT_VOLUME, self._attach_source_root_volume),
            (Stage.HANDOFF_TO_DISK_TRANSFORM, self._handoff_to_disk_transform),
            (Stage.PROVISION_DEST_ROOT_VOLUME, self._provision_dest_root_volume),
            (Stage.ATTACH_DEST_ROOT_VOLUME, self._attach_dest_root_volume),
            (Stage.HANDOFF_TO_DISK_PARTITION_AND_COPY, self._handoff_to_disk_partition_and_copy),
            (Stage.CAPTURE_DEST_SNAPSHOT, self._capture_dest_snapshot),
            (Stage.COPY_AUXILIARY_SNAPSHOTS, self._copy_auxiliary_snapshots),
            (Stage.REGISTER_DESTINATION_IMAGE, self._register_destination_image),
        ]

    def run(self) -> MigrationResult:
        cfg = self.config
        state = MigrationState(
            source_instance_id=cfg.source_instance_id,
            working_instance_id=cfg.working_instance_id or "",
        )
        Log.banner(self.logger, f"pv2hvm {cfg.source_instance_id}")

        error: Optional[BaseException] = None
        failed_stage: Optional[Stage] = None
        report = None
        completed = False
        try:
            for stage, fn in self._stages():
                state.advance(stage)
                with log_step(self.logger, stage.value):
                    self._run_stage(stage, fn, state)
            completed = True
        except Exception as e:
            error = e
            failed_stage = state.stage
            Log.fail(self.logger, f"{state.stage.value} failed: {e}")
            self.logger.debug("💥 %s exception", state.stage.value, exc_info=True)
        finally:
            state.advance(Stage.CLEANUP)
            # An interrupted run has no deliverable either.
            report = self.engine.compensate(state.ledger, keep_deliverables=completed)
            state.advance(Stage.DONE)

        if error is None:
            outcome = Outcome.SUCCEEDED
        elif state.ledger:
            outcome = Outcome.FAILED_WITH_CLEANUP
        else:
            outcome = Outcome.FAILED_BEFORE_RESOURCES

        result = MigrationResult(
            outcome=outcome,
            stage=state.stage,
            destination_image_id=state.destination_image_id if completed else None,
            block_device_mapping=list(state.block_device_mapping),
            auxiliary_failures=list(state.auxiliary_failures),
            error=error,
            failed_stage=failed_stage,
            cleanup=report,
        )
        self._log_summary(state, result)
        return result

    def _run_stage(self, stage: Stage, fn: StageFn, state: MigrationState) -> None:
        try:
            fn(state)
        except Pv2HvmError:
            raise
        except ClientError as e:
            raise wrap_ec2_api_error(f"{stage.value}: {error_message(e)}", e, stage=stage.value)

    def _log_summary(self, state: MigrationState, result: MigrationResult) -> None:
        Log.banner(self.logger, "summary")
        for ref in state.ledger:
            self.logger.info("ledger: %s", ref)
        for failure in result.auxiliary_failures:
            Log.warn(
                self.logger,
                "auxiliary snapshot copy failed, manual cleanup needed",
                device=failure.device_name,
                source_snapshot=failure.source_snapshot_id,
                snapshot=failure.snapshot_id or "-",
            )
        if result.ok:
            Log.ok(self.logger, f"HVM image {result.destination_image_id} registered")
            self.logger.info("mapping: %s", mapping_summary(result.block_device_mapping))
        else:
            Log.fail(
                self.logger,
                f"migration of {state.source_instance_id} {result.outcome.value}",
                stage=result.failed_stage.value if result.failed_stage else "-",
                exit_code=result.exit_code,
            )

    # ── Helpers ──────────────────────────────────────────────────

    def _tag(self, resource_id: str) -> None:
        if not self.tags:
            return
        try:
            self.api.create_tags([resource_id], self.tags)
        except ClientError as e:
            self.logger.warning("tagging %s failed: %s", resource_id, error_message(e))

    @staticmethod
    def _require(res: PollResult, what: str, **context: Any) -> None:
        if not res.ok:
            raise wrap_provisioning(f"{what}: {res.describe()}", state=res.state, **context)

    @staticmethod
    def _root(state: MigrationState) -> VolumeDescriptor:
        root = root_descriptor(state.volumes)
        if root is None:
            raise wrap_validation("no root device discovered", image_id=state.temp_image_id)
        return root

    def _check_slot(self, device: str, state: MigrationState, attach_stage: Stage) -> None:
        """
        Refuse a slot the working instance already maps, under either naming
        scheme. The failure belongs to the attach stage even when found early.
        """
        mapped = self.api.device_names(state.working_instance_id)
        if slot_occupied(device, mapped):
            state.advance(attach_stage)
            raise wrap_provisioning(
                f"device {device} already in use on working instance {state.working_instance_id}",
                device=device,
                mapped=", ".join(mapped),
            )

    def _attach(self, volume_id: str, device: str, state: MigrationState, attach_stage: Stage) -> None:
        self._check_slot(device, state, attach_stage)
        self.logger.info("attaching %s to %s as %s", volume_id, state.working_instance_id, device)
        self.api.attach_volume(volume_id=volume_id, instance_id=state.working_instance_id, device=device)
        self._require(self.poller.wait_volume_attached(volume_id), f"volume {volume_id} did not attach", device=device)

    def _create_volume(
        self, state: MigrationState, root: VolumeDescriptor, role: ResourceRole, *, from_snapshot: bool
    ) -> str:
        params = create_volume_params(
            root,
            availability_zone=self.config.availability_zone or "",
            from_snapshot=from_snapshot,
            tags=self.tags or None,
        )
        volume_id = self.api.create_volume(**params)
        if not volume_id:
            raise wrap_provisioning("create_volume returned no volume id", role=role.value)
        self._record(state, ResourceKind.VOLUME, volume_id, role)
        self._require(self.poller.wait_volume_created(volume_id), f"volume {volume_id} was not created")
        return volume_id

    def _record(self, state: MigrationState, kind: ResourceKind, resource_id: str, role: ResourceRole) -> None:
        ref = state.ledger.add(kind, resource_id, role)
        self.logger.info("recorded %s", ref)

    # ── Stages ───────────────────────────────────────────────────

    def _source_preflight(self, state: MigrationState) -> None:
        if not state.working_instance_id:
            raise wrap_validation("working instance id is unknown")
        try:
            inst = self.api.describe_instance(state.source_instance_id)
        except ClientError as e:
            if is_not_found(e):
                raise wrap_validation(
                    f"source instance {state.source_instance_id} not found", e, error_code=error_code(e)
                )
            raise
        if inst is None:
            raise wrap_validation(f"source instance {state.source_instance_id} not found")

        virt = inst.get("VirtualizationType")
        if virt == "hvm":
            raise wrap_validation(
                f"source instance {state.source_instance_id} is already HVM", virtualization_type=virt
            )
        for pc in inst.get("ProductCodes") or []:
            if pc.get("ProductCodeType") == "marketplace":
                raise wrap_validation(
                    f"source instance {state.source_instance_id} carries a marketplace product code",
                    product_code=pc.get("ProductCodeId"),
                )

        state.source_instance_state = (inst.get("State") or {}).get("Name")
        Log.ok(
            self.logger,
            f"source instance {state.source_instance_id} is {virt or 'paravirtual'}",
            state=state.source_instance_state or "-",
        )

    def _capture_source_image(self, state: MigrationState) -> None:
        src = state.source_instance_id
        if state.source_instance_state != "stopped":
            Log.warn(
                self.logger,
                f"source instance {src} is {state.source_instance_state}, it will be rebooted to capture its image",
            )
        image_id = self.api.create_image(
            instance_id=src,
            name=f"temp-{src}",
            description=f"temp_ami_from_source_{src}",
            reboot=True,
        )
        if not image_id:
            raise wrap_provisioning("create_image returned no image id", instance_id=src)
        self._record(state, ResourceKind.IMAGE, image_id, ResourceRole.TEMP_IMAGE)
        state.temp_image_id = image_id
        self._tag(image_id)
        self._require(self.poller.wait_image_available(image_id), f"temporary image {image_id} is not available")

    def _discover_volumes(self, state: MigrationState) -> None:
        image = self.api.describe_image(state.temp_image_id or "")
        if image is None:
            raise wrap_provisioning(f"temporary image {state.temp_image_id} disappeared")

        # recorded before parsing so a rejected manifest still reclaims them
        for snapshot_id in image_snapshot_ids(image):
            self._record(state, ResourceKind.SNAPSHOT, snapshot_id, ResourceRole.TEMP_IMAGE_SNAPSHOT)

        volumes = parse_block_devices(image)

        if not volumes:
            raise wrap_validation(f"image {state.temp_image_id} has no EBS block devices")
        state.volumes = volumes
        root = self._root(state)

        for d in volumes:
            self.logger.info(
                "%s %s: %s %dGiB %s%s",
                d.label,
                d.device_name,
                d.snapshot_id,
                d.size_gb,
                d.volume_type,
                f" iops={d.iops}" if d.needs_iops else "",
            )
        Log.ok(self.logger, f"root device {root.device_name}, {len(volumes) - 1} data volume(s)")

    def _provision_source_root_volume(self, state: MigrationState) -> None:
        self._check_slot(self.config.source_device, state, Stage.ATTACH_SOURCE_ROOT_VOLUME)
        state.source_volume_id = self._create_volume(
            state, self._root(state), ResourceRole.SOURCE_ROOT_VOLUME, from_snapshot=True
        )

    def _attach_source_root_volume(self, state: MigrationState) -> None:
        self._attach(state.source_volume_id or "", self.config.source_device, state, Stage.ATTACH_SOURCE_ROOT_VOLUME)

    def _handoff_to_disk_transform(self, state: MigrationState) -> None:
        path = self._resolve(self.config.source_device, partition=1)
        if path is None:
            raise wrap_collaborator(
                f"source volume attached at {self.config.source_device} has no partition node on this host",
                device=self.config.source_device,
            )
        state.source_device_path = path
        state.geometry = self.transform.prepare_source(path)

    def _provision_dest_root_volume(self, state: MigrationState) -> None:
        self._check_slot(self.config.destination_device, state, Stage.ATTACH_DEST_ROOT_VOLUME)
        state.destination_volume_id = self._create_volume(
            state, self._root(state), ResourceRole.DEST_ROOT_VOLUME, from_snapshot=False
        )

    def _attach_dest_root_volume(self, state: MigrationState) -> None:
        self._attach(
            state.destination_volume_id or "", self.config.destination_device, state, Stage.ATTACH_DEST_ROOT_VOLUME
        )

    def _handoff_to_disk_partition_and_copy(self, state: MigrationState) -> None:
        path = self._resolve(self.config.destination_device)
        if path is None:
            raise wrap_collaborator(
                f"destination volume attached at {self.config.destination_device} has no device node on this host",
                device=self.config.destination_device,
            )
        state.destination_device_path = path
        if state.geometry is None or state.source_device_path is None:
            raise wrap_collaborator("source disk was not prepared")
        self.transform.partition_and_copy(state.source_device_path, path, state.geometry)

    def _capture_dest_snapshot(self, state: MigrationState) -> None:
        src = state.source_instance_id
        volume_id = state.destination_volume_id or ""
        snapshot_id = self.api.create_snapshot(volume_id=volume_id, description=f"hvm_converted_for_{src}_root")
        if not snapshot_id:
            raise wrap_provisioning("create_snapshot returned no snapshot id", volume_id=volume_id)
        self._record(state, ResourceKind.SNAPSHOT, snapshot_id, ResourceRole.DEST_ROOT_SNAPSHOT)
        state.destination_snapshot_id = snapshot_id
        self._tag(snapshot_id)
        self._require(
            self.poller.wait_snapshot_completed(snapshot_id), f"root snapshot {snapshot_id} did not complete"
        )
        state.block_device_mapping = [root_mapping_entry(self._root(state), snapshot_id, self.config.root_device_name)]

    def _copy_auxiliary_snapshots(self, state: MigrationState) -> None:
        src = state.source_instance_id
        for d in data_descriptors(state.volumes):
            snapshot_id: Optional[str] = None
            try:
                snapshot_id = self.api.copy_snapshot(
                    source_snapshot_id=d.snapshot_id,
                    source_region=self.config.region,
                    description=f"hvm_converted_for_{src}_{d.label}",
                )
                if not snapshot_id:
                    raise wrap_provisioning("copy_snapshot returned no snapshot id", source=d.snapshot_id)
                self._record(state, ResourceKind.SNAPSHOT, snapshot_id, ResourceRole.AUXILIARY_SNAPSHOT)
                self._tag(snapshot_id)
                self._require(
                    self.poller.wait_snapshot_completed(snapshot_id), f"snapshot copy {snapshot_id} did not complete"
                )
            except (ClientError, Pv2HvmError) as e:
                reason = error_message(e) if isinstance(e, ClientError) else str(e)
                state.auxiliary_failures.append(
                    AuxiliaryFailure(
                        device_name=d.device_name,
                        source_snapshot_id=d.snapshot_id,
                        reason=reason,
                        snapshot_id=snapshot_id,
                    )
                )
                Log.warn(
                    self.logger,
                    f"copy of {d.snapshot_id} for {d.device_name} failed, manual cleanup needed",
                    reason=reason,
                )
                continue
            state.block_device_mapping.append(mapping_entry(d, snapshot_id))

    def _register_destination_image(self, state: MigrationState) -> None:
        src = state.source_instance_id
        mapping = state.block_device_mapping
        path = U.write_json(self.config.mapping_file, mapping)
        self.logger.info("block device mapping written to %s", path)

        image_id = self.api.register_image(
            Name=f"hvm_converted_{src}",
            Description=f"hvm_converted_from_{src}",
            Architecture="x86_64",
            RootDeviceName=self.config.root_device_name,
            VirtualizationType="hvm",
            BlockDeviceMappings=mapping,
        )
        if not image_id:
            raise wrap_provisioning("register_image returned no image id")
        self._record(state, ResourceKind.IMAGE, image_id, ResourceRole.DEST_IMAGE)
        state.destination_image_id = image_id
        self._tag(image_id)
        self._require(self.poller.wait_image_available(image_id), f"HVM image {image_id} is not available")


def mapping_summary(mapping: List[Dict[str, Any]]) -> str:
    return ", ".join(f"{m['DeviceName']}={m['Ebs']['SnapshotId']}" for m in mapping)
