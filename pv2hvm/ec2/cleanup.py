# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# pv2hvm/ec2/cleanup.py

from __future__ import annotations

import logging
from typing import Callable, Dict, Optional

from ..core.logger import Log
from .api import Ec2Api
from .exceptions import error_code, is_not_found
from .ledger import ResourceLedger
from .models import CleanupReport, ResourceRef, ResourceRole
from .poller import StatePoller

LOG = logging.getLogger(__name__)

# Roles that make up the final deliverable. Kept after a successful run,
# reclaimed after a failed one.
KEEP_ROLES = frozenset(
    {
        ResourceRole.DEST_ROOT_SNAPSHOT,
        ResourceRole.AUXILIARY_SNAPSHOT,
        ResourceRole.DEST_IMAGE,
    }
)


def make_tags(*, enable: bool, run_tag: str, source_instance_id: str) -> Dict[str, str]:
    """
    Tags applied to every resource created during a run, so a reclaim that
    failed can be finished by hand with a tag filter.
    """
    if not enable:
        return {}

    return {
        "pv2hvm": "true",
        "pv2hvm-run": run_tag,
        "pv2hvm-source": source_instance_id,
    }


class CompensationEngine:
    """
    Undo the allocations recorded in a ResourceLedger, dependency-safe:

      1. deregister the temporary image
      2. delete the snapshots backing it
      (release the working mount through the collaborator hook)
      3. detach, then delete, the source root working volume
      4. detach, then delete, the destination root working volume
      5. unless keep_deliverables: deregister the destination image, then
         delete the destination root snapshot and auxiliary snapshot copies

    Every step is best-effort; a failure is logged and the next step runs.
    Refs already gone are reported as skipped, so compensate() may run any
    number of times against the same ledger.
    """

    def __init__(
        self,
        api: Ec2Api,
        poller: StatePoller,
        *,
        logger: Optional[logging.Logger] = None,
        release: Optional[Callable[[], None]] = None,
    ):
        self.api = api
        self.poller = poller
        self.logger = logger or LOG
        self.release = release

    def compensate(self, ledger: ResourceLedger, *, keep_deliverables: bool = True) -> CleanupReport:
        report = CleanupReport()
        Log.banner(self.logger, "cleanup")

        for ref in ledger.by_role(ResourceRole.TEMP_IMAGE):
            self._attempt(report, ref, "deregistering image", lambda r=ref: self.api.deregister_image(r.id))

        for ref in ledger.by_role(ResourceRole.TEMP_IMAGE_SNAPSHOT):
            self._attempt(report, ref, "deleting snapshot", lambda r=ref: self.api.delete_snapshot(r.id))

        volumes = ledger.by_role(ResourceRole.SOURCE_ROOT_VOLUME) + ledger.by_role(ResourceRole.DEST_ROOT_VOLUME)
        if volumes:
            self._release_mount(report)
        for ref in volumes:
            try:
                self._reclaim_volume(report, ref)
            except Exception as e:
                self.logger.error("reclaiming %s failed: %s", ref, e)
                report.failed.append(str(ref))

        if keep_deliverables:
            for ref in ledger.all():
                if ref.role in KEEP_ROLES:
                    Log.trace(self.logger, "keeping %s", ref)
        else:
            for ref in ledger.by_role(ResourceRole.DEST_IMAGE):
                self._attempt(report, ref, "deregistering image", lambda r=ref: self.api.deregister_image(r.id))
            snapshots = ledger.by_role(ResourceRole.DEST_ROOT_SNAPSHOT) + ledger.by_role(ResourceRole.AUXILIARY_SNAPSHOT)
            for ref in snapshots:
                self._attempt(report, ref, "deleting snapshot", lambda r=ref: self.api.delete_snapshot(r.id))

        if report.failed:
            Log.warn(self.logger, "manual cleanup needed", failed=", ".join(report.failed))
        else:
            Log.ok(self.logger, "cleanup complete", reclaimed=len(report.reclaimed), skipped=len(report.skipped))
        return report

    def _release_mount(self, report: CleanupReport) -> None:
        if self.release is None:
            return
        try:
            self.release()
        except Exception as e:
            self.logger.warning("releasing working mount failed: %s", e)
            report.warnings.append(f"release failed: {e}")

    def _attempt(self, report: CleanupReport, ref: ResourceRef, action: str, fn: Callable[[], None]) -> bool:
        self.logger.info("%s %s", action, ref.id)
        try:
            fn()
        except Exception as e:
            if is_not_found(e):
                self.logger.info("%s already gone (%s)", ref, error_code(e))
                report.skipped.append(str(ref))
                return False
            self.logger.error("%s %s failed: %s", action, ref.id, e)
            report.failed.append(str(ref))
            return False
        report.reclaimed.append(str(ref))
        return True

    def _reclaim_volume(self, report: CleanupReport, ref: ResourceRef) -> None:
        try:
            volume = self.api.describe_volume(ref.id)
        except Exception as e:
            if is_not_found(e):
                self.logger.info("%s already gone (%s)", ref, error_code(e))
                report.skipped.append(str(ref))
                return
            self.logger.error("describing volume %s failed: %s", ref.id, e)
            report.failed.append(str(ref))
            return

        if volume is None:
            report.skipped.append(str(ref))
            return

        if volume.get("Attachments") or volume.get("State") == "in-use":
            self.logger.info("detaching volume %s", ref.id)
            try:
                self.api.detach_volume(ref.id)
            except Exception as e:
                # IncorrectState: detach already in flight or finished.
                if error_code(e) != "IncorrectState":
                    self.logger.error("detaching volume %s failed: %s", ref.id, e)
                    report.failed.append(str(ref))
                    return
            res = self.poller.wait_volume_detached(ref.id)
            if not res.ok:
                self.logger.error("volume %s did not detach: %s", ref.id, res.describe())
                report.failed.append(str(ref))
                return

        self._attempt(report, ref, "deleting volume", lambda: self.api.delete_volume(ref.id))
