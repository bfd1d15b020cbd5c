# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# pv2hvm/ec2/poller.py
"""
Generic async-completion watcher for EC2 images, volumes and snapshots.

A volume has two independent lifecycle axes: its own State
(creating/available/in-use/...) and the State of its attachment
(attaching/attached/detaching/detached/busy). The verb picks the axis.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional, Tuple

from botocore.exceptions import ClientError

from .api import Ec2Api
from .exceptions import error_code, is_not_found
from .models import PollResult, ResourceKind

LOG = logging.getLogger(__name__)

VERBS = ("create", "attach", "detach")

# Attachment state reported for a volume that has no attachment at all.
NO_ATTACHMENT = "detached"

# A freshly created id may not be visible to describe calls yet.
DEFAULT_NOT_FOUND_POLLS = 3


def _attachment_state(volume: Dict[str, Any]) -> str:
    attachments = volume.get("Attachments") or []
    if not attachments:
        return NO_ATTACHMENT
    return str(attachments[0].get("State") or "")


def _state_reason(resource: Dict[str, Any]) -> Optional[str]:
    reason = (resource.get("StateReason") or {}).get("Message")
    return reason or resource.get("StateMessage") or None


class StatePoller:
    def __init__(
        self,
        api: Ec2Api,
        *,
        logger: Optional[logging.Logger] = None,
        interval_s: float = 5.0,
        deadline_s: Optional[float] = None,
        heartbeat: Optional[Callable[[str, str], None]] = None,
        not_found_polls: int = DEFAULT_NOT_FOUND_POLLS,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.api = api
        self.logger = logger or LOG
        self.interval_s = interval_s
        self.deadline_s = deadline_s
        self.heartbeat = heartbeat
        self.not_found_polls = not_found_polls
        self._sleep = sleep
        self._clock = clock

    def _describe(self, kind: ResourceKind, resource_id: str) -> Optional[Dict[str, Any]]:
        try:
            if kind == ResourceKind.IMAGE:
                return self.api.describe_image(resource_id)
            if kind == ResourceKind.SNAPSHOT:
                return self.api.describe_snapshot(resource_id)
            return self.api.describe_volume(resource_id)
        except ClientError as e:
            if not is_not_found(e):
                raise
            self.logger.debug("%s %s: %s", kind.value, resource_id, error_code(e))
            return None

    def _observe(self, kind: ResourceKind, verb: str, resource: Dict[str, Any]) -> Tuple[str, str]:
        """Return (terminal-axis state, pending-axis state)."""
        state = str(resource.get("State") or "")
        if kind != ResourceKind.VOLUME or verb == "create":
            return state, state
        attachment = _attachment_state(resource)
        if verb == "attach":
            return attachment, attachment
        # detach: done once the volume itself is available again
        return state, attachment

    def wait_for(
        self,
        resource_id: str,
        expected_terminal: str,
        expected_pending: str,
        verb: str = "create",
        kind: ResourceKind = ResourceKind.VOLUME,
    ) -> PollResult:
        if verb not in VERBS:
            raise ValueError(f"unknown verb {verb!r}, expected one of {VERBS}")

        started = self._clock()
        beats = 0
        unseen = 0
        while True:
            resource = self._describe(kind, resource_id)
            if resource is None and unseen < self.not_found_polls:
                unseen += 1
                self.logger.debug("%s %s not visible yet (%d/%d)", kind.value, resource_id, unseen, self.not_found_polls)
                self._sleep(self.interval_s)
                continue
            if resource is None:
                self.logger.error("%s %s not found while waiting for %s", kind.value, resource_id, expected_terminal)
                return PollResult.failure("missing", f"{kind.value} {resource_id} not found")

            terminal_state, pending_state = self._observe(kind, verb, resource)

            if terminal_state == expected_terminal:
                self.logger.info("%s %s is %s", kind.value, resource_id, expected_terminal)
                return PollResult.success(terminal_state)

            if pending_state == expected_pending:
                if self.deadline_s is not None and (self._clock() - started) >= self.deadline_s:
                    self.logger.error(
                        "%s %s still %s after %.0fs", kind.value, resource_id, pending_state, self.deadline_s
                    )
                    return PollResult.failure("timeout", f"still {pending_state} after {self.deadline_s:.0f}s")
                beats += 1
                self.logger.debug("%s %s %s (%d)", kind.value, resource_id, pending_state, beats)
                if self.heartbeat is not None:
                    self.heartbeat(resource_id, pending_state)
                self._sleep(self.interval_s)
                continue

            if verb == "detach" and pending_state == "busy":
                self.logger.error("volume %s busy on detach", resource_id)
                return PollResult.failure("busy", "device busy, try force detach")

            observed = pending_state if verb == "attach" else terminal_state
            reason = _state_reason(resource)
            self.logger.error(
                "%s %s failed waiting for %s: state=%s%s",
                kind.value,
                resource_id,
                expected_terminal,
                observed,
                f" reason={reason}" if reason else "",
            )
            return PollResult.failure(observed, reason)

    # ── Convenience ──────────────────────────────────────────────

    def wait_image_available(self, image_id: str) -> PollResult:
        return self.wait_for(image_id, "available", "pending", "create", ResourceKind.IMAGE)

    def wait_snapshot_completed(self, snapshot_id: str) -> PollResult:
        return self.wait_for(snapshot_id, "completed", "pending", "create", ResourceKind.SNAPSHOT)

    def wait_volume_created(self, volume_id: str) -> PollResult:
        return self.wait_for(volume_id, "available", "creating", "create", ResourceKind.VOLUME)

    def wait_volume_attached(self, volume_id: str) -> PollResult:
        return self.wait_for(volume_id, "attached", "attaching", "attach", ResourceKind.VOLUME)

    def wait_volume_detached(self, volume_id: str) -> PollResult:
        return self.wait_for(volume_id, "available", "detaching", "detach", ResourceKind.VOLUME)
