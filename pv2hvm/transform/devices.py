# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# pv2hvm/transform/devices.py
"""
Where an attached volume surfaces on the working host.

EC2 attaches to a slot named /dev/sdX, but depending on the kernel driver
the node shows up as /dev/xvdX or /dev/sdX.
"""

from __future__ import annotations

import logging
import os
import time
from typing import Callable, List, Optional

from ..ec2.mapping import device_letter

LOG = logging.getLogger(__name__)


def candidate_paths(device: str, partition: Optional[int] = None) -> List[str]:
    letter = device_letter(device)
    suffix = "" if partition is None else str(partition)
    return [f"/dev/xvd{letter}{suffix}", f"/dev/sd{letter}{suffix}"]


def resolve_device(
    device: str,
    *,
    partition: Optional[int] = None,
    wait_s: float = 30.0,
    interval_s: float = 1.0,
    exists: Callable[[str], bool] = os.path.exists,
    sleep: Callable[[float], None] = time.sleep,
) -> Optional[str]:
    """
    First existing node for the attachment slot of device, or None once
    wait_s has elapsed without one appearing.
    """
    paths = candidate_paths(device, partition)
    waited = 0.0
    while True:
        for p in paths:
            if exists(p):
                LOG.debug("attachment slot %s surfaced at %s", device, p)
                return p
        if waited >= wait_s:
            return None
        sleep(interval_s)
        waited += interval_s
