# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
"""EC2 resource provisioning: rate-limited API, state poller, ledger and compensation."""

from __future__ import annotations

from .api import Ec2Api, make_ec2_client
from .cleanup import CompensationEngine
from .ledger import ResourceLedger
from .models import ResourceKind, ResourceRef, ResourceRole, VolumeDescriptor
from .poller import StatePoller

__all__ = [
    "CompensationEngine",
    "Ec2Api",
    "ResourceKind",
    "ResourceLedger",
    "ResourceRef",
    "ResourceRole",
    "StatePoller",
    "VolumeDescriptor",
    "make_ec2_client",
]
