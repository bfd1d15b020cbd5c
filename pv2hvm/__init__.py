# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# pv2hvm/__init__.py
"""
pv2hvm - paravirtual to HVM EC2 image conversion

Runs on an HVM working instance in the source's availability zone. Captures
an image of the PV source, rebuilds its root disk through an external
disk-transform tool, and registers the result as a new HVM image. Every
intermediate resource is recorded and reclaimed, whether the run succeeds
or not.

Usage as a library:

    from pv2hvm import MigrationOrchestrator, MigrationConfig
    from pv2hvm.__main__ import build_orchestrator

    cfg = MigrationConfig(source_instance_id="i-0123456789abcdef0").validate()
    result = build_orchestrator(cfg, logger).run()
"""

__version__ = "0.1.0"

from .config import MigrationConfig
from .orchestrator import MigrationOrchestrator, MigrationResult

__all__ = [
    "__version__",
    "MigrationConfig",
    "MigrationOrchestrator",
    "MigrationResult",
]
