# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
"""Working-host glue for the external disk-transform tool."""

from __future__ import annotations

from .collaborator import DiskTransform, SourceGeometry
from .devices import resolve_device

__all__ = ["DiskTransform", "SourceGeometry", "resolve_device"]
