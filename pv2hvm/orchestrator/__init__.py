# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
from __future__ import annotations

from .state import MigrationResult, MigrationState, Outcome, Stage
from .workflow import MigrationOrchestrator

__all__ = ["MigrationOrchestrator", "MigrationResult", "MigrationState", "Outcome", "Stage"]
