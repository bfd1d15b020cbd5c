# SPDX-License-Identifier: LGPL-3.0-or-later
# pv2hvm/core/__init__.py
from .exceptions import (
    CollaboratorFailure,
    ExitCode,
    Fatal,
    ProvisioningFailure,
    Pv2HvmError,
    ValidationFailure,
)

__all__ = [
    "CollaboratorFailure",
    "ExitCode",
    "Fatal",
    "ProvisioningFailure",
    "Pv2HvmError",
    "ValidationFailure",
]
