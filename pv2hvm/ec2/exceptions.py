# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# pv2hvm/ec2/exceptions.py

from __future__ import annotations

from typing import Any, Optional

from botocore.exceptions import ClientError

from ..core.exceptions import ExitCode, ProvisioningFailure, Pv2HvmError

THROTTLE_CODES = frozenset(
    {
        "RequestLimitExceeded",
        "Throttling",
        "ThrottlingException",
        "TooManyRequestsException",
    }
)

NOT_FOUND_CODES = frozenset(
    {
        "InvalidVolume.NotFound",
        "InvalidSnapshot.NotFound",
        "InvalidAMIID.NotFound",
        "InvalidAMIID.Unavailable",
        "InvalidInstanceID.NotFound",
        "InvalidInstanceID.Malformed",
    }
)


class Ec2Error(Pv2HvmError):
    """
    Base exception for EC2 control-plane operations.

    Inherits exit codes, context tracking, cause chaining and
    secret redaction from Pv2HvmError.
    """
    pass


class Ec2ApiError(ProvisioningFailure, Ec2Error):
    """
    EC2 API call failed with a non-throttling error while a workflow
    stage was running.
    """
    pass


class Ec2ThrottledError(Ec2Error):
    """
    Raised only when a throttling retry cap is configured and exhausted.
    """
    pass


def error_code(exc: BaseException) -> str:
    if isinstance(exc, ClientError):
        return str((exc.response or {}).get("Error", {}).get("Code") or "")
    return ""


def error_message(exc: BaseException) -> str:
    if isinstance(exc, ClientError):
        return str((exc.response or {}).get("Error", {}).get("Message") or exc)
    return str(exc)


def is_throttled(exc: BaseException) -> bool:
    code = error_code(exc)
    return code in THROTTLE_CODES or "RateLimit" in code


def is_not_found(exc: BaseException) -> bool:
    return error_code(exc) in NOT_FOUND_CODES


def wrap_ec2_api_error(msg: str, exc: Optional[BaseException] = None, **context: Any) -> Ec2ApiError:
    """Wrap a failed EC2 call with its error code in the context."""
    if exc is not None and error_code(exc):
        context.setdefault("error_code", error_code(exc))
    return Ec2ApiError(code=ExitCode.FAILED_WITH_CLEANUP, msg=msg, cause=exc, context=context or None)


def wrap_ec2_throttled(msg: str, exc: Optional[BaseException] = None, **context: Any) -> Ec2ThrottledError:
    return Ec2ThrottledError(code=ExitCode.FAILED_WITH_CLEANUP, msg=msg, cause=exc, context=context or None)
