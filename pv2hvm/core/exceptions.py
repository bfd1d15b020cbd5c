# SPDX-License-Identifier: LGPL-3.0-or-later
# pv2hvm/core/exceptions.py
from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, Optional


class ExitCode(IntEnum):
    OK = 0
    UNKNOWN = 1
    FAILED_BEFORE_RESOURCES = 2
    FAILED_WITH_CLEANUP = 3
    INTERRUPTED = 130


def _safe_int(x: Any, default: int = 1) -> int:
    try:
        return int(x)
    except Exception:
        return default


def _clamp_exit_code(code: int) -> int:
    # Exit codes are typically 0..255; keep it safe and predictable.
    if code < 0:
        return 1
    if code > 255:
        return 255
    return code


def _one_line(s: str, limit: int = 600) -> str:
    s = (s or "").strip().replace("\r", " ").replace("\n", " ")
    s = " ".join(s.split())
    return s if len(s) <= limit else (s[: limit - 3] + "...")


_SECRET_KEY_PARTS = (
    "pass",
    "password",
    "secret",
    "token",
    "apikey",
    "api_key",
    "auth",
    "session",
    "credential",
    "key",
)


def _is_secret_key(k: str) -> bool:
    ks = (k or "").lower()
    return any(p in ks for p in _SECRET_KEY_PARTS)


def _format_context_compact(ctx: Dict[str, Any]) -> str:
    # Stable order, redaction, single-line.
    parts = []
    for k in sorted(ctx.keys()):
        v = ctx.get(k)
        if _is_secret_key(str(k)):
            parts.append(f"{k}=<redacted>")
        else:
            parts.append(f"{k}={v!r}")
    return ", ".join(parts)


@dataclass(eq=False)
class Pv2HvmError(Exception):
    """
    Base project error with:
      - stable fields for reporting/JSON
      - readable __str__ (what users see)
      - safe code handling (never crashes on int())
    """
    code: int = 1
    msg: str = "error"
    cause: Optional[BaseException] = None
    context: Optional[Dict[str, Any]] = None

    def __post_init__(self) -> None:
        self.code = _clamp_exit_code(_safe_int(self.code, default=1))
        self.msg = _one_line(self.msg) or self.__class__.__name__
        super().__init__(self.msg)
        # Some tooling inspects Exception.args directly.
        self.args = (self.msg,)

    def with_context(self, **ctx: Any) -> "Pv2HvmError":
        if self.context is None:
            self.context = {}
        self.context.update(ctx)
        return self

    def user_message(self, *, include_context: bool = False, include_cause: bool = False) -> str:
        """
        Human-friendly message for CLI output/logs.
        """
        base = self.msg or self.__class__.__name__
        parts = [base]

        if include_context and self.context:
            parts.append(f"[{_one_line(_format_context_compact(self.context), limit=600)}]")

        if include_cause and self.cause is not None:
            parts.append(f"(cause: {type(self.cause).__name__}: {_one_line(str(self.cause))})")

        return " ".join(parts)

    def __str__(self) -> str:
        return self.user_message(include_context=False, include_cause=False)

    def to_dict(self, *, include_cause: bool = False) -> Dict[str, Any]:
        ctx = {
            k: ("<redacted>" if _is_secret_key(str(k)) else v)
            for k, v in (self.context or {}).items()
        }
        d: Dict[str, Any] = {
            "type": self.__class__.__name__,
            "code": self.code,
            "message": self.msg,
            "context": ctx,
        }
        if include_cause and self.cause is not None:
            d["cause"] = {"type": type(self.cause).__name__, "message": _one_line(str(self.cause))}
        return d


class Fatal(Pv2HvmError):
    """
    User-facing fatal error (exit code should be honored by top-level main()).
    """
    pass


class ConfigError(Fatal):
    """Configuration file or command line is unusable."""
    pass


class ValidationFailure(Pv2HvmError):
    """
    Source instance or its captured image fails a precondition:
    already HVM, marketplace product code, empty volume manifest.
    Never retryable.
    """
    pass


class ProvisioningFailure(Pv2HvmError):
    """
    A create/attach/detach/register call failed or its resource reached an
    unexpected state. Triggers compensation.
    """
    pass


class CollaboratorFailure(Pv2HvmError):
    """The external disk-transform collaborator exited non-zero."""
    pass


def wrap_config(msg: str, exc: Optional[BaseException] = None, **context: Any) -> ConfigError:
    return ConfigError(code=ExitCode.FAILED_BEFORE_RESOURCES, msg=msg, cause=exc, context=context or None)


def wrap_validation(msg: str, exc: Optional[BaseException] = None, **context: Any) -> ValidationFailure:
    return ValidationFailure(code=ExitCode.FAILED_BEFORE_RESOURCES, msg=msg, cause=exc, context=context or None)


def wrap_provisioning(msg: str, exc: Optional[BaseException] = None, **context: Any) -> ProvisioningFailure:
    return ProvisioningFailure(code=ExitCode.FAILED_WITH_CLEANUP, msg=msg, cause=exc, context=context or None)


def wrap_collaborator(msg: str, exc: Optional[BaseException] = None, **context: Any) -> CollaboratorFailure:
    return CollaboratorFailure(code=ExitCode.FAILED_WITH_CLEANUP, msg=msg, cause=exc, context=context or None)


def format_exception_for_cli(e: BaseException, *, verbose: int = 0) -> str:
    """
    One-liner output for CLI.

    verbose=0: just message
    verbose=1: message + compact context (if any)
    verbose>=2: message + context + cause
    """
    if isinstance(e, Pv2HvmError):
        return e.user_message(
            include_context=(verbose >= 1),
            include_cause=(verbose >= 2),
        )

    if verbose >= 2:
        return f"{type(e).__name__}: {_one_line(str(e))}"
    return _one_line(str(e)) or type(e).__name__
