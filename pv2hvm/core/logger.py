# SPDX-License-Identifier: LGPL-3.0-or-later
# pv2hvm/core/logger.py
"""
Console and run-log output for pv2hvm.

Two formatters: an emoji line format for people and NDJSON for log
shipping. Structured fields travel on the record as ``ctx`` and are
appended as ``key=value`` pairs (or a ``ctx`` object in JSON).
"""
from __future__ import annotations

import datetime as _dt
import json
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from termcolor import colored as _colored

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

_LEVELS = {
    # levelname: (emoji, color)
    "TRACE": ("🧬", "cyan"),
    "DEBUG": ("🔍", "blue"),
    "INFO": ("✅", "green"),
    "WARNING": ("⚠️", "yellow"),
    "ERROR": ("💥", "red"),
    "CRITICAL": ("🧨", "red"),
}


def is_tty(stream: Any = None) -> bool:
    stream = stream if stream is not None else sys.stderr
    try:
        return bool(stream.isatty())
    except (AttributeError, ValueError):
        return False


def _supports_unicode() -> bool:
    enc = getattr(sys.stderr, "encoding", None) or "utf-8"
    try:
        "✅".encode(enc)
    except (LookupError, UnicodeEncodeError):
        return False
    return True


def c(text: str, color: Optional[str] = None, attrs: Optional[List[str]] = None, *, enable: bool = True) -> str:
    """Colorize text when enabled."""
    if not enable or not color:
        return text
    return _colored(text, color=color, attrs=attrs or [])


def _safe_str(v: Any, *, max_len: int = 240) -> str:
    s = str(v).replace("\n", "\\n").replace("\r", "\\r")
    if len(s) > max_len:
        s = s[: max_len - 1] + "…"
    return s


def _format_ctx_kv(ctx: Optional[Mapping[str, Any]]) -> str:
    if not ctx:
        return ""
    return " " + " ".join(f"{k}={_safe_str(v)}" for k, v in sorted(ctx.items(), key=lambda kv: str(kv[0])))


@dataclass(frozen=True)
class LogStyle:
    color: bool = True
    show_ms: bool = False
    show_pid: bool = False
    show_src: bool = False  # module:line
    utc: bool = False
    unicode: bool = True


class EmojiFormatter(logging.Formatter):
    def __init__(self, style: LogStyle):
        super().__init__()
        self._style = style

    def _now(self, created: float) -> str:
        tz = _dt.timezone.utc if self._style.utc else None
        dt = _dt.datetime.fromtimestamp(created, tz=tz)
        if self._style.show_ms:
            return dt.strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
        return dt.strftime("%Y-%m-%d %H:%M:%S")

    def _prefix(self, record: logging.LogRecord) -> str:
        bits: List[str] = []
        if self._style.show_pid:
            bits.append(f"pid={record.process}")
        if self._style.show_src:
            bits.append(f"{record.module}:{record.lineno}")
        return (" [" + " ".join(bits) + "]") if bits else ""

    def format(self, record: logging.LogRecord) -> str:
        emoji, color = _LEVELS.get(record.levelname, ("•", None))
        if not self._style.unicode:
            emoji = "·"
        color_ok = self._style.color and is_tty()

        lvl = c(record.levelname, color, enable=color_ok)
        msg = record.getMessage()
        if record.levelno >= logging.WARNING:
            msg = c(msg, color, attrs=["bold"], enable=color_ok)

        line = f"{self._now(record.created)} {emoji} {lvl:<8}{self._prefix(record)} {msg}"
        line += _format_ctx_kv(getattr(record, "ctx", None))
        if record.exc_info:
            tb = "\n".join("  " + ln for ln in self.formatException(record.exc_info).splitlines())
            line += "\n" + c(tb, "red", enable=color_ok)
        return line


class JsonFormatter(logging.Formatter):
    """NDJSON, one object per record."""

    def __init__(self, *, utc: bool = True):
        super().__init__()
        self._utc = utc

    def format(self, record: logging.LogRecord) -> str:
        tz = _dt.timezone.utc if self._utc else None
        obj: Dict[str, Any] = {
            "ts": _dt.datetime.fromtimestamp(record.created, tz=tz).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "pid": record.process,
            "module": record.module,
            "lineno": record.lineno,
        }
        ctx = getattr(record, "ctx", None)
        if ctx:
            obj["ctx"] = dict(ctx)
        if record.exc_info:
            obj["exc_type"] = record.exc_info[0].__name__ if record.exc_info[0] else "Exception"
            obj["traceback"] = self.formatException(record.exc_info)
        return json.dumps(obj, ensure_ascii=False, default=str)


class Log:
    @staticmethod
    def _level_from_flags(verbose: int) -> int:
        # default INFO, -vv DEBUG, -vvv TRACE
        if verbose >= 3:
            return TRACE
        if verbose >= 2:
            return logging.DEBUG
        return logging.INFO

    @staticmethod
    def banner(logger: logging.Logger, title: str, *, char: str = "─") -> None:
        width = 72
        t = f" {title.strip()} "
        side = char * max(8, (width - len(t)) // 2)
        logger.info((side + t + side)[:width])

    @staticmethod
    def ok(logger: logging.Logger, msg: str, **ctx: Any) -> None:
        logger.info("✅ %s", msg, extra={"ctx": ctx} if ctx else None)

    @staticmethod
    def warn(logger: logging.Logger, msg: str, **ctx: Any) -> None:
        logger.warning("⚠️  %s", msg, extra={"ctx": ctx} if ctx else None)

    @staticmethod
    def fail(logger: logging.Logger, msg: str, **ctx: Any) -> None:
        logger.error("💥 %s", msg, extra={"ctx": ctx} if ctx else None)

    @staticmethod
    def trace(logger: logging.Logger, msg: str, *args: Any) -> None:
        logger.log(TRACE, msg, *args)

    @staticmethod
    def setup(
        verbose: int = 0,
        log_file: Optional[str] = None,
        *,
        logger_name: str = "pv2hvm",
        json_logs: bool = False,
    ) -> logging.Logger:
        """
        Configure and return the project's logger.

        The console handler writes to stderr. When log_file is given a second
        handler writes the run log (the audit trail of every ledger entry and
        whether it was reclaimed) at DEBUG or finer, without colors and with
        millisecond stamps.
        """
        logger = logging.getLogger(logger_name)
        logger.propagate = False
        level = Log._level_from_flags(verbose)
        logger.setLevel(level)

        for h in list(logger.handlers):
            logger.removeHandler(h)
            h.close()

        unicode_ok = _supports_unicode()
        sh = logging.StreamHandler(stream=sys.stderr)
        sh.setLevel(level)
        if json_logs:
            sh.setFormatter(JsonFormatter())
        else:
            sh.setFormatter(
                EmojiFormatter(
                    LogStyle(show_ms=verbose >= 3, show_pid=verbose >= 2, show_src=verbose >= 3, unicode=unicode_ok)
                )
            )
        logger.addHandler(sh)

        if log_file:
            fp = Path(log_file).expanduser().resolve()
            fp.parent.mkdir(parents=True, exist_ok=True)
            fh = logging.FileHandler(fp, encoding="utf-8")
            fh.setLevel(min(level, logging.DEBUG))
            if json_logs:
                fh.setFormatter(JsonFormatter())
            else:
                fh.setFormatter(
                    EmojiFormatter(LogStyle(color=False, show_ms=True, show_pid=True, show_src=True, unicode=unicode_ok))
                )
            logger.addHandler(fh)
            logger.setLevel(min(level, logging.DEBUG))

        logger.debug("logger ready (level=%s, pid=%s, log_file=%s)", logging.getLevelName(level), os.getpid(), log_file)
        return logger
