# SPDX-License-Identifier: LGPL-3.0-or-later
import json
import logging
import tempfile
from pathlib import Path

import pytest

from pv2hvm.core.logger import TRACE, EmojiFormatter, JsonFormatter, Log, LogStyle
from pv2hvm.core.logging_utils import log_step


def _record(msg, level=logging.INFO, ctx=None):
    rec = logging.LogRecord("pv2hvm.test", level, __file__, 1, msg, None, None)
    if ctx:
        rec.ctx = ctx
    return rec


@pytest.mark.unit
class TestFormatters:
    def test_json_formatter_emits_one_object(self):
        line = JsonFormatter().format(_record("volume vol-1 is available", ctx={"stage": "x"}))

        obj = json.loads(line)
        assert obj["msg"] == "volume vol-1 is available"
        assert obj["level"] == "INFO"
        assert obj["ctx"] == {"stage": "x"}

    def test_emoji_formatter_without_color(self):
        line = EmojiFormatter(LogStyle(color=False)).format(_record("hello"))

        assert "hello" in line
        assert "INFO" in line


@pytest.mark.unit
class TestLogSetup:
    def test_level_from_flags(self):
        assert Log._level_from_flags(0) == logging.INFO
        assert Log._level_from_flags(1) == logging.INFO
        assert Log._level_from_flags(2) == logging.DEBUG
        assert Log._level_from_flags(3) == TRACE

    def test_log_file_receives_debug(self):
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "logs" / "run.log"
            logger = Log.setup(0, str(path), logger_name="pv2hvm.test.setup")

            logger.debug("recorded source-root-volume:vol-1")
            for h in logger.handlers:
                h.flush()

            assert "recorded source-root-volume:vol-1" in path.read_text()
            for h in list(logger.handlers):
                logger.removeHandler(h)
                h.close()


@pytest.mark.unit
class TestLogStep:
    def test_reraises_and_logs_failure(self):
        logger = logging.getLogger("pv2hvm.test.step")
        seen = []

        class _H(logging.Handler):
            def emit(self, record):
                seen.append(record.getMessage())

        h = _H()
        logger.addHandler(h)
        logger.setLevel(logging.INFO)
        try:
            with pytest.raises(RuntimeError):
                with log_step(logger, "CaptureSourceImage"):
                    raise RuntimeError("boom")
        finally:
            logger.removeHandler(h)

        assert any("CaptureSourceImage ..." in m for m in seen)
        assert any("CaptureSourceImage failed" in m and "boom" in m for m in seen)


@pytest.mark.unit
class TestLogHelpers:
    def test_warn_carries_context(self):
        line = EmojiFormatter(LogStyle(color=False)).format(
            _record("manual cleanup needed", logging.WARNING, ctx={"failed": "volume:vol-1"})
        )

        assert line.endswith("manual cleanup needed failed=volume:vol-1")

    def test_trace_is_below_debug(self):
        assert TRACE < logging.DEBUG
        assert logging.getLevelName(TRACE) == "TRACE"
