# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# pv2hvm/core/utils.py
from __future__ import annotations

import datetime as _dt
import json
import logging
import shlex
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Optional, Union


class U:
    @staticmethod
    def ensure_dir(p: Path) -> None:
        p.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def now_ts() -> str:
        return _dt.datetime.now().strftime("%Y%m%d-%H%M%S")

    @staticmethod
    def json_dump(obj: Any) -> str:
        try:
            return json.dumps(obj, indent=2, sort_keys=True, default=str)
        except (TypeError, ValueError):
            return repr(obj)

    @staticmethod
    def write_json(path: Path, obj: Any) -> Path:
        U.ensure_dir(path.parent)
        path.write_text(U.json_dump(obj) + "\n", encoding="utf-8")
        return path

    @staticmethod
    def pretty_cmd(cmd: List[str]) -> str:
        return " ".join(shlex.quote(x) for x in cmd)

    @staticmethod
    def run_cmd(
        logger: logging.Logger,
        cmd: List[str],
        *,
        check: bool = True,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[int] = None,
        cwd: Optional[Union[str, Path]] = None,
    ) -> subprocess.CompletedProcess:
        """
        Run a command, streaming its combined stdout/stderr into the logger
        line by line. The collected output is returned in CompletedProcess.stdout.
        """
        pretty = U.pretty_cmd(cmd)
        logger.debug("Running: %s", pretty)

        proc = subprocess.Popen(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            env=env,
            cwd=str(cwd) if cwd is not None else None,
        )
        assert proc.stdout is not None
        out_lines: List[str] = []
        for line in proc.stdout:
            line = line.rstrip("\n")
            out_lines.append(line)
            logger.info(line)
        try:
            rc = proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.error("Command timed out: %s (timeout=%ss)", pretty, timeout)
            proc.kill()
            raise

        stdout = "\n".join(out_lines)
        cp = subprocess.CompletedProcess(cmd, rc, stdout=stdout, stderr="")
        if check and rc != 0:
            logger.error("Command failed (rc=%d): %s", rc, pretty)
            raise subprocess.CalledProcessError(rc, cmd, output=stdout, stderr="")
        return cp
