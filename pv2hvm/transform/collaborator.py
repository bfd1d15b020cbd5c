# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# pv2hvm/transform/collaborator.py
"""
Launcher for the external disk-transform tool.

The tool owns the guest-side surgery (fsck/resize, partitioning, raw copy,
bootloader install, grub/fstab rewrite). This module only runs it, checks
its exit status and, for the long raw copy, watches that the process is
still alive.

Sub-commands:
  prepare-source     --source DEV --mount DIR
                     prints block_size=N and block_count=N on success
  partition-and-copy --source DEV --destination DEV --mount DIR
                     --block-size N --block-count N
  release            --mount DIR
"""

from __future__ import annotations

import logging
import re
import subprocess
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from ..core.exceptions import wrap_collaborator
from ..core.logger import is_tty
from ..core.utils import U

LOG = logging.getLogger(__name__)

DEFAULT_COMMAND = "pv2hvm-disk-transform"

_KV_RE = re.compile(r"^\s*(block_size|block_count)\s*=\s*(\d+)\s*$", re.MULTILINE)


@dataclass(frozen=True)
class SourceGeometry:
    block_size: int
    block_count: int


def parse_geometry(output: str) -> Optional[SourceGeometry]:
    found = {k: int(v) for k, v in _KV_RE.findall(output or "")}
    if "block_size" not in found or "block_count" not in found:
        return None
    if found["block_size"] <= 0 or found["block_count"] <= 0:
        return None
    return SourceGeometry(block_size=found["block_size"], block_count=found["block_count"])


class DiskTransform:
    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        *,
        command: str = DEFAULT_COMMAND,
        sysroot: str = "/mnt",
        log_file: Optional[str] = None,
        liveness_interval_s: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.logger = logger or LOG
        self.command = command
        self.sysroot = sysroot
        self.log_file = log_file
        self.liveness_interval_s = liveness_interval_s
        self._sleep = sleep

    def _cmd(self, *args: str) -> List[str]:
        return [self.command, *args]

    def prepare_source(self, source_device: str) -> SourceGeometry:
        """Check and shrink the source filesystem; report its geometry."""
        cmd = self._cmd("prepare-source", "--source", source_device, "--mount", self.sysroot)
        try:
            cp = U.run_cmd(self.logger, cmd, check=False)
        except OSError as e:
            raise wrap_collaborator(f"cannot run {self.command}: {e}", e, step="prepare-source")
        if cp.returncode != 0:
            raise wrap_collaborator(
                f"prepare-source failed on {source_device} (rc={cp.returncode})",
                step="prepare-source",
                rc=cp.returncode,
            )
        geometry = parse_geometry(cp.stdout)
        if geometry is None:
            raise wrap_collaborator(
                f"prepare-source on {source_device} reported no block size/count",
                step="prepare-source",
            )
        self.logger.info(
            "source filesystem block size: %d, block count: %d", geometry.block_size, geometry.block_count
        )
        return geometry

    def partition_and_copy(self, source_device: str, destination_device: str, geometry: SourceGeometry) -> None:
        """
        Partition the destination and clone the source onto it.

        Runs in the background; only liveness is polled. There is no
        cancellation: once started the copy runs to completion or is killed
        from outside.
        """
        cmd = self._cmd(
            "partition-and-copy",
            "--source", source_device,
            "--destination", destination_device,
            "--mount", self.sysroot,
            "--block-size", str(geometry.block_size),
            "--block-count", str(geometry.block_count),
        )
        self.logger.debug("Running: %s", U.pretty_cmd(cmd))

        out = open(self.log_file, "a", encoding="utf-8") if self.log_file else None
        try:
            try:
                proc = subprocess.Popen(cmd, stdout=out, stderr=subprocess.STDOUT if out else None)
            except OSError as e:
                raise wrap_collaborator(f"cannot run {self.command}: {e}", e, step="partition-and-copy")

            self.logger.info(
                "cloning %s to %s (pid %d), send SIGUSR1 to the copy for I/O statistics",
                source_device,
                destination_device,
                proc.pid,
            )
            rc = self._watch(proc, f"cloning {source_device} → {destination_device}")
        finally:
            if out is not None:
                out.close()

        if rc != 0:
            raise wrap_collaborator(
                f"disk clone failed (rc={rc})",
                step="partition-and-copy",
                rc=rc,
            )
        self.logger.info("disk clone completed")

    def _watch(self, proc: subprocess.Popen, label: str) -> int:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            TimeElapsedColumn(),
            transient=True,
            disable=not is_tty(),
        ) as prog:
            prog.add_task(label, total=None)
            while proc.poll() is None:
                self._sleep(self.liveness_interval_s)
        return int(proc.returncode or 0)

    def release(self) -> None:
        """Unmount whatever the tool left mounted at sysroot."""
        cp = U.run_cmd(self.logger, self._cmd("release", "--mount", self.sysroot), check=False)
        if cp.returncode != 0:
            self.logger.warning("release of %s exited with %d", self.sysroot, cp.returncode)
