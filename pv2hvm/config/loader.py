# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# pv2hvm/config/loader.py
"""
YAML configuration for pv2hvm.

Config files are plain mappings whose keys are MigrationConfig field names
(dashes are accepted and normalized to underscores). Several files may be
given; later files override earlier ones, and the command line overrides
them all.
"""

from __future__ import annotations

import argparse
import glob
import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from ..core.exceptions import wrap_config
from ..core.logger import Log
from ..ec2.mapping import DEFAULT_ROOT_DEVICE_NAME, device_letter
from ..transform.collaborator import DEFAULT_COMMAND

DEFAULT_REGION = "us-east-1"
DEFAULT_AVAILABILITY_ZONE = "us-east-1d"


@dataclass
class MigrationConfig:
    source_instance_id: str = ""
    region: str = DEFAULT_REGION
    availability_zone: Optional[str] = None
    working_instance_id: Optional[str] = None
    sysroot: str = "/mnt"
    log_dir: str = "/var/log/pv2hvm"
    log_name: str = "default"
    output_dir: str = "./out"
    source_device: str = "/dev/sdp"
    destination_device: str = "/dev/sdh"
    root_device_name: str = DEFAULT_ROOT_DEVICE_NAME
    transform_command: str = DEFAULT_COMMAND
    poll_interval_s: float = 5.0
    poll_timeout_s: Optional[float] = None
    throttle_min_s: float = 5.0
    throttle_max_s: float = 15.0
    max_throttle_retries: Optional[int] = None
    tag_resources: bool = True
    json_logs: bool = False
    verbose: int = 0

    @property
    def log_file(self) -> str:
        return str(Path(self.log_dir) / f"{self.log_name}.log")

    @property
    def mapping_file(self) -> Path:
        return Path(self.output_dir) / f"{self.source_instance_id}-block-device-mapping.json"

    @classmethod
    def field_names(cls) -> List[str]:
        return [f.name for f in fields(cls)]

    @classmethod
    def from_mapping(cls, data: Dict[str, Any]) -> "MigrationConfig":
        known = set(cls.field_names())
        return cls(**{k: v for k, v in data.items() if k in known and v is not None})

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "MigrationConfig":
        return cls.from_mapping(vars(args))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def validate(self) -> "MigrationConfig":
        if not self.source_instance_id:
            raise wrap_config("source instance id is required")
        for name in ("source_device", "destination_device"):
            try:
                device_letter(getattr(self, name))
            except ValueError as e:
                raise wrap_config(str(e), e, field=name)
        if device_letter(self.source_device) == device_letter(self.destination_device):
            raise wrap_config(
                "source and destination devices use the same attachment slot",
                source_device=self.source_device,
                destination_device=self.destination_device,
            )
        if self.throttle_min_s < 0 or self.throttle_max_s < self.throttle_min_s:
            raise wrap_config(
                "throttle window must satisfy 0 <= min <= max",
                throttle_min_s=self.throttle_min_s,
                throttle_max_s=self.throttle_max_s,
            )
        if self.poll_interval_s <= 0:
            raise wrap_config("poll interval must be positive", poll_interval_s=self.poll_interval_s)
        if self.poll_timeout_s is not None and self.poll_timeout_s <= 0:
            raise wrap_config("poll timeout must be positive", poll_timeout_s=self.poll_timeout_s)
        if self.max_throttle_retries is not None and self.max_throttle_retries < 0:
            raise wrap_config("throttle retry cap cannot be negative", max_throttle_retries=self.max_throttle_retries)
        return self


class Config:
    @staticmethod
    def expand_configs(logger: logging.Logger, paths: List[str]) -> List[Path]:
        """Expand ~, env vars and globs; keep order, drop duplicates."""
        out: List[Path] = []
        for raw in paths:
            pattern = os.path.expandvars(os.path.expanduser(raw))
            matches = sorted(glob.glob(pattern)) or [pattern]
            for m in matches:
                p = Path(m).resolve()
                if p not in out:
                    out.append(p)
        Log.trace(logger, "config files: %s", [str(p) for p in out])
        return out

    @staticmethod
    def load_one(logger: logging.Logger, path: Path) -> Dict[str, Any]:
        if not path.is_file():
            raise wrap_config(f"config file not found: {path}", path=str(path))
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            raise wrap_config(f"invalid YAML in {path}", e, path=str(path))
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise wrap_config(f"config {path} must be a mapping at the top level", path=str(path))
        logger.debug("loaded config %s (%d keys)", path, len(data))
        return {str(k).replace("-", "_"): v for k, v in data.items()}

    @staticmethod
    def load_many(logger: logging.Logger, paths: List[Path]) -> Dict[str, Any]:
        merged: Dict[str, Any] = {}
        for p in paths:
            merged.update(Config.load_one(logger, p))
        unknown = sorted(set(merged) - set(MigrationConfig.field_names()))
        if unknown:
            Log.warn(logger, "ignoring unknown config keys", keys=", ".join(unknown))
            for k in unknown:
                merged.pop(k)
        return merged

    @staticmethod
    def apply_as_defaults(logger: logging.Logger, parser: argparse.ArgumentParser, conf: Dict[str, Any]) -> None:
        """Config values become parser defaults, so explicit flags still win."""
        if not conf:
            return
        known = {a.dest for a in parser._actions}
        defaults = {k: v for k, v in conf.items() if k in known}
        Log.trace(logger, "config defaults: %s", defaults)
        parser.set_defaults(**defaults)
