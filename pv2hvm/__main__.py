# SPDX-License-Identifier: LGPL-3.0-or-later
#!/usr/bin/env python3
# -*- coding: utf-8 -*-
from __future__ import annotations

import sys
import traceback
from pathlib import Path
from typing import Optional, Sequence

import requests

from .cli.parser import config_from_args, parse_args_with_config
from .config.loader import DEFAULT_AVAILABILITY_ZONE, MigrationConfig
from .core.exceptions import ExitCode, Fatal, format_exception_for_cli, wrap_config
from .core.logger import Log
from .core.utils import U
from .ec2.api import Ec2Api, make_ec2_client
from .ec2.metadata import InstanceMetadata
from .ec2.poller import StatePoller
from .orchestrator.workflow import MigrationOrchestrator
from .transform.collaborator import DiskTransform


def _print_stderr(msg: str) -> None:
    print(msg, file=sys.stderr)


def _safe_log(logger, level: str, msg: str) -> None:
    if logger is None:
        _print_stderr(msg)
        return

    fn = getattr(logger, level, None)
    if callable(fn):
        fn(msg)
    else:
        _print_stderr(msg)


def resolve_working_host(cfg: MigrationConfig, logger, metadata: Optional[InstanceMetadata] = None) -> MigrationConfig:
    """Fill working instance id and zone from instance metadata when not configured."""
    if cfg.working_instance_id and cfg.availability_zone:
        return cfg

    md = metadata or InstanceMetadata()
    if not cfg.working_instance_id:
        try:
            cfg.working_instance_id = md.instance_id()
        except requests.RequestException as e:
            raise wrap_config("cannot determine the working instance id, pass --working-instance-id", e)
        logger.info("working instance %s (from instance metadata)", cfg.working_instance_id)

    if not cfg.availability_zone:
        try:
            cfg.availability_zone = md.availability_zone()
        except requests.RequestException as e:
            Log.warn(logger, f"cannot read availability zone, using {DEFAULT_AVAILABILITY_ZONE}", error=str(e))
            cfg.availability_zone = DEFAULT_AVAILABILITY_ZONE
    return cfg


def build_orchestrator(cfg: MigrationConfig, logger) -> MigrationOrchestrator:
    api = Ec2Api(
        make_ec2_client(cfg.region),
        logger=logger,
        throttle_min_s=cfg.throttle_min_s,
        throttle_max_s=cfg.throttle_max_s,
        max_throttle_retries=cfg.max_throttle_retries,
    )
    poller = StatePoller(api, logger=logger, interval_s=cfg.poll_interval_s, deadline_s=cfg.poll_timeout_s)
    transform = DiskTransform(
        logger,
        command=cfg.transform_command,
        sysroot=cfg.sysroot,
        log_file=cfg.log_file,
        liveness_interval_s=cfg.poll_interval_s,
    )
    return MigrationOrchestrator(api, poller, transform, cfg, logger=logger)


def main(argv: Optional[Sequence[str]] = None) -> None:
    logger = None

    # Phase 1: parse and validate (Fatal can happen here)
    try:
        args, _conf, logger = parse_args_with_config(argv)
        cfg = config_from_args(args).validate()
        logger = Log.setup(cfg.verbose, cfg.log_file, json_logs=cfg.json_logs)
        resolve_working_host(cfg, logger)
    except Fatal as e:
        _safe_log(logger, "error", f"💥 {format_exception_for_cli(e, verbose=1)}")
        raise SystemExit(getattr(e, "code", 1))
    except KeyboardInterrupt:
        _safe_log(logger, "warning", "Interrupted by user (Ctrl+C).")
        raise SystemExit(int(ExitCode.INTERRUPTED))

    # Phase 2: run the migration
    try:
        result = build_orchestrator(cfg, logger).run()
        report = U.write_json(Path(cfg.output_dir) / f"{cfg.source_instance_id}-report.json", result.to_jsonable())
        logger.info("run report written to %s", report)
        rc = result.exit_code
    except KeyboardInterrupt:
        _safe_log(logger, "warning", "Interrupted by user (Ctrl+C), intermediate resources were reclaimed.")
        rc = int(ExitCode.INTERRUPTED)
    except Exception as e:
        _safe_log(logger, "error", f"💥 UNHANDLED {type(e).__name__}: {e}")
        _safe_log(logger, "debug", traceback.format_exc())
        rc = int(ExitCode.UNKNOWN)

    raise SystemExit(rc)


if __name__ == "__main__":
    main()
