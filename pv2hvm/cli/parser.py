# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# pv2hvm/cli/parser.py
from __future__ import annotations

import argparse
import sys
from typing import Any, Dict, Optional, Sequence, Tuple

from ..config.loader import Config, MigrationConfig
from ..core.logger import Log, c
from ..core.utils import U

EPILOG = """\
examples:
  pv2hvm i-0123456789abcdef0
  pv2hvm i-0123456789abcdef0 web01 --region eu-west-1
  pv2hvm --config site.yaml --config web01.yaml -vv

exit codes:
  0    HVM image registered
  2    failed before any resource was created
  3    failed; intermediate resources were reclaimed (see the run log)
  130  interrupted
"""


class HelpFormatter(argparse.ArgumentDefaultsHelpFormatter, argparse.RawDescriptionHelpFormatter):
    pass


def _add_global_config_logging(p: argparse.ArgumentParser) -> None:
    from .. import __version__

    p.add_argument(
        "--config",
        action="append",
        default=[],
        help="YAML config file (repeatable; later overrides earlier).",
    )
    p.add_argument("--dump-config", action="store_true", help="Print merged config and exit.")
    p.add_argument("--dump-args", action="store_true", help="Print final parsed args and exit.")
    p.add_argument("--version", action="version", version=__version__)
    p.add_argument("-v", "--verbose", action="count", default=0, help="Verbosity: -v, -vv, -vvv")
    p.add_argument("--log-dir", dest="log_dir", default=None, help="Directory of the run log.")
    p.add_argument("--json-logs", dest="json_logs", action="store_true", default=None, help="NDJSON log output.")


def _add_source(p: argparse.ArgumentParser) -> None:
    p.add_argument("source_instance_id", nargs="?", default=None, help="PV instance to convert.")
    p.add_argument(
        "log_name",
        nargs="?",
        default=None,
        help="Run log name; the log is written to <log-dir>/<log_name>.log.",
    )


def _add_placement(p: argparse.ArgumentParser) -> None:
    g = p.add_argument_group("placement")
    g.add_argument("--region", default=None, help="EC2 region (default: us-east-1).")
    g.add_argument(
        "--availability-zone",
        dest="availability_zone",
        default=None,
        help="Zone for working volumes (default: the working instance's zone).",
    )
    g.add_argument(
        "--working-instance-id",
        dest="working_instance_id",
        default=None,
        help="Instance the working volumes attach to (default: this host, via instance metadata).",
    )
    g.add_argument("--output-dir", dest="output_dir", default=None, help="Where the block-device mapping is written.")
    g.add_argument("--no-tags", dest="tag_resources", action="store_false", default=None, help="Do not tag resources.")


def _add_devices(p: argparse.ArgumentParser) -> None:
    g = p.add_argument_group("devices")
    g.add_argument("--source-device", dest="source_device", default=None, help="Slot for the source root volume.")
    g.add_argument(
        "--destination-device", dest="destination_device", default=None, help="Slot for the destination root volume."
    )
    g.add_argument(
        "--root-device-name", dest="root_device_name", default=None, help="Root device of the registered image."
    )
    g.add_argument("--sysroot", default=None, help="Mount point used by the disk-transform tool.")
    g.add_argument(
        "--transform-command", dest="transform_command", default=None, help="Disk-transform tool executable."
    )


def _add_timing(p: argparse.ArgumentParser) -> None:
    g = p.add_argument_group("polling and throttling")
    g.add_argument("--poll-interval", dest="poll_interval_s", type=float, default=None, help="Seconds between polls.")
    g.add_argument(
        "--poll-timeout",
        dest="poll_timeout_s",
        type=float,
        default=None,
        help="Give up waiting on a resource after this many seconds (default: wait forever).",
    )
    g.add_argument("--throttle-min", dest="throttle_min_s", type=float, default=None, help="Min wait when throttled.")
    g.add_argument("--throttle-max", dest="throttle_max_s", type=float, default=None, help="Max wait when throttled.")
    g.add_argument(
        "--max-throttle-retries",
        dest="max_throttle_retries",
        type=int,
        default=None,
        help="Fail a call throttled more often than this (default: retry forever).",
    )


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="pv2hvm",
        description=c("pv2hvm: convert a paravirtual EC2 instance into an HVM image", "green", ["bold"]),
        formatter_class=HelpFormatter,
        epilog=EPILOG,
    )
    _add_global_config_logging(p)
    _add_source(p)
    _add_placement(p)
    _add_devices(p)
    _add_timing(p)
    return p


def _build_preparser() -> argparse.ArgumentParser:
    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument("--config", action="append", default=[])
    pre.add_argument("-v", "--verbose", action="count", default=0)
    pre.add_argument("--json-logs", dest="json_logs", action="store_true")
    pre.add_argument("--dump-config", action="store_true")
    pre.add_argument("--dump-args", action="store_true")
    return pre


def _load_merged_config(logger: Any, cfgs: Sequence[str]) -> Dict[str, Any]:
    if not cfgs:
        return {}
    expanded = Config.expand_configs(logger, list(cfgs))
    return Config.load_many(logger, expanded)


def parse_args_with_config(
    argv: Optional[Sequence[str]] = None,
    logger: Any = None,
) -> Tuple[argparse.Namespace, Dict[str, Any], Any]:
    """
    Phase 0: parse only the flags needed to locate config and set up logging
    Phase 1: load and merge config files
    Phase 2: apply config as parser defaults
    Phase 3: full parse; CLI flags override config
    """
    if argv is None:
        argv = sys.argv[1:]
    argv = list(argv)

    parser = build_parser()

    pre = _build_preparser()
    args0, _rest = pre.parse_known_args(argv)

    if logger is None:
        logger = Log.setup(getattr(args0, "verbose", 0), json_logs=bool(getattr(args0, "json_logs", False)))

    conf = _load_merged_config(logger, getattr(args0, "config", None) or [])

    if getattr(args0, "dump_config", False):
        print(U.json_dump(conf))
        raise SystemExit(0)

    Config.apply_as_defaults(logger, parser, conf)

    args = parser.parse_args(argv)

    if getattr(args0, "dump_args", False):
        print(U.json_dump(vars(args)))
        raise SystemExit(0)

    return args, conf, logger


def config_from_args(args: argparse.Namespace) -> MigrationConfig:
    return MigrationConfig.from_args(args)
