# SPDX-License-Identifier: LGPL-3.0-or-later
import tempfile
from pathlib import Path
from unittest.mock import Mock

import pytest

from pv2hvm.cli.parser import build_parser, config_from_args, parse_args_with_config


@pytest.mark.unit
class TestParser:
    def test_positional_source_and_log_name(self):
        args = build_parser().parse_args(["i-src", "web01"])

        assert args.source_instance_id == "i-src"
        assert args.log_name == "web01"

    def test_config_from_args_keeps_dataclass_defaults(self):
        cfg = config_from_args(build_parser().parse_args(["i-src"]))

        assert cfg.source_instance_id == "i-src"
        assert cfg.region == "us-east-1"
        assert cfg.log_name == "default"
        assert cfg.tag_resources is True
        assert cfg.json_logs is False

    def test_flags(self):
        args = build_parser().parse_args(
            ["i-src", "--poll-timeout", "600", "--max-throttle-retries", "20", "--no-tags", "-vv"]
        )
        cfg = config_from_args(args)

        assert cfg.poll_timeout_s == 600.0
        assert cfg.max_throttle_retries == 20
        assert cfg.tag_resources is False
        assert cfg.verbose == 2


@pytest.mark.unit
class TestParseWithConfig:
    def test_cli_overrides_config(self):
        with tempfile.TemporaryDirectory() as td:
            conf = Path(td) / "site.yaml"
            conf.write_text("region: eu-west-1\nsource_instance_id: i-from-config\nsysroot: /srv/mnt\n")

            args, merged, _ = parse_args_with_config(
                ["--config", str(conf), "--region", "us-west-2"], logger=Mock()
            )

        cfg = config_from_args(args)
        assert merged["region"] == "eu-west-1"
        assert cfg.region == "us-west-2"
        assert cfg.source_instance_id == "i-from-config"
        assert cfg.sysroot == "/srv/mnt"

    def test_dump_config_exits(self, capsys):
        with tempfile.TemporaryDirectory() as td:
            conf = Path(td) / "site.yaml"
            conf.write_text("region: eu-west-1\n")

            with pytest.raises(SystemExit) as ei:
                parse_args_with_config(["--config", str(conf), "--dump-config"], logger=Mock())

        assert ei.value.code == 0
        assert '"region": "eu-west-1"' in capsys.readouterr().out
