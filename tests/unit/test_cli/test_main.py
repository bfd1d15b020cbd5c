# SPDX-License-Identifier: LGPL-3.0-or-later
import tempfile
import unittest
from pathlib import Path
from unittest.mock import Mock, patch

import requests

from pv2hvm.__main__ import main, resolve_working_host
from pv2hvm.config.loader import MigrationConfig
from pv2hvm.core.exceptions import ConfigError
from pv2hvm.orchestrator.state import MigrationResult, Outcome, Stage


class TestResolveWorkingHost(unittest.TestCase):
    def test_configured_values_win(self):
        md = Mock()
        cfg = MigrationConfig(source_instance_id="i", working_instance_id="i-w", availability_zone="az")

        resolve_working_host(cfg, Mock(), md)

        md.instance_id.assert_not_called()

    def test_reads_metadata(self):
        md = Mock()
        md.instance_id.return_value = "i-work"
        md.availability_zone.return_value = "us-east-1a"
        cfg = MigrationConfig(source_instance_id="i")

        resolve_working_host(cfg, Mock(), md)

        self.assertEqual(cfg.working_instance_id, "i-work")
        self.assertEqual(cfg.availability_zone, "us-east-1a")

    def test_zone_falls_back(self):
        md = Mock()
        md.availability_zone.side_effect = requests.ConnectionError("no imds")
        cfg = MigrationConfig(source_instance_id="i", working_instance_id="i-w")

        resolve_working_host(cfg, Mock(), md)

        self.assertEqual(cfg.availability_zone, "us-east-1d")

    def test_missing_working_instance_is_config_error(self):
        md = Mock()
        md.instance_id.side_effect = requests.ConnectionError("no imds")

        with self.assertRaises(ConfigError):
            resolve_working_host(MigrationConfig(source_instance_id="i"), Mock(), md)


class TestMain(unittest.TestCase):
    def setUp(self):
        self._td = tempfile.TemporaryDirectory()
        self.dir = Path(self._td.name)
        self.base = [
            "--log-dir", str(self.dir / "log"),
            "--output-dir", str(self.dir / "out"),
            "--working-instance-id", "i-work",
            "--availability-zone", "us-east-1d",
        ]

    def tearDown(self):
        self._td.cleanup()

    def test_missing_source_exits_2(self):
        with self.assertRaises(SystemExit) as cm:
            main(self.base)

        self.assertEqual(cm.exception.code, 2)

    @patch("pv2hvm.__main__.build_orchestrator")
    def test_exit_code_comes_from_outcome(self, build):
        build.return_value.run.return_value = MigrationResult(
            outcome=Outcome.FAILED_WITH_CLEANUP, stage=Stage.DONE, failed_stage=Stage.ATTACH_DEST_ROOT_VOLUME
        )

        with self.assertRaises(SystemExit) as cm:
            main(["i-src"] + self.base)

        self.assertEqual(cm.exception.code, 3)
        self.assertTrue((self.dir / "out" / "i-src-report.json").exists())
        self.assertTrue((self.dir / "log" / "default.log").exists())

    @patch("pv2hvm.__main__.build_orchestrator")
    def test_interrupt_exits_130(self, build):
        build.return_value.run.side_effect = KeyboardInterrupt()

        with self.assertRaises(SystemExit) as cm:
            main(["i-src"] + self.base)

        self.assertEqual(cm.exception.code, 130)


if __name__ == "__main__":
    unittest.main()
