# SPDX-License-Identifier: LGPL-3.0-or-later
import subprocess
import tempfile
import unittest
from pathlib import Path
from unittest.mock import Mock, patch

from pv2hvm.core.exceptions import CollaboratorFailure
from pv2hvm.transform.collaborator import DiskTransform, SourceGeometry, parse_geometry


class TestParseGeometry(unittest.TestCase):
    def test_parses_key_values(self):
        out = "e2fsck 1.42\nblock_size=4096\nblock_count=524288\n"

        self.assertEqual(parse_geometry(out), SourceGeometry(4096, 524288))

    def test_missing_or_zero(self):
        self.assertIsNone(parse_geometry("block_size=4096"))
        self.assertIsNone(parse_geometry("block_size=0\nblock_count=10"))
        self.assertIsNone(parse_geometry(""))


class TestPrepareSource(unittest.TestCase):
    def setUp(self):
        self.logger = Mock()
        self.dt = DiskTransform(self.logger, command="transform-tool", sysroot="/mnt")

    @patch("pv2hvm.transform.collaborator.U.run_cmd")
    def test_success(self, run_cmd):
        run_cmd.return_value = subprocess.CompletedProcess([], 0, stdout="block_size=4096\nblock_count=100")

        geo = self.dt.prepare_source("/dev/xvdp1")

        self.assertEqual(geo, SourceGeometry(4096, 100))
        cmd = run_cmd.call_args.args[1]
        self.assertEqual(cmd, ["transform-tool", "prepare-source", "--source", "/dev/xvdp1", "--mount", "/mnt"])

    @patch("pv2hvm.transform.collaborator.U.run_cmd")
    def test_nonzero_exit(self, run_cmd):
        run_cmd.return_value = subprocess.CompletedProcess([], 8, stdout="fsck failed")

        with self.assertRaises(CollaboratorFailure) as cm:
            self.dt.prepare_source("/dev/xvdp1")

        self.assertEqual(cm.exception.code, 3)
        self.assertEqual(cm.exception.context["rc"], 8)

    @patch("pv2hvm.transform.collaborator.U.run_cmd")
    def test_missing_geometry(self, run_cmd):
        run_cmd.return_value = subprocess.CompletedProcess([], 0, stdout="ok")

        with self.assertRaises(CollaboratorFailure):
            self.dt.prepare_source("/dev/xvdp1")

    @patch("pv2hvm.transform.collaborator.U.run_cmd", side_effect=FileNotFoundError("transform-tool"))
    def test_missing_tool(self, _run_cmd):
        with self.assertRaises(CollaboratorFailure):
            self.dt.prepare_source("/dev/xvdp1")


class TestPartitionAndCopy(unittest.TestCase):
    def setUp(self):
        self.sleep = Mock()

    @patch("pv2hvm.transform.collaborator.subprocess.Popen")
    def test_polls_liveness_until_exit(self, popen):
        proc = popen.return_value
        proc.pid = 4242
        proc.poll.side_effect = [None, None, 0]
        proc.returncode = 0
        dt = DiskTransform(Mock(), command="transform-tool", sleep=self.sleep)

        dt.partition_and_copy("/dev/xvdp1", "/dev/xvdh", SourceGeometry(4096, 100))

        self.assertEqual(self.sleep.call_count, 2)
        self.sleep.assert_called_with(5.0)
        cmd = popen.call_args.args[0]
        self.assertEqual(cmd[:2], ["transform-tool", "partition-and-copy"])
        self.assertIn("--block-count", cmd)
        self.assertEqual(cmd[cmd.index("--block-size") + 1], "4096")

    @patch("pv2hvm.transform.collaborator.subprocess.Popen")
    def test_failed_copy(self, popen):
        proc = popen.return_value
        proc.pid = 1
        proc.poll.return_value = 1
        proc.returncode = 1
        dt = DiskTransform(Mock(), sleep=self.sleep)

        with self.assertRaises(CollaboratorFailure):
            dt.partition_and_copy("/dev/xvdp1", "/dev/xvdh", SourceGeometry(4096, 100))

    @patch("pv2hvm.transform.collaborator.subprocess.Popen")
    def test_output_goes_to_run_log(self, popen):
        proc = popen.return_value
        proc.pid = 1
        proc.poll.return_value = 0
        proc.returncode = 0
        with tempfile.TemporaryDirectory() as td:
            log = Path(td) / "run.log"
            dt = DiskTransform(Mock(), log_file=str(log), sleep=self.sleep)

            dt.partition_and_copy("/dev/xvdp1", "/dev/xvdh", SourceGeometry(4096, 100))

            self.assertEqual(popen.call_args.kwargs["stderr"], subprocess.STDOUT)
            self.assertTrue(log.exists())


class TestRelease(unittest.TestCase):
    @patch("pv2hvm.transform.collaborator.U.run_cmd")
    def test_failure_only_warns(self, run_cmd):
        run_cmd.return_value = subprocess.CompletedProcess([], 32, stdout="not mounted")
        logger = Mock()

        DiskTransform(logger, command="t").release()

        run_cmd.assert_called_once()
        self.assertEqual(run_cmd.call_args.args[1], ["t", "release", "--mount", "/mnt"])
        logger.warning.assert_called_once()


if __name__ == "__main__":
    unittest.main()
