# SPDX-License-Identifier: LGPL-3.0-or-later
import pytest

from pv2hvm.transform.devices import candidate_paths, resolve_device


@pytest.mark.unit
class TestResolveDevice:
    def test_candidates_prefer_xvd(self):
        assert candidate_paths("/dev/sdp", partition=1) == ["/dev/xvdp1", "/dev/sdp1"]
        assert candidate_paths("/dev/sdh") == ["/dev/xvdh", "/dev/sdh"]

    def test_first_existing_wins(self):
        present = {"/dev/sdp1"}

        assert resolve_device("/dev/sdp", partition=1, exists=present.__contains__) == "/dev/sdp1"

    def test_waits_for_node(self):
        calls = []

        def exists(p):
            calls.append(p)
            return len(calls) > 4 and p == "/dev/xvdh"

        slept = []
        out = resolve_device("/dev/sdh", wait_s=10, interval_s=1, exists=exists, sleep=slept.append)

        assert out == "/dev/xvdh"
        assert slept == [1, 1]

    def test_gives_up(self):
        slept = []

        out = resolve_device("/dev/sdh", wait_s=3, interval_s=1, exists=lambda p: False, sleep=slept.append)

        assert out is None
        assert len(slept) == 3
