# SPDX-License-Identifier: LGPL-3.0-or-later
import pytest

from pv2hvm.core.exceptions import wrap_validation
from pv2hvm.orchestrator.state import (
    MigrationResult,
    MigrationState,
    Outcome,
    Stage,
    StageRegression,
)


@pytest.mark.unit
class TestMigrationState:
    def test_stage_order(self):
        names = [s.value for s in Stage]

        assert names[0] == "Init"
        assert names.index("ProvisionDestRootVolume") < names.index("AttachDestRootVolume")
        assert names[-2:] == ["Cleanup", "Done"]

    def test_advance_forward_and_skip(self):
        state = MigrationState(source_instance_id="i-src", working_instance_id="i-work")

        state.advance(Stage.SOURCE_PREFLIGHT)
        state.advance(Stage.CLEANUP)

        assert state.stage == Stage.CLEANUP

    def test_regression_rejected(self):
        state = MigrationState(source_instance_id="i-src", working_instance_id="i-work")
        state.advance(Stage.DISCOVER_VOLUMES)

        with pytest.raises(StageRegression):
            state.advance(Stage.CAPTURE_SOURCE_IMAGE)


@pytest.mark.unit
class TestMigrationResult:
    @pytest.mark.parametrize(
        "outcome,code",
        [
            (Outcome.SUCCEEDED, 0),
            (Outcome.FAILED_BEFORE_RESOURCES, 2),
            (Outcome.FAILED_WITH_CLEANUP, 3),
        ],
    )
    def test_exit_codes(self, outcome, code):
        assert MigrationResult(outcome=outcome, stage=Stage.DONE).exit_code == code

    def test_to_jsonable(self):
        result = MigrationResult(
            outcome=Outcome.FAILED_BEFORE_RESOURCES,
            stage=Stage.DONE,
            error=wrap_validation("already HVM"),
            failed_stage=Stage.SOURCE_PREFLIGHT,
        )

        d = result.to_jsonable()

        assert d["outcome"] == "failed-before-resources"
        assert d["failed_stage"] == "SourcePreflight"
        assert d["error"]["type"] == "ValidationFailure"
        assert d["exit_code"] == 2
