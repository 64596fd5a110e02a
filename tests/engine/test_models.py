import unittest

from vc_commit_refiner.engine.models import (
    CommitUnit,
    DetailLevel,
    PlannedCommit,
    RunReport,
    Unit,
    UnitResult,
)
from vc_commit_refiner.errors import MalformedResponse, PromptTooLarge


def make_unit(index: int, positions) -> Unit:
    planned = tuple(
        PlannedCommit(
            commit=CommitUnit(hash=f"{p:040x}", message=f"commit {p}"),
            position=p,
            level=DetailLevel.FULL,
            estimated_tokens=10,
        )
        for p in positions
    )
    return Unit(index=index, commits=planned, estimated_tokens=10 * len(planned))


class TestDetailLevel(unittest.TestCase):
    def test_reduction_chain(self) -> None:
        self.assertIs(DetailLevel.FULL.reduced(), DetailLevel.TRUNCATED)
        self.assertIs(DetailLevel.TRUNCATED.reduced(), DetailLevel.STAT_ONLY)
        self.assertIs(DetailLevel.STAT_ONLY.reduced(), DetailLevel.FILE_LIST_ONLY)
        self.assertIsNone(DetailLevel.FILE_LIST_ONLY.reduced())


class TestCommitUnit(unittest.TestCase):
    def test_diff_is_loaded_lazily(self) -> None:
        calls = []

        def loader():
            calls.append(1)
            return "diff text"

        commit = CommitUnit(hash="a" * 40, message="fix: thing\n\nbody", diff_loader=loader)
        self.assertEqual(calls, [])
        self.assertEqual(commit.diff(), "diff text")
        self.assertEqual(commit.short_hash, "aaaaaaa")
        self.assertEqual(commit.subject, "fix: thing")

    def test_defaults(self) -> None:
        commit = CommitUnit(hash="b" * 40, message="")
        self.assertEqual(commit.diff(), "")
        self.assertEqual(commit.subject, "")


class TestUnitResult(unittest.TestCase):
    def test_describe_failure_includes_shortfall(self) -> None:
        unit = make_unit(0, [3])
        error = PromptTooLarge(required_tokens=150, available_tokens=100)
        result = UnitResult(unit=unit, error=error)
        text = result.describe_failure()
        self.assertFalse(result.succeeded)
        self.assertIn("[prompt_too_large]", text)
        self.assertIn(f"{3:040x}"[:7], text)
        self.assertIn("short by 50 tokens", text)

    def test_describe_failure_for_malformed_response(self) -> None:
        unit = make_unit(0, [1, 2])
        result = UnitResult(unit=unit, error=MalformedResponse("not yaml", "raw"))
        text = result.describe_failure()
        self.assertIn("[malformed_response]", text)
        self.assertIn("not yaml", text)
        self.assertNotIn("short by", text)

    def test_success_has_no_description(self) -> None:
        result = UnitResult(unit=make_unit(0, [0]), payload=[], attempts=1)
        self.assertTrue(result.succeeded)
        self.assertEqual(result.describe_failure(), "")

    def test_with_payload_keeps_attempts(self) -> None:
        result = UnitResult(unit=make_unit(0, [0]), payload=["a"], attempts=2)
        replaced = result.with_payload(["b"])
        self.assertEqual(replaced.payload, ["b"])
        self.assertEqual(replaced.attempts, 2)


class TestRunReport(unittest.TestCase):
    def test_from_results_orders_by_first_commit(self) -> None:
        late = UnitResult(unit=make_unit(0, [4, 5]), payload=[])
        early = UnitResult(unit=make_unit(1, [0, 6]), payload=[])
        failed = UnitResult(unit=make_unit(2, [2]), error=MalformedResponse("x"))
        report = RunReport.from_results([late, failed, early])
        self.assertEqual([r.unit.index for r in report], [1, 2, 0])
        self.assertEqual(report.succeeded, 2)
        self.assertEqual(report.failed, 1)
        self.assertEqual(report.failures(), [failed])
        self.assertEqual(len(report), 3)

    def test_commits_in_input_order(self) -> None:
        report = RunReport.from_results(
            [
                UnitResult(unit=make_unit(0, [1, 3]), payload=[]),
                UnitResult(unit=make_unit(1, [0, 2]), payload=[]),
            ]
        )
        self.assertEqual([c.hash for c in report.commits()], [f"{p:040x}" for p in range(4)])

    def test_result_for(self) -> None:
        result = UnitResult(unit=make_unit(0, [7]), payload=[])
        report = RunReport.from_results([result])
        self.assertIs(report.result_for(f"{7:040x}"), result)
        self.assertIsNone(report.result_for("f" * 40))

    def test_empty_report(self) -> None:
        report = RunReport()
        self.assertEqual(len(report), 0)
        self.assertEqual(report.succeeded, 0)
        self.assertFalse(report.coherence_applied)


if __name__ == "__main__":
    unittest.main()
