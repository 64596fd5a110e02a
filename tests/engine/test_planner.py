import unittest

from vc_commit_refiner.engine.budget import TokenBudget, validate_prompt
from vc_commit_refiner.engine.detail import estimate_commit
from vc_commit_refiner.engine.models import CommitUnit, DetailLevel, FileStat
from vc_commit_refiner.engine.planner import (
    PROMPT_ENVELOPE_OVERHEAD_TOKENS,
    BinPackingStrategy,
    PlanMode,
    capacity_for,
    plan,
)
from vc_commit_refiner.errors import PromptTooLarge
from vc_commit_refiner.llm.tasks import AmendTask, CheckTask


def make_commit(index: int, diff_lines: int = 10, files=None) -> CommitUnit:
    diff = "".join("+" + "y" * 78 + "\n" for _ in range(diff_lines))
    if files is None:
        files = (FileStat(f"pkg/file_{index:03d}.py", added=diff_lines, removed=0),)
    return CommitUnit(
        hash=f"{index:040x}",
        message=f"change number {index:03d}",
        files=tuple(files),
        diff_loader=lambda: diff,
    )


def budget_with_capacity(capacity: int, overhead: int = 0) -> TokenBudget:
    return TokenBudget(
        max_context_tokens=capacity + overhead + PROMPT_ENVELOPE_OVERHEAD_TOKENS,
        reserved_output_tokens=0,
    )


def flatten(units):
    return [planned.commit.hash for unit in units for planned in unit.commits]


class TestCapacity(unittest.TestCase):
    def test_capacity_subtracts_overheads(self) -> None:
        budget = TokenBudget(max_context_tokens=10000, reserved_output_tokens=2000)
        self.assertEqual(capacity_for(budget, 300), 8000 - 300 - PROMPT_ENVELOPE_OVERHEAD_TOKENS)

    def test_capacity_never_negative(self) -> None:
        budget = TokenBudget(max_context_tokens=100, reserved_output_tokens=0)
        self.assertEqual(capacity_for(budget, 500), 0)


class TestPerCommitPlanning(unittest.TestCase):
    def test_one_unit_per_commit_in_order(self) -> None:
        commits = [make_commit(i) for i in range(9)]
        units = plan(commits, budget_with_capacity(5000))
        self.assertEqual(len(units), 9)
        self.assertEqual([u.index for u in units], list(range(9)))
        self.assertEqual(flatten(units), [c.hash for c in commits])
        for unit in units:
            self.assertEqual(len(unit), 1)
            self.assertIsNone(unit.failure)
            self.assertEqual(unit.levels, (DetailLevel.FULL,))

    def test_large_commit_is_reduced(self) -> None:
        commits = [make_commit(0, diff_lines=5), make_commit(1, diff_lines=2000)]
        units = plan(commits, budget_with_capacity(3000))
        self.assertEqual(units[0].levels, (DetailLevel.FULL,))
        self.assertEqual(units[1].levels, (DetailLevel.TRUNCATED,))
        self.assertLessEqual(units[1].estimated_tokens, 3000)

    def test_empty_input(self) -> None:
        self.assertEqual(plan([], budget_with_capacity(1000)), [])
        self.assertEqual(plan([], budget_with_capacity(1000), mode=PlanMode.BATCH), [])


class TestBatchPlanning(unittest.TestCase):
    def test_equal_commits_pack_three_per_bin(self) -> None:
        commits = [make_commit(i, diff_lines=20) for i in range(9)]
        size = estimate_commit(commits[0], DetailLevel.FULL)
        for commit in commits:
            self.assertEqual(estimate_commit(commit, DetailLevel.FULL), size)

        units = plan(commits, budget_with_capacity(3 * size + 10), mode=PlanMode.BATCH)

        self.assertEqual(len(units), 3)
        self.assertEqual(
            [list(unit.commit_hashes) for unit in units],
            [[c.hash for c in commits[i:i + 3]] for i in (0, 3, 6)],
        )
        for unit in units:
            self.assertEqual(unit.estimated_tokens, 3 * size)

    def test_every_commit_planned_once_within_capacity(self) -> None:
        sizes = [5, 120, 40, 3, 90, 60, 15, 200, 1, 75, 33, 8]
        commits = [make_commit(i, diff_lines=n) for i, n in enumerate(sizes)]
        capacity = 4000
        units = plan(commits, budget_with_capacity(capacity), mode=PlanMode.BATCH)

        hashes = flatten(units)
        self.assertEqual(sorted(hashes), sorted(c.hash for c in commits))
        self.assertEqual(len(hashes), len(set(hashes)))
        for unit in units:
            self.assertIsNone(unit.failure)
            self.assertLessEqual(unit.estimated_tokens, capacity)
            positions = [p.position for p in unit.commits]
            self.assertEqual(positions, sorted(positions))
        firsts = [unit.first_position for unit in units]
        self.assertEqual(firsts, sorted(firsts))
        self.assertLess(len(units), len(commits))

    def test_max_batch_size_caps_bins(self) -> None:
        commits = [make_commit(i, diff_lines=1) for i in range(5)]
        units = plan(commits, budget_with_capacity(10000), mode=PlanMode.BATCH, max_batch_size=2)
        self.assertEqual([len(u) for u in units], [2, 2, 1])
        self.assertEqual(flatten(units), [c.hash for c in commits])

    def test_oversized_commit_is_reduced_inside_bin(self) -> None:
        commits = [make_commit(0, diff_lines=2), make_commit(1, diff_lines=3000)]
        units = plan(commits, budget_with_capacity(5000), mode=PlanMode.BATCH)
        levels = {p.commit.hash: p.level for u in units for p in u.commits}
        self.assertIs(levels[commits[1].hash], DetailLevel.TRUNCATED)
        for unit in units:
            self.assertLessEqual(unit.estimated_tokens, 5000)

    def test_separator_is_charged_between_commits(self) -> None:
        commits = [make_commit(i, diff_lines=20) for i in range(6)]
        size = estimate_commit(commits[0], DetailLevel.FULL)
        separator = 2

        exact = plan(
            commits, budget_with_capacity(3 * size + 2 * separator), mode=PlanMode.BATCH, separator_tokens=separator
        )
        self.assertEqual([len(u) for u in exact], [3, 3])
        for unit in exact:
            self.assertEqual(unit.estimated_tokens, 3 * size + 2 * separator)

        short = plan(
            commits, budget_with_capacity(3 * size + 2 * separator - 1), mode=PlanMode.BATCH, separator_tokens=separator
        )
        self.assertEqual([len(u) for u in short], [2, 2, 2])

    def test_invalid_batch_size(self) -> None:
        with self.assertRaises(ValueError):
            BinPackingStrategy(0)


class TestUnfittableCommits(unittest.TestCase):
    def huge_commit(self, index: int) -> CommitUnit:
        files = [FileStat(f"vendor/lib_{i:04d}/generated_bindings_file.c", 5, 5) for i in range(300)]
        return make_commit(index, diff_lines=10, files=files)

    def check_isolated(self, mode: PlanMode) -> None:
        commits = [make_commit(0), self.huge_commit(1), make_commit(2)]
        units = plan(commits, budget_with_capacity(400), mode=mode)

        failed = [u for u in units if u.failure is not None]
        self.assertEqual(len(failed), 1)
        self.assertEqual(failed[0].commit_hashes, (commits[1].hash,))
        self.assertIsInstance(failed[0].failure, PromptTooLarge)
        self.assertEqual(failed[0].failure.available_tokens, 400)
        self.assertEqual(sorted(flatten(units)), sorted(c.hash for c in commits))
        for unit in units:
            if unit.failure is None:
                self.assertLessEqual(unit.estimated_tokens, 400)

    def test_isolated_in_per_commit_mode(self) -> None:
        self.check_isolated(PlanMode.CONCURRENT)

    def test_isolated_in_batch_mode(self) -> None:
        self.check_isolated(PlanMode.BATCH)


class TestPackedPromptsFitBudget(unittest.TestCase):
    def small_commits(self, count: int):
        return [
            CommitUnit(
                hash=f"{i:040x}",
                message=f"tweak {i}",
                files=(FileStat(f"src/m{i}.py", added=1, removed=0),),
            )
            for i in range(count)
        ]

    def check_prompts_fit(self, task) -> None:
        budget = TokenBudget(max_context_tokens=12000, reserved_output_tokens=1000, model="fake")
        units = plan(
            self.small_commits(400),
            budget,
            mode=PlanMode.BATCH,
            overhead_tokens=task.overhead_tokens(),
            max_batch_size=1000,
            separator_tokens=task.separator_tokens(),
        )
        self.assertGreater(max(len(unit) for unit in units), 100)
        for unit in units:
            self.assertIsNone(unit.failure)
            estimate = validate_prompt(*task.build_prompts(unit), budget)
            self.assertLessEqual(estimate.estimated_tokens, budget.available_input_tokens)

    def test_amend_prompts_fit(self) -> None:
        self.check_prompts_fit(AmendTask())

    def test_check_prompts_fit(self) -> None:
        self.check_prompts_fit(CheckTask())


if __name__ == "__main__":
    unittest.main()
