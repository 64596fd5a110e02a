import threading
import time
import unittest

from vc_commit_refiner.engine.executor import ConcurrentExecutor, ProgressCounter, split_unit
from vc_commit_refiner.engine.models import CommitUnit, DetailLevel, PlannedCommit, Unit
from vc_commit_refiner.engine.retry import RetryController
from vc_commit_refiner.errors import MalformedResponse, PromptTooLarge, ProviderPermanent, ProviderTransient


def make_units(count: int):
    units = []
    for i in range(count):
        planned = PlannedCommit(
            commit=CommitUnit(hash=f"{i:040x}", message=f"commit {i}"),
            position=i,
            level=DetailLevel.FULL,
            estimated_tokens=10,
        )
        units.append(Unit(index=i, commits=(planned,), estimated_tokens=10))
    return units


def make_batch(index: int, count: int) -> Unit:
    planned = tuple(unit.commits[0] for unit in make_units(count))
    return Unit(index=index, commits=planned, estimated_tokens=10 * count)


class TestConcurrentExecutor(unittest.TestCase):
    def test_in_flight_calls_never_exceed_limit(self) -> None:
        lock = threading.Lock()
        state = {"current": 0, "peak": 0}

        def invoke(unit, retry):
            with lock:
                state["current"] += 1
                state["peak"] = max(state["peak"], state["current"])
            time.sleep(0.02)
            with lock:
                state["current"] -= 1
            return unit.index, 1

        executor = ConcurrentExecutor(concurrency_limit=3)
        results = executor.run(make_units(12), invoke)

        self.assertEqual(len(results), 12)
        self.assertLessEqual(state["peak"], 3)
        self.assertGreaterEqual(state["peak"], 1)
        self.assertEqual(state["current"], 0)

    def test_results_keep_unit_order(self) -> None:
        def invoke(unit, retry):
            # Later units finish first.
            time.sleep(0.005 * (6 - unit.index))
            return f"payload-{unit.index}", 1

        results = ConcurrentExecutor(concurrency_limit=6).run(make_units(6), invoke)
        self.assertEqual([r.unit.index for r in results], list(range(6)))
        self.assertEqual([r.payload for r in results], [f"payload-{i}" for i in range(6)])

    def test_failure_is_isolated(self) -> None:
        units = make_units(5)

        def invoke(unit, retry):
            if unit.index == 2:
                raise ProviderPermanent("400 bad request")
            return [unit.index], 1

        results = ConcurrentExecutor(concurrency_limit=2).run(units, invoke)

        self.assertFalse(results[2].succeeded)
        self.assertIsInstance(results[2].error, ProviderPermanent)
        self.assertEqual(results[2].error.commit_hashes, units[2].commit_hashes)
        for i in (0, 1, 3, 4):
            self.assertTrue(results[i].succeeded)
            self.assertEqual(results[i].payload, [i])

    def test_retry_controller_is_passed_to_invoke(self) -> None:
        sleeps = []
        retry = RetryController(max_attempts=2, sleep=sleeps.append)
        calls = {"n": 0}

        def invoke(unit, retry_controller):
            def send():
                calls["n"] += 1
                if calls["n"] == 1:
                    raise ProviderTransient("timeout")
                return "ok"

            return retry_controller.call(send)

        results = ConcurrentExecutor(concurrency_limit=1, retry=retry).run(make_units(1), invoke)
        self.assertEqual(results[0].payload, "ok")
        self.assertEqual(results[0].attempts, 2)
        self.assertEqual(len(sleeps), 1)

    def test_exhausted_retries_record_attempts(self) -> None:
        retry = RetryController(max_attempts=3, sleep=lambda _s: None)

        def invoke(unit, retry_controller):
            def send():
                raise ProviderTransient("down")

            return retry_controller.call(send)

        results = ConcurrentExecutor(retry=retry).run(make_units(1), invoke)
        self.assertFalse(results[0].succeeded)
        self.assertEqual(results[0].attempts, 3)

    def test_planned_failure_is_not_invoked(self) -> None:
        planned = make_units(1)[0].commits
        failed = Unit(
            index=0,
            commits=planned,
            estimated_tokens=900,
            failure=PromptTooLarge(required_tokens=900, available_tokens=100),
        )
        invoked = []

        def invoke(unit, retry):
            invoked.append(unit.index)
            return None, 1

        results = ConcurrentExecutor().run([failed], invoke)
        self.assertEqual(invoked, [])
        self.assertIs(results[0].error, failed.failure)
        self.assertEqual(results[0].attempts, 0)

    def test_unexpected_exception_becomes_unit_failure(self) -> None:
        def invoke(unit, retry):
            if unit.index == 0:
                raise KeyError("boom")
            return "ok", 1

        results = ConcurrentExecutor().run(make_units(2), invoke)
        self.assertIsInstance(results[0].error, ProviderPermanent)
        self.assertIn("boom", results[0].error.message)
        self.assertTrue(results[1].succeeded)

    def test_progress_reports_every_unit(self) -> None:
        seen = []
        lock = threading.Lock()

        def on_progress(done, total):
            with lock:
                seen.append((done, total))

        ConcurrentExecutor(concurrency_limit=3, on_progress=on_progress).run(
            make_units(7), lambda unit, retry: (None, 1)
        )
        self.assertEqual(sorted(seen), [(i, 7) for i in range(1, 8)])

    def test_progress_callback_error_does_not_abort_run(self) -> None:
        def on_progress(done, total):
            raise RuntimeError("display broke")

        results = ConcurrentExecutor(concurrency_limit=2, on_progress=on_progress).run(
            make_units(3), lambda unit, retry: (unit.index, 1)
        )
        self.assertEqual([r.payload for r in results], [0, 1, 2])

    def test_empty_input(self) -> None:
        self.assertEqual(ConcurrentExecutor().run([], lambda unit, retry: (None, 1)), [])

    def test_invalid_limit(self) -> None:
        with self.assertRaises(ValueError):
            ConcurrentExecutor(concurrency_limit=0)


class TestFailedBatchFallback(unittest.TestCase):
    def test_failed_batch_is_retried_per_commit(self) -> None:
        batch = make_batch(0, 3)
        calls = []
        lock = threading.Lock()

        def invoke(unit, retry):
            with lock:
                calls.append(unit.commit_hashes)
            if len(unit) > 1:
                raise MalformedResponse("not yaml", "???")
            return [unit.commit_hashes[0]], 1

        results = ConcurrentExecutor().run([batch], invoke)

        self.assertEqual(calls[0], batch.commit_hashes)
        self.assertEqual(len(calls), 4)
        self.assertEqual([len(r.unit) for r in results], [1, 1, 1])
        self.assertTrue(all(r.succeeded for r in results))
        self.assertEqual([r.payload[0] for r in results], list(batch.commit_hashes))
        self.assertEqual([r.unit.first_position for r in results], [0, 1, 2])

    def test_single_commit_failure_after_split_is_isolated(self) -> None:
        batch = make_batch(0, 3)
        broken = batch.commit_hashes[1]

        def invoke(unit, retry):
            if len(unit) > 1 or unit.commit_hashes[0] == broken:
                raise ProviderPermanent("400 bad request")
            return [unit.commit_hashes[0]], 1

        results = ConcurrentExecutor().run([batch], invoke)

        self.assertEqual([r.succeeded for r in results], [True, False, True])
        self.assertEqual(results[1].error.commit_hashes, (broken,))

    def test_oversized_batch_is_not_split(self) -> None:
        batch = make_batch(0, 3)
        calls = []

        def invoke(unit, retry):
            calls.append(unit.commit_hashes)
            raise PromptTooLarge(required_tokens=120, available_tokens=100)

        results = ConcurrentExecutor().run([batch], invoke)

        self.assertEqual(len(calls), 1)
        self.assertEqual(len(results), 1)
        self.assertIsInstance(results[0].error, PromptTooLarge)
        self.assertEqual(results[0].error.commit_hashes, batch.commit_hashes)

    def test_split_unit_keeps_index_and_estimates(self) -> None:
        batch = make_batch(4, 2)
        singles = split_unit(batch)
        self.assertEqual([u.index for u in singles], [4, 4])
        self.assertEqual([u.commits for u in singles], [(p,) for p in batch.commits])
        self.assertEqual([u.estimated_tokens for u in singles], [10, 10])


class TestProgressCounter(unittest.TestCase):
    def test_counts_from_many_threads(self) -> None:
        counter = ProgressCounter(total=400)
        threads = [threading.Thread(target=lambda: [counter.increment() for _ in range(50)]) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        self.assertEqual(counter.done, 400)


if __name__ == "__main__":
    unittest.main()
