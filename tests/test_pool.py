import sys
from collections import Counter

import pytest
from coprocs.core.errors import LifecycleError, ProcessError, SpawnError
from coprocs.core.process_manager import WorkerState
from coprocs.core.worker_protocol import Task
from coprocs.pool import RoundRobin, WorkerPool


def test_round_robin_spreads_evenly_when_all_idle():
    rr = RoundRobin(3)
    picks = [rr.pick([True, True, True]) for _ in range(6)]
    assert picks == [0, 1, 2, 0, 1, 2]
    assert Counter(picks) == {0: 2, 1: 2, 2: 2}


def test_round_robin_skips_busy_and_prefers_lowest_after_wait():
    rr = RoundRobin(3)
    assert rr.pick([True, True, True]) == 0
    assert rr.pick([False, False, True]) == 2
    assert rr.pick([False, False, False]) is None
    assert rr.pick([False, True, True], prefer_lowest=True) == 1


@pytest.mark.parametrize("n", [1, 2, 4])
def test_start_then_shutdown_releases_everything(manager, n):
    pool = WorkerPool.start(n, manager=manager)
    assert pool.worker_states() == {str(i): "idle" for i in range(1, n + 1)}
    pool.shutdown()
    for wh in pool.workers():
        assert wh.state is WorkerState.TERMINATED
        assert wh.channel.closed
        assert wh.process.returncode == 0
        assert wh.history[-1] is WorkerState.TERMINATING
    assert manager.workers() == []
    # second call is a no-op
    pool.shutdown()


def test_six_tasks_over_three_workers(manager):
    with WorkerPool.start(3, manager=manager) as pool:
        assigned = [pool.submit(f"task{i}") for i in range(1, 7)]
        assert pool.join(timeout=30)
        results = pool.results()
    assert len(results) == 6
    assert sorted(r.task.payload for r in results) == [f"task{i}" for i in range(1, 7)]
    assert all(r.ok and r.output == f"processed {r.task.payload}" for r in results)
    # every worker received work while tasks were queued
    assert set(assigned) == {"1", "2", "3"}
    assert pool.lost() == []
    stats = pool.stats()
    assert stats["__aggregate__"]["completed"] == 6
    assert sum(stats[w]["assigned"] for w in ("1", "2", "3")) == 6


def test_six_tasks_split_two_per_worker_with_simulated_work(manager):
    with WorkerPool.start(3, manager=manager, delay_s=0.2) as pool:
        assigned = [pool.submit(f"task{i}") for i in range(1, 7)]
        assert pool.join(timeout=30)
    assert Counter(assigned) == {"1": 2, "2": 2, "3": 2}
    assert assigned[:3] == ["1", "2", "3"]
    assert len(pool.results()) == 6


def test_submit_blocks_until_a_worker_is_idle(manager):
    with WorkerPool.start(2, manager=manager, delay_s=0.2) as pool:
        for i in range(5):
            pool.submit(f"t{i}")
        assert pool.join(timeout=30)
        assert len(pool.results()) == 5


def test_custom_handler_and_failures(manager):
    with WorkerPool.start(1, manager=manager, handler="json:loads") as pool:
        pool.submit("[1, 2]")
        pool.submit("not json")
        pool.join(timeout=30)
        results = pool.results()
    assert results[0].ok and results[0].output == "[1, 2]"
    assert not results[1].ok
    assert pool.stats()["1"]["failed"] == 1


def test_partial_start_failure_tears_down(manager, tmp_path):
    def factory(index):
        if index == 3:
            return [str(tmp_path / "missing-binary")]
        return manager.build_command("pool") + ["--worker-id", str(index)]

    with pytest.raises(SpawnError):
        WorkerPool.start(3, manager=manager, entrypoint_factory=factory)
    assert manager.workers() == []


def test_worker_crash_loses_task_without_retry(manager):
    crash = "import sys; print('READY 1', flush=True); sys.stdin.readline(); sys.exit(3)"

    def factory(index):
        if index == 1:
            return [sys.executable, "-c", crash]
        return manager.build_command("pool") + ["--worker-id", str(index)]

    pool = WorkerPool.start(2, manager=manager, entrypoint_factory=factory)
    try:
        assert pool.submit("doomed") == "1"
        assert pool.join(timeout=30)
        assert pool.lost() == [Task("doomed")]
        assert pool.worker_states()["1"] == "terminated"
        assert pool.submit("next") == "2"
        pool.join(timeout=30)
        assert [r.task.payload for r in pool.results()] == ["next"]
    finally:
        pool.shutdown()
    assert pool.workers()[0].channel.closed


def test_no_live_workers_raises(manager):
    crash = "import sys; print('READY 1', flush=True); sys.stdin.readline()"
    pool = WorkerPool.start(1, manager=manager, entrypoint_factory=lambda i: [sys.executable, "-c", crash])
    try:
        pool.submit("a")
        pool.join(timeout=30)
        with pytest.raises(ProcessError):
            pool.submit("b")
    finally:
        pool.shutdown()


def test_submit_rules(manager):
    pool = WorkerPool.start(1, manager=manager)
    with pytest.raises(ValueError):
        pool.submit("quit")
    pool.shutdown()
    with pytest.raises(LifecycleError):
        pool.submit("late")
    with pytest.raises(ValueError):
        WorkerPool.start(0, manager=manager)
