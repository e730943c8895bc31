import pytest
from coprocs.core.errors import LifecycleError, ProcessError, SpawnError
from coprocs.core.process_manager import WorkerState
from coprocs.pipeline import Pipeline, StageSpec

DEFAULT_STAGES = [
    {"name": "generate", "kind": "generate", "params": {"count": 5, "prefix": "data"}},
    {"name": "transform", "kind": "transform", "params": {"op": "upper"}},
    {"name": "filter", "kind": "filter", "params": {"contains": ["3", "5"]}},
]


def test_default_chain_output(manager):
    p = Pipeline.build(DEFAULT_STAGES, manager=manager)
    assert p.collect() == ["DATA3", "DATA5"]
    assert p.closed
    for wh in p.workers:
        assert wh.state is WorkerState.TERMINATED
        assert wh.channel.closed
    assert p.forwarded == [5, 5]
    assert manager.workers() == []


def test_order_preserved(manager):
    stages = [
        {"name": "gen", "kind": "generate", "params": {"count": 20}},
        {"name": "up", "kind": "transform", "params": {"op": "upper"}},
    ]
    with Pipeline.build(stages, manager=manager) as p:
        assert p.collect() == [f"DATA{i}" for i in range(1, 21)]


def test_relay_hook_can_drop_and_rewrite(manager):
    def hook(boundary, line):
        if boundary == 0 and line.endswith("2"):
            return None
        return line + "!"

    stages = [
        {"name": "gen", "kind": "generate", "params": {"count": 3}},
        {"name": "up", "kind": "transform", "params": {"op": "upper"}},
    ]
    p = Pipeline.build(stages, relay_hook=hook, manager=manager)
    assert p.collect() == ["DATA1!", "DATA3!"]
    assert p.dropped == [1]


def test_single_use(manager):
    p = Pipeline.build(DEFAULT_STAGES, manager=manager)
    p.collect()
    with pytest.raises(LifecycleError):
        p.run()


def test_abandoned_iteration_terminates_stages(manager):
    stages = [
        {"name": "gen", "kind": "generate", "params": {"count": 100000}},
        {"name": "up", "kind": "transform", "params": {"op": "upper"}},
    ]
    p = Pipeline.build(stages, manager=manager)
    it = p.run()
    assert next(it) == "DATA1"
    it.close()
    assert p.closed
    assert all(wh.state is WorkerState.TERMINATED for wh in p.workers)
    assert manager.workers() == []


def test_stage_spawn_failure_tears_down_earlier_stages(manager, tmp_path):
    stages = [
        StageSpec(name="gen", kind="generate", params={"count": 3}),
        StageSpec(name="broken", entrypoint=[str(tmp_path / "nope")]),
    ]
    with pytest.raises(SpawnError):
        Pipeline.build(stages, manager=manager)
    assert manager.workers() == []


def test_stage_command_flags(manager):
    spec = StageSpec(name="f", kind="filter", params={"contains": ["a", "b"], "invert": True, "delay_s": 0.1})
    cmd = spec.command(manager)
    assert cmd[-7:] == ["--contains", "a", "--contains", "b", "--invert", "--delay", "0.1"]


def test_crashed_tail_stage_is_reported(manager):
    stages = [
        StageSpec(name="gen", kind="generate", params={"count": 5}),
        StageSpec(name="keep", kind="filter", params={"pattern": "("}),
    ]
    p = Pipeline.build(stages, manager=manager)
    with pytest.raises(ProcessError, match="keep"):
        p.collect()
    assert p.returncodes["stage0-gen"] == 0
    assert p.returncodes["stage1-keep"] != 0
    assert [name for name, _ in p.failed_stages()] == ["stage1-keep"]
    assert manager.workers() == []


def test_crashed_head_stage_is_reported(manager):
    stages = [
        StageSpec(name="gen", kind="generate", params={"count": "many"}),
        StageSpec(name="up", kind="transform", params={"op": "upper"}),
    ]
    p = Pipeline.build(stages, manager=manager)
    with pytest.raises(ProcessError, match="gen"):
        p.collect()
    assert p.returncodes["stage0-gen"] != 0
    assert p.returncodes["stage1-up"] == 0


def test_forced_close_is_not_a_failure(manager):
    stages = [
        {"name": "gen", "kind": "generate", "params": {"count": 100000}},
        {"name": "up", "kind": "transform", "params": {"op": "upper"}},
    ]
    p = Pipeline.build(stages, manager=manager)
    it = p.run()
    next(it)
    it.close()
    assert p.failed_stages() == []


def test_context_manager_reaps_unstarted_run(manager):
    with Pipeline.build(DEFAULT_STAGES, manager=manager) as p:
        p.run()
    assert p.closed
    assert all(wh.state is WorkerState.TERMINATED for wh in p.workers)
    assert manager.workers() == []
