import io

import pytest
from coprocs.workers.loop import serve
from coprocs.workers.task_worker import TaskWorker, greeting, load_handler


def test_task_worker_replies_done_and_stops_on_sentinel():
    out = io.StringIO()
    w = TaskWorker("2")
    serve(w, stdin=io.StringIO("task1\ntask2\nquit\ntask3\n"), stdout=out, greeting=greeting("2"))
    assert out.getvalue().splitlines() == ["READY 2", "DONE processed task1", "DONE processed task2"]
    assert w.processed == 2
    assert w.finished


def test_handler_failure_becomes_error_line():
    def boom(_payload):
        raise RuntimeError("bad input")

    w = TaskWorker("1", handler=boom)
    assert w.handle("x") == "ERROR bad input"
    assert not w.finished


def test_load_handler():
    fn = load_handler("string:capwords")
    assert fn("hello world") == "Hello World"
    assert load_handler(None)("t") == "processed t"
    with pytest.raises(ValueError):
        load_handler("no_colon")
