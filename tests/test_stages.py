import io

import pytest
from coprocs.workers.loop import serve
from coprocs.workers.stages import Filter, Transform, generate_lines, run_generator


def test_generate_lines():
    assert list(generate_lines(3)) == ["data1", "data2", "data3"]
    assert list(generate_lines(2, prefix="x", start=5)) == ["x5", "x6"]


def test_run_generator_writes_each_line():
    out = io.StringIO()
    run_generator(generate_lines(2), stdout=out)
    assert out.getvalue() == "data1\ndata2\n"


def test_transform_ops():
    assert Transform("upper").handle("data1") == "DATA1"
    assert Transform("reverse").handle("abc") == "cba"
    assert Transform("prefix", "> ").handle("x") == "> x"
    with pytest.raises(ValueError):
        Transform("rot13")


def test_filter_drops_but_keeps_order():
    out = io.StringIO()
    serve(Filter(["3", "5"]), stdin=io.StringIO("DATA1\nDATA3\nDATA4\nDATA5\n"), stdout=out)
    assert out.getvalue().splitlines() == ["DATA3", "DATA5"]


def test_filter_pattern_and_invert():
    f = Filter(pattern=r"\d{2}$", invert=True)
    assert f.handle("data7") == "data7"
    assert f.handle("data12") is None
    assert Filter().handle("anything") == "anything"
