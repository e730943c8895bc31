import io
from types import SimpleNamespace

import pytest
from coprocs.cli import DEMOS, build_parser, demo_basic, demo_errors, demo_kv, demo_lease, demo_pool, main


def test_cli_parser_defaults():
    parser = build_parser()
    args = parser.parse_args(["serve"])
    assert (args.host, args.port, args.config) == ("127.0.0.1", 8000, None)
    args = parser.parse_args(["demo", "pool", "--workers", "2"])
    assert args.which == "pool" and args.workers == 2 and args.tasks == 6
    with pytest.raises(SystemExit):
        parser.parse_args(["demo", "nope"])


def test_no_command_prints_help(capsys):
    assert main([]) == 1
    assert "usage: coprocs" in capsys.readouterr().out


def test_demo_kv_transcript():
    out = io.StringIO()
    assert demo_kv(SimpleNamespace(), out=out) == 0
    lines = out.getvalue().splitlines()
    assert lines[0] == "SET name John -> OK"
    assert "GET name -> VALUE John" in lines
    assert "GET nonexistent -> NOT_FOUND" in lines
    assert lines[-1] == "QUIT -> BYE"


def test_demo_lease_transcript():
    out = io.StringIO()
    demo_lease(SimpleNamespace(max_leases=3), out=out)
    lines = out.getvalue().splitlines()
    assert lines[4] == "ACQUIRE -> ERROR Resource limit reached"
    assert "RELEASE res1 -> OK Released res1" in lines
    assert lines[-1] == "STATUS -> INFO Active: 2, Available: 1"


def test_demo_pool_transcript():
    out = io.StringIO()
    demo_pool(SimpleNamespace(workers=2, tasks=4, delay=0.0), out=out)
    lines = out.getvalue().splitlines()
    assert lines[:2] == ["task1 -> worker 1", "task2 -> worker 2"]
    assert sum(1 for l in lines if ": processed task" in l) == 4


def test_demo_basic_echo():
    out = io.StringIO()
    assert demo_basic(SimpleNamespace(), out=out) == 0
    assert out.getvalue().splitlines() == ["Response: PROC: test message"]


def test_demo_errors_keeps_bad_input_on_stderr():
    out = io.StringIO()
    assert demo_errors(SimpleNamespace(), out=out) == 0
    lines = out.getvalue().splitlines()
    log_start = lines.index("4. Error log contents:")
    replies, error_log = lines[:log_start], lines[log_start + 1:]
    assert [l for l in replies if l.startswith("Processed")] == ["Processed: test1", "Processed: test2"]
    assert not any("Invalid input" in l for l in replies)
    assert len(error_log) == 1 and "ERROR Invalid input" in error_log[0]


def test_all_original_demos_registered():
    assert list(DEMOS) == ["basic", "pool", "pipeline", "kv", "errors", "lease"]
    assert build_parser().parse_args(["demo", "errors"]).which == "errors"
