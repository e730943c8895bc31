"""Subprocess worker entrypoint.

Usage (one worker kind per process, stdin -> stdout, one line each way):
    python -m coprocs.core.worker_entry pool --worker-id 1 [--handler mod:fn] [--delay 0.5]
    python -m coprocs.core.worker_entry echo
    python -m coprocs.core.worker_entry processor
    python -m coprocs.core.worker_entry kv
    python -m coprocs.core.worker_entry lease --max 3
    python -m coprocs.core.worker_entry generate --count 5 --prefix data
    python -m coprocs.core.worker_entry transform --op upper
    python -m coprocs.core.worker_entry filter --contains 3 --contains 5

stdout carries protocol lines only; progress and log output go to stderr.
"""
from __future__ import annotations

import argparse
import re
import sys
from typing import Callable, Dict, List, Optional

from .logging import get_logger
from ..workers.kv_store import KVStore
from ..workers.lease_table import LeaseTable
from ..workers.loop import serve
from ..workers.processors import Echo, Processor
from ..workers.stages import TRANSFORMS, Filter, Transform, generate_lines, run_generator
from ..workers.task_worker import TaskWorker, greeting, load_handler

logger = get_logger("coprocs.worker.entry")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="coprocs-worker", description="coprocs line worker")
    sub = p.add_subparsers(dest="kind", required=True)
    pool = sub.add_parser("pool", help="Pool task worker")
    pool.add_argument("--worker-id", default="1")
    pool.add_argument("--handler", default=None, help="Task handler as module:function")
    pool.add_argument("--delay", type=float, default=0.0, help="Simulated work per task (seconds)")
    sub.add_parser("echo", help="Answer each line with 'PROC: <line>'")
    sub.add_parser("processor", help="Answer 'Processed: <line>'; report bad input on stderr only")
    sub.add_parser("kv", help="Key-value request/response service")
    lease = sub.add_parser("lease", help="Resource lease manager")
    lease.add_argument("--max", type=int, default=3, dest="max_leases")
    gen = sub.add_parser("generate", help="Emit <prefix><n> lines then exit")
    gen.add_argument("--count", type=int, default=5)
    gen.add_argument("--prefix", default="data")
    gen.add_argument("--start", type=int, default=1)
    gen.add_argument("--delay", type=float, default=0.0)
    tr = sub.add_parser("transform", help="Transform each input line")
    tr.add_argument("--op", choices=sorted(TRANSFORMS), default="upper")
    tr.add_argument("--text", default="")
    flt = sub.add_parser("filter", help="Forward only matching lines")
    flt.add_argument("--contains", action="append", default=[])
    flt.add_argument("--pattern", default=None)
    flt.add_argument("--invert", action="store_true")
    return p


def run_pool(args) -> int:
    worker = TaskWorker(args.worker_id, handler=load_handler(args.handler), delay_s=args.delay)
    return serve(worker, greeting=greeting(args.worker_id))


def run_echo(_args) -> int:
    return serve(Echo())


def run_processor(_args) -> int:
    return serve(Processor())


def run_kv(_args) -> int:
    return serve(KVStore())


def run_lease(args) -> int:
    return serve(LeaseTable(args.max_leases))


def run_generate(args) -> int:
    return run_generator(generate_lines(args.count, prefix=args.prefix, start=args.start), delay_s=args.delay)


def run_transform(args) -> int:
    return serve(Transform(args.op, args.text))


def run_filter(args) -> int:
    return serve(Filter(args.contains, pattern=args.pattern, invert=args.invert))


HANDLERS: Dict[str, Callable[[argparse.Namespace], int]] = {
    "pool": run_pool,
    "echo": run_echo,
    "processor": run_processor,
    "kv": run_kv,
    "lease": run_lease,
    "generate": run_generate,
    "transform": run_transform,
    "filter": run_filter,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return HANDLERS[args.kind](args)
    except (ValueError, TypeError, ImportError, AttributeError, re.error) as e:
        # bad worker parameters (handler spec, transform op, filter pattern)
        logger.error(f"{args.kind} worker could not start: {e}")
        return 2
    except BrokenPipeError:
        # driver went away; nothing left to report to
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
