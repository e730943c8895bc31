"""CLI entrypoint for coprocs (HTTP server + demonstrations)."""
from __future__ import annotations
import argparse
import os
import pathlib
import sys
import tempfile


def build_parser():
    p = argparse.ArgumentParser(prog="coprocs", description="Line-protocol worker processes")
    sub = p.add_subparsers(dest="command")
    serve = sub.add_parser("serve", help="Start HTTP server")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--config", help="Path to coprocs.yaml (default: $COPROCS_CONFIG or ./coprocs.yaml)")
    serve.add_argument(
        "--log-dir",
        help="Directory to write log file (coprocs.log). If not set, only stderr is used.",
    )
    demo = sub.add_parser("demo", help="Run a worker demonstration and print the exchange")
    demo.add_argument("which", choices=["basic", "pool", "pipeline", "kv", "errors", "lease", "all"])
    demo.add_argument("--workers", type=int, default=3, help="(pool) number of workers")
    demo.add_argument("--tasks", type=int, default=6, help="(pool) number of tasks")
    demo.add_argument("--delay", type=float, default=0.5, help="(pool) simulated work per task in seconds")
    demo.add_argument("--max-leases", type=int, default=3, help="(lease) capacity")
    demo.add_argument("--config", help="(pipeline) take stages from this config file")
    return p


def _setup_log_dir(log_dir):
    # logging reads COPROCS_LOG_DIR when the first logger is created
    if log_dir:
        log_dir_path = pathlib.Path(log_dir)
        log_dir_path.mkdir(parents=True, exist_ok=True)
        os.environ.setdefault("COPROCS_LOG_DIR", str(log_dir_path.resolve()))


def demo_basic(_args, out=sys.stdout):
    from .core.process_manager import ProcessManager

    pm = ProcessManager()
    wh = pm.spawn_worker("echo")
    try:
        print(f"Response: {pm.request(wh, 'test message', timeout=10)}", file=out)
    finally:
        pm.terminate(wh)
        pm.release(wh)
    return 0


def demo_errors(_args, out=sys.stdout):
    from .core.process_manager import ProcessManager

    pm = ProcessManager()
    # the worker's stderr is its error channel; keep it apart from the replies
    with tempfile.TemporaryFile("w+", encoding="utf-8") as errors_log:
        wh = pm.spawn_worker("processor", stderr=errors_log)
        try:
            print("1. Normal processing:", file=out)
            print(pm.request(wh, "test1", timeout=10), file=out)
            print("2. Error case:", file=out)
            pm.send(wh, "error")
            print("3. Another normal case:", file=out)
            print(pm.request(wh, "test2", timeout=10), file=out)
            pm.send(wh, "quit")
        finally:
            pm.terminate(wh)
            pm.release(wh)
        print("4. Error log contents:", file=out)
        errors_log.seek(0)
        for line in errors_log:
            print(line.rstrip("\n"), file=out)
    return 0


def demo_pool(args, out=sys.stdout):
    from .pool import WorkerPool

    with WorkerPool.start(args.workers, delay_s=args.delay) as pool:
        for i in range(1, args.tasks + 1):
            wid = pool.submit(f"task{i}")
            print(f"task{i} -> worker {wid}", file=out)
        pool.join()
        for r in pool.results():
            print(f"worker {r.worker_id}: {r.output} ({r.latency_ms:.0f} ms)", file=out)
    return 0


def demo_pipeline(args, out=sys.stdout):
    from .core.config_loader import load_config
    from .pipeline import Pipeline

    cfg = load_config(pathlib.Path(args.config) if args.config else None)
    for line in Pipeline.build(cfg["pipeline"]["stages"]).run():
        print(f"Result: {line}", file=out)
    return 0


def demo_kv(_args, out=sys.stdout):
    from .services import KVClient

    with KVClient() as kv:
        for cmd in ["SET name John", "SET age 30", "GET name", "GET age", "GET nonexistent", "LIST"]:
            print(f"{cmd} -> {kv.request(cmd)}", file=out)
        print(f"QUIT -> {kv.quit()}", file=out)
    return 0


def demo_lease(args, out=sys.stdout):
    from .services import ResourceManagerClient

    with ResourceManagerClient(args.max_leases) as rm:
        for cmd in ["ACQUIRE", "ACQUIRE", "STATUS", "ACQUIRE", "ACQUIRE", "RELEASE res1", "STATUS"]:
            print(f"{cmd} -> {rm.request(cmd)}", file=out)
        rm.quit()
    return 0


DEMOS = {
    "basic": demo_basic,
    "pool": demo_pool,
    "pipeline": demo_pipeline,
    "kv": demo_kv,
    "errors": demo_errors,
    "lease": demo_lease,
}


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "demo":
        names = list(DEMOS) if args.which == "all" else [args.which]
        for name in names:
            print(f"== {name}")
            DEMOS[name](args)
        return 0
    if args.command != "serve":
        parser.print_help()
        return 1
    _setup_log_dir(getattr(args, "log_dir", None))
    import uvicorn
    from .server import create_app

    app = create_app(config_path=args.config)
    uvicorn.run(app, host=args.host, port=args.port)
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
