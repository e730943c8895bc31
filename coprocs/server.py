"""HTTP surface (FastAPI) over the pool, KV service, lease manager and pipeline.

Environment variables:
  COPROCS_CONFIG=path/to/coprocs.yaml   (used when no config is passed)

CLI will import this module and call create_app(). Worker processes are
started when the app is created and stopped on application shutdown.
"""
from __future__ import annotations
from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel
from typing import List, Optional, Any, Dict
from pathlib import Path

from .core.config_loader import load_config, normalize_config
from .core.errors import (
    ChannelError,
    CoprocError,
    LifecycleError,
    ProcessError,
    ProtocolError,
    ResourceExhausted,
)
from .core.logging import core_logger
from .core.worker_protocol import INVALID_RESOURCE
from .pipeline import Pipeline
from .pool import WorkerPool
from .services import KVClient, ResourceManagerClient


class TasksRequest(BaseModel):
    tasks: List[str]


class CommandRequest(BaseModel):
    command: str


class ValueRequest(BaseModel):
    value: str


class PipelineRequest(BaseModel):
    stages: Optional[List[Dict[str, Any]]] = None


def _http_error(e: CoprocError) -> HTTPException:
    if isinstance(e, ResourceExhausted):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, ProtocolError):
        code = 404 if str(e) == INVALID_RESOURCE else 400
        return HTTPException(status_code=code, detail=str(e))
    if isinstance(e, (ChannelError, ProcessError, LifecycleError)):
        return HTTPException(status_code=503, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


def create_app(config: Optional[Dict[str, Any]] = None, config_path: Optional[str] = None):
    cfg = normalize_config(config) if config is not None else load_config(Path(config_path) if config_path else None)
    timeout = cfg["timeouts"]["request_s"]
    shutdown_s = cfg["timeouts"]["shutdown_s"]

    pool = WorkerPool.start(
        cfg["pool"]["size"],
        handler=cfg["pool"]["handler"],
        delay_s=cfg["pool"]["delay_s"],
        ready_timeout=cfg["pool"]["ready_timeout_s"],
    )
    kv = KVClient(timeout=timeout)
    leases = ResourceManagerClient(cfg["leases"]["max"], timeout=timeout)
    try:
        kv.start()
        leases.start()
    except CoprocError:
        pool.shutdown(shutdown_s)
        kv.close()
        raise
    core_logger.info(
        "services ready: pool=%d worker(s) kv=pid %s leases=max %d",
        pool.size,
        kv.worker.pid if kv.worker else None,
        cfg["leases"]["max"],
    )

    app = FastAPI(title="coprocs", version="0.1.0")

    @app.on_event("shutdown")
    def _shutdown():
        core_logger.info("shutting down services")
        pool.shutdown(shutdown_s)
        kv.close()
        leases.close()

    @app.get("/health")
    def health():
        return {
            "status": "ok",
            "pool": pool.worker_states(),
            "kv": kv.state.value if kv.state else None,
            "leases": leases.state.value if leases.state else None,
        }

    # ---- pool ----------------------------------------------------------------
    @app.post("/pool/tasks")
    def submit_tasks(req: TasksRequest):
        assigned = []
        try:
            for t in req.tasks:
                assigned.append({"task": t, "worker_id": pool.submit(t)})
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except CoprocError as e:
            raise _http_error(e)
        return {"assigned": assigned}

    @app.post("/pool/join")
    def join_pool(timeout_s: float = Query(30.0, gt=0)):
        return {"drained": pool.join(timeout_s)}

    @app.get("/pool/results")
    def pool_results():
        return {
            "results": [
                {"task": r.task.payload, "worker_id": r.worker_id, "ok": r.ok, "output": r.output, "latency_ms": r.latency_ms}
                for r in pool.results()
            ],
            "lost": [t.payload for t in pool.lost()],
        }

    @app.get("/pool/stats")
    def pool_stats():
        return pool.stats()

    # ---- kv ------------------------------------------------------------------
    @app.post("/kv")
    def kv_command(req: CommandRequest):
        if "\n" in req.command:
            raise HTTPException(status_code=400, detail="command must be a single line")
        if req.command.split()[:1] == ["QUIT"]:
            raise HTTPException(status_code=400, detail="QUIT is reserved for server shutdown")
        try:
            return {"response": kv.request(req.command)}
        except CoprocError as e:
            raise _http_error(e)

    @app.put("/kv/{key}")
    def kv_set(key: str, req: ValueRequest):
        try:
            kv.set(key, req.value)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except CoprocError as e:
            raise _http_error(e)
        return {"key": key, "status": "OK"}

    @app.get("/kv/{key}")
    def kv_get(key: str):
        try:
            value = kv.get(key)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except CoprocError as e:
            raise _http_error(e)
        if value is None:
            raise HTTPException(status_code=404, detail="NOT_FOUND")
        return {"key": key, "value": value}

    @app.get("/kv")
    def kv_list():
        try:
            return {"keys": kv.list_keys()}
        except CoprocError as e:
            raise _http_error(e)

    # ---- leases --------------------------------------------------------------
    @app.post("/leases")
    def lease_acquire():
        try:
            return {"lease_id": leases.acquire()}
        except CoprocError as e:
            raise _http_error(e)

    @app.delete("/leases/{lease_id}")
    def lease_release(lease_id: str):
        try:
            leases.release(lease_id)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except CoprocError as e:
            raise _http_error(e)
        return {"lease_id": lease_id, "status": "released"}

    @app.get("/leases/status")
    def lease_status():
        try:
            st = leases.status()
        except CoprocError as e:
            raise _http_error(e)
        return {"active": st.active, "available": st.available, "capacity": st.capacity}

    # ---- pipeline ------------------------------------------------------------
    @app.post("/pipeline/run")
    def pipeline_run(req: Optional[PipelineRequest] = None):
        stages = cfg["pipeline"]["stages"]
        if req is not None and req.stages:
            if any(s.get("entrypoint") for s in req.stages):
                raise HTTPException(status_code=400, detail="custom stage entrypoints are not accepted over HTTP")
            try:
                stages = normalize_config({"pipeline": {"stages": req.stages}})["pipeline"]["stages"]
            except CoprocError as e:
                raise HTTPException(status_code=400, detail=str(e))
        try:
            lines = Pipeline.build(stages).collect()
        except CoprocError as e:
            raise _http_error(e)
        return {"stages": [s["name"] for s in stages], "lines": lines}

    @app.get("/admin/config")
    def admin_config():
        return cfg

    app.state.pool = pool
    app.state.kv = kv
    app.state.leases = leases
    app.state.config = cfg
    return app

__all__ = ["create_app"]
