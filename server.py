"""GuiaFlow HTTP control surface.

Endpoints:
    GET  /healthz  liveness check, no auth
    GET  /status   current/last run and its ledger entries
    GET  /history  sent/skip/error entries across runs, newest last
    POST /run      start a distribution (send) run in the background
    POST /inbox    start an intake run in the background

When API keys or a run token are configured, every endpoint except /healthz
requires one of them: an API key as the ``x-api-key`` header or the
``api_key`` query parameter, or the token as the ``x-run-token`` header or
the ``token`` query parameter.

With CRON_SCHEDULE set, send runs also fire in-process on that schedule
(evaluated in GuiaFlow.timezone) for as long as the app is served.
"""

import dataclasses
import logging
from contextlib import asynccontextmanager
from typing import Callable, List, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from guiaflow import GuiaFlow, __version__
from guiaflow.errors import RunInProgressError
from storage import StorageDriver, create_storage
from workflows.run_log import RunLog
from workflows.runner import RunGuard, intake_job, run_pipeline, send_job
from workflows.schedule import create_scheduler

logger = logging.getLogger(__name__)


def _provided_api_key(request: Request) -> str:
    header_key = (request.headers.get("x-api-key") or "").strip()
    if header_key:
        return header_key
    for name in ("api_key", "apiKey", "apikey"):
        value = (request.query_params.get(name) or "").strip()
        if value:
            return value
    return ""


def _provided_run_token(request: Request) -> str:
    token = (request.headers.get("x-run-token") or "").strip()
    return token or (request.query_params.get("token") or "").strip()


def create_app(guard: Optional[RunGuard] = None, run_log: Optional[RunLog] = None,
               driver_factory: Optional[Callable[[], StorageDriver]] = None,
               registry=None, mailer=None,
               api_keys: Optional[List[str]] = None,
               run_token: Optional[str] = None,
               cron_schedule: Optional[str] = None) -> FastAPI:
    """Build the FastAPI app.

    Args:
        guard: Shared run guard; a new one when omitted
        run_log: Run log; one under GuiaFlow.data_dir when omitted
        driver_factory: Creates the storage driver for each run
        registry: Client registry for send runs (configured one when omitted)
        mailer: Mail backend for send runs (configured one when omitted)
        api_keys: Accepted keys; GuiaFlow.api_keys when omitted
        run_token: Accepted run token; GuiaFlow.run_token when omitted
        cron_schedule: Crontab expression for scheduled sends;
            GuiaFlow.cron_schedule when omitted, empty = no scheduler

    With neither keys nor a token the endpoints are open.
    """
    guard = guard or RunGuard()
    run_log = run_log or RunLog.from_config()
    driver_factory = driver_factory or (lambda: create_storage(GuiaFlow.storage))
    keys = list(GuiaFlow.api_keys if api_keys is None else api_keys)
    token = GuiaFlow.run_token if run_token is None else run_token
    cron = GuiaFlow.cron_schedule if cron_schedule is None else cron_schedule

    if not keys and not token:
        logger.warning("No API_KEYS or RUN_TOKEN configured; the control endpoints are open")

    def build_job(kind: str) -> Callable[[], object]:
        driver = driver_factory()
        if kind == "send":
            return send_job(driver, run_log, registry=registry, mailer=mailer)
        return intake_job(driver, run_log)

    scheduler = None
    if cron:
        try:
            scheduler = create_scheduler(cron, guard, run_log, lambda: build_job("send"),
                                         GuiaFlow.timezone)
        except (ValueError, LookupError) as e:
            logger.error("Invalid CRON_SCHEDULE %r, scheduler disabled: %s", cron, e)
            cron = ""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if scheduler is not None:
            scheduler.start()
            logger.info("Scheduled sends on %r (%s)", cron, GuiaFlow.timezone)
        try:
            yield
        finally:
            if scheduler is not None:
                scheduler.shutdown(wait=False)

    app = FastAPI(title="GuiaFlow", version=__version__, lifespan=lifespan)
    app.state.guard = guard
    app.state.run_log = run_log
    app.state.scheduler = scheduler

    def require_api_key(request: Request) -> None:
        if not keys and not token:
            return
        provided = _provided_api_key(request)
        if provided and provided in keys:
            return
        if token and _provided_run_token(request) == token:
            return
        logger.warning("Missing or invalid API key or run token for %s from %s",
                       request.url.path, request.client.host if request.client else "?")
        raise HTTPException(status_code=401, detail="unauthorized")

    def run_in_background(kind: str, job: Callable[[], object]) -> None:
        try:
            run_pipeline(kind, run_log, job)
        except Exception as e:
            # run_pipeline already logged and recorded it
            logger.debug("Background %s run ended with %s", kind, type(e).__name__)
        finally:
            guard.release()

    def start_run(kind: str, background_tasks: BackgroundTasks) -> JSONResponse:
        try:
            guard.acquire(kind)
        except RunInProgressError as e:
            return JSONResponse(status_code=409,
                                content={"error": "already_running", "active": e.active_kind})
        try:
            job = build_job(kind)
        except Exception as e:
            guard.release()
            logger.error("Cannot start %s run: %s", kind, e)
            return JSONResponse(status_code=503, content={"error": "not_configured", "detail": str(e)})

        background_tasks.add_task(run_in_background, kind, job)
        return JSONResponse(status_code=202, content={"status": "started", "kind": kind})

    @app.get("/healthz", response_class=PlainTextResponse)
    def healthz() -> str:
        return "ok"

    @app.get("/status", dependencies=[Depends(require_api_key)])
    def status() -> dict:
        last = run_log.get_last_run()
        return {
            "running": guard.running or last.running,
            "active_kind": guard.active_kind,
            "kind": last.kind,
            "started_at": last.started_at,
            "finished_at": last.finished_at,
            "error": last.error,
            "stale": last.stale,
            "cron": cron or None,
            "entries": [dataclasses.asdict(e) for e in last.entries],
        }

    @app.get("/history", dependencies=[Depends(require_api_key)])
    def history(limit: int = Query(50, ge=0)) -> dict:
        return {"entries": [dataclasses.asdict(e) for e in run_log.read_history(limit=limit)]}

    @app.post("/run", dependencies=[Depends(require_api_key)])
    def run(background_tasks: BackgroundTasks) -> JSONResponse:
        return start_run("send", background_tasks)

    @app.post("/inbox", dependencies=[Depends(require_api_key)])
    def inbox(background_tasks: BackgroundTasks) -> JSONResponse:
        return start_run("intake", background_tasks)

    return app


def serve(host: Optional[str] = None, port: Optional[int] = None,
          guard: Optional[RunGuard] = None) -> None:
    """Run the control surface with uvicorn until interrupted."""
    import uvicorn

    host = host or GuiaFlow.host
    port = port or GuiaFlow.port
    logger.info("Starting HTTP control surface on %s:%d", host, port)
    uvicorn.run(create_app(guard=guard), host=host, port=port, log_config=None)
