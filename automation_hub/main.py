"""
FastAPI Main Application - Automation Hub scheduler
"""
import logging
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse, Response
from fastapi.staticfiles import StaticFiles
from pydantic import Field

from .agents.connection import WebSocketConnection
from .config import settings
from .errors import CaseNotFoundError, DispatchError, ExecutionNotFoundError, SchedulerError
from .models import Step, TestCase, WireModel
from .scheduler import TESTCASE_CHANGED, Scheduler
from .storage import InMemoryRecordStore, JsonFileRecordStore, RecordStore


logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger("automation_hub")


def create_store() -> RecordStore:
    if settings.STORE_BACKEND == "memory":
        return InMemoryRecordStore()
    return JsonFileRecordStore(settings.DATA_DIR)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # A scheduler placed on app.state beforehand is used as-is
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is None:
        scheduler = Scheduler(create_store())
        app.state.scheduler = scheduler
    await scheduler.start()
    logger.info(f"{settings.APP_NAME} started, max concurrency {scheduler.queue.max_concurrency}")
    try:
        yield
    finally:
        await scheduler.shutdown()
        app.state.scheduler = None


app = FastAPI(
    title=settings.APP_NAME,
    description="Queue, dispatch and track UI automation test executions",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Generated reports are served statically
app.mount("/reports", StaticFiles(directory=str(settings.REPORTS_DIR), check_dir=False), name="reports")


@app.middleware("http")
async def log_requests(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:8]
    start = time.perf_counter()
    response = await call_next(request)
    elapsed = (time.perf_counter() - start) * 1000
    logger.info(f"[{request_id}] {request.method} {request.url.path} -> {response.status_code} ({elapsed:.1f}ms)")
    response.headers["x-request-id"] = request_id
    return response


def get_scheduler(request: Request) -> Scheduler:
    return request.app.state.scheduler


def raise_http(error: SchedulerError):
    """Map scheduler errors to HTTP status codes."""
    if isinstance(error, (CaseNotFoundError, ExecutionNotFoundError)):
        raise HTTPException(status_code=404, detail=str(error))
    if isinstance(error, DispatchError):
        raise HTTPException(status_code=409, detail=str(error))
    raise HTTPException(status_code=400, detail=str(error))


# Request Models
class CaseRequest(WireModel):
    id: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    platform: Optional[str] = None
    context: Optional[str] = None
    steps: Optional[List[Step]] = None


class ExecuteRequest(WireModel):
    target_agent_id: Optional[str] = None


class BatchExecuteRequest(WireModel):
    case_ids: List[Any] = Field(default_factory=list)


class RunRawRequest(WireModel):
    platform: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    context: Optional[str] = None
    steps: Optional[List[Dict[str, Any]]] = None
    target_agent_id: Optional[str] = None


# API Endpoints
@app.get("/health")
@app.get("/api/health")
async def health_check(request: Request):
    """Health check endpoint"""
    scheduler = get_scheduler(request)
    return {
        "ok": True,
        "timestamp": datetime.now().isoformat(),
        "running": scheduler.queue.running_count,
        "queued": scheduler.queue.queued_count,
        "agents": len(scheduler.registry),
    }


@app.get("/api/agents")
async def list_agents(request: Request):
    return {"data": [agent.to_wire() for agent in get_scheduler(request).registry.list()]}


@app.get("/api/testcases")
async def list_testcases(request: Request):
    cases = await get_scheduler(request).store.list_cases()
    return {"data": [case.to_wire() for case in cases]}


@app.post("/api/testcases")
async def save_testcase(request: Request, body: CaseRequest):
    """
    Create a test case, or overwrite one when ``id`` names an existing case.
    Run state (status, last run, last report) is preserved on overwrite.
    """
    scheduler = get_scheduler(request)
    case_id = body.id or str(uuid.uuid4())
    existing = await scheduler.store.get_case(case_id)
    platform = body.platform if body.platform in ("web", "android", "ios") else None

    case = TestCase(
        id=case_id,
        name=body.name or "",
        description=body.description or "",
        platform=platform or (existing.platform if existing else "web"),
        context=body.context,
        steps=body.steps or [],
        status=existing.status if existing else "idle",
        last_run_at=existing.last_run_at if existing else None,
        last_report_path=existing.last_report_path if existing else None,
    )
    saved = await scheduler.store.save_case(case)
    await scheduler.notifier.publish(TESTCASE_CHANGED, saved.to_wire())
    return {"data": saved.to_wire()}


@app.put("/api/testcases/{case_id}")
async def update_testcase(request: Request, case_id: str, body: CaseRequest):
    scheduler = get_scheduler(request)
    case = await scheduler.store.get_case(case_id)
    if case is None:
        raise HTTPException(status_code=404, detail="Test case not found")

    patch = {}
    if body.name:
        patch["name"] = body.name
    if body.description:
        patch["description"] = body.description
    if body.platform in ("web", "android", "ios"):
        patch["platform"] = body.platform
    if "context" in body.model_fields_set:
        patch["context"] = body.context
    if body.steps is not None:
        patch["steps"] = body.steps

    updated = await scheduler.store.save_case(case.model_copy(update=patch))
    await scheduler.notifier.publish(TESTCASE_CHANGED, updated.to_wire())
    return {"data": updated.to_wire()}


@app.delete("/api/testcases/{case_id}", status_code=204)
async def delete_testcase(request: Request, case_id: str):
    if not await get_scheduler(request).store.delete_case(case_id):
        raise HTTPException(status_code=404, detail="Test case not found")
    return Response(status_code=204)


@app.get("/api/executions")
async def list_executions(
    request: Request,
    page: int = Query(1, ge=1),
    page_size: int = Query(1000, ge=1, alias="pageSize"),
    case_id: Optional[str] = Query(None, alias="caseId")
):
    store = get_scheduler(request).store
    executions = await store.list_executions(case_id=case_id, limit=page_size, offset=(page - 1) * page_size)
    return {
        "data": [e.to_wire() for e in executions],
        "total": await store.count_executions(case_id),
        "page": page,
        "pageSize": page_size,
    }


@app.get("/api/executions/{execution_id}")
async def get_execution(request: Request, execution_id: str):
    execution = await get_scheduler(request).store.get_execution(execution_id)
    if execution is None:
        raise HTTPException(status_code=404, detail="Execution not found")
    return {"data": execution.to_wire()}


@app.get("/api/executions/{execution_id}/report")
async def get_execution_report(request: Request, execution_id: str):
    execution = await get_scheduler(request).store.get_execution(execution_id)
    if execution is None:
        raise HTTPException(status_code=404, detail="Execution not found")
    if not execution.report_path:
        raise HTTPException(status_code=404, detail="Report not generated yet or generation failed")
    return RedirectResponse(url=f"/reports/{execution.report_path}")


@app.post("/api/execute/{case_id}")
async def execute_testcase(request: Request, case_id: str, body: Optional[ExecuteRequest] = None):
    """Queue one execution of a test case, optionally pinned to an agent."""
    target = body.target_agent_id if body else None
    try:
        execution = await get_scheduler(request).submit(case_id, target)
    except SchedulerError as e:
        raise_http(e)
    return {"data": execution.to_wire()}


@app.post("/api/batch-execute")
async def batch_execute(request: Request, body: BatchExecuteRequest):
    case_ids = [case_id for case_id in body.case_ids if isinstance(case_id, str)]
    try:
        batch_id, executions = await get_scheduler(request).submit_batch(case_ids)
    except SchedulerError as e:
        raise_http(e)
    return {"data": {"batchId": batch_id, "executions": [e.to_wire() for e in executions]}}


@app.post("/api/run-raw")
async def run_raw(request: Request, body: RunRawRequest):
    """Save and run an ad-hoc case built from the request body."""
    try:
        execution = await get_scheduler(request).submit_raw(
            platform=body.platform,
            steps=body.steps or [],
            name=body.name,
            description=body.description,
            context=body.context,
            target_agent_id=body.target_agent_id,
        )
    except SchedulerError as e:
        raise_http(e)
    return {"data": execution.to_wire()}


@app.post("/api/stop-execution/{execution_id}")
async def stop_execution(request: Request, execution_id: str):
    try:
        stopped = await get_scheduler(request).stop(execution_id)
    except SchedulerError as e:
        raise_http(e)
    if not stopped:
        raise HTTPException(status_code=404, detail="Execution not found or already finished")
    return {"ok": True}


@app.post("/api/admin/stop-all")
async def stop_all(request: Request):
    count = await get_scheduler(request).stop_all()
    return {"data": {"count": count}}


@app.post("/api/admin/reset-status")
async def reset_status(request: Request):
    count = await get_scheduler(request).reset_orphaned()
    return {"data": {"count": count}}


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    Shared socket for observers and agents. Observers receive change
    events; a connection that sends REGISTER becomes an agent.
    """
    await websocket.accept()
    hub = websocket.app.state.scheduler.hub
    connection = WebSocketConnection(websocket)
    await hub.connect(connection)
    try:
        while True:
            await hub.handle(connection, await websocket.receive_text())
    except WebSocketDisconnect:
        logger.info(f"Connection {connection.connection_id} closed")
    finally:
        await hub.disconnect(connection)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)
