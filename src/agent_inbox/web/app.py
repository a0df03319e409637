"""Read-only web dashboard API over the task store."""

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse
from starlette.routing import Route

from agent_inbox.config import get_config
from agent_inbox.core import tasks as tasks_mod
from agent_inbox.db.engine import init_db
from agent_inbox.db.models import TaskStatus
from agent_inbox.display import SECTION_ORDER, task_dict
from agent_inbox.errors import StoreUnavailableError
from agent_inbox.web.dashboard import get_dashboard_html


def _get_db():
    config = get_config()
    return init_db(config.db_path)


def _unavailable(e: Exception) -> JSONResponse:
    return JSONResponse({"error": str(e)}, status_code=503)


# ── Handlers ──────────────────────────────────────────────────────────────────


async def index(request: Request):
    return HTMLResponse(get_dashboard_html())


async def api_list_tasks(request: Request):
    status_filter = request.query_params.get("status")
    if status_filter and status_filter not in {s.value for s in TaskStatus}:
        return JSONResponse({"error": f"Unknown status: {status_filter}"}, status_code=400)
    try:
        db = _get_db()
    except StoreUnavailableError as e:
        return _unavailable(e)
    try:
        tasks = tasks_mod.list_tasks(db, status=status_filter)
        return JSONResponse([task_dict(t) for t in tasks])
    finally:
        db.close()


async def api_get_task(request: Request):
    task_id = request.path_params["task_id"]
    try:
        db = _get_db()
    except StoreUnavailableError as e:
        return _unavailable(e)
    try:
        task = tasks_mod.get_task(db, task_id)
        if not task:
            return JSONResponse({"error": "Task not found"}, status_code=404)
        return JSONResponse(task_dict(task))
    finally:
        db.close()


async def api_summary(request: Request):
    try:
        db = _get_db()
    except StoreUnavailableError as e:
        return _unavailable(e)
    try:
        tasks = tasks_mod.list_tasks(db)
        counts = {s.value: 0 for s in SECTION_ORDER}
        for t in tasks:
            counts[t.status.value] += 1
        return JSONResponse({"counts": counts, "total": len(tasks)})
    finally:
        db.close()


# ── App ───────────────────────────────────────────────────────────────────────


def create_app() -> Starlette:
    routes = [
        Route("/", index),
        Route("/api/tasks", api_list_tasks),
        Route("/api/tasks/{task_id}", api_get_task),
        Route("/api/summary", api_summary),
    ]
    return Starlette(routes=routes)


def run_server(host: str = "127.0.0.1", port: int = 8787):
    app = create_app()
    uvicorn.run(app, host=host, port=port)
