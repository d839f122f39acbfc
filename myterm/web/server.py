import asyncio
import logging
from functools import partial
from typing import Any, Callable, Dict, Iterable, Optional

from starlette.applications import Starlette
from starlette.exceptions import HTTPException
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route, WebSocketRoute
from starlette.websockets import WebSocket, WebSocketDisconnect

from myterm.local.config import effective_settings as config
from myterm.local.project_config import ConfigError
from myterm.local.supervisor import (AlreadyRunning, NotRunning, SpawnFailed, SupervisorClosed, SupervisorError,
                                     UnknownProcess, WriteFailed, make_key)
from myterm.local.supervisor.errors import InvalidConfig, SignalFailed
from myterm.local.workspace import UnknownProject, Workspace
from myterm.web.middleware import LocalOnlyMiddleware, SecurityHeadersMiddleware, is_local_client
from myterm.web.middleware.security import LOOPBACK_HOSTS

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    UnknownProcess: 404,
    AlreadyRunning: 409,
    NotRunning: 409,
    WriteFailed: 409,
    SpawnFailed: 422,
    InvalidConfig: 422,
    SupervisorClosed: 503,
    SignalFailed: 500,
}


#* --- Error Handling ---
def error_response(code: str, detail: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": code, "detail": detail}, status_code=status_code)


async def supervisor_error_handler(request: Request, exc: SupervisorError) -> JSONResponse:
    status_code = ERROR_STATUS.get(type(exc), 500)
    logger.debug(f"{request.method} {request.url.path} failed with {exc.code}: {exc}")
    return error_response(exc.code, str(exc), status_code)


async def config_error_handler(request: Request, exc: ConfigError) -> JSONResponse:
    return error_response("invalid_config", str(exc), 422)


async def unknown_project_handler(request: Request, exc: UnknownProject) -> JSONResponse:
    return error_response("unknown_project", str(exc), 404)


async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return error_response("bad_request" if exc.status_code == 400 else "http_error", exc.detail, exc.status_code)


#* --- Helpers ---
def _workspace(request) -> Workspace:
    return request.app.state.workspace


async def _run_blocking(func: Callable, *args, **kwargs) -> Any:
    """Runs a blocking supervisor call off the event loop."""
    return await asyncio.get_running_loop().run_in_executor(None, partial(func, *args, **kwargs))


async def _json_body(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Request body must be JSON.")
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object.")
    return body


def _require(data, field: str) -> str:
    value = data.get(field)
    if not value or not isinstance(value, str):
        raise HTTPException(status_code=400, detail=f"'{field}' is required.")
    return value


def _resolve_project(workspace: Workspace, ref: str, allow_unopened: bool = False) -> str:
    try:
        return workspace.find_project(ref)
    except UnknownProject:
        # Processes started ad hoc live in the supervisor without an open project.
        path = make_key(ref, "").project_path
        if allow_unopened or workspace.supervisor.registry.entries(path):
            return path
        raise


#* --- Projects ---
async def list_projects(request: Request) -> JSONResponse:
    return JSONResponse({"projects": _workspace(request).list_projects()})


async def open_project(request: Request) -> JSONResponse:
    workspace = _workspace(request)
    body = await _json_body(request)
    project_path = _require(body, "project_path")
    if body.get("init"):
        project = await _run_blocking(workspace.init_project, project_path)
    else:
        project = await _run_blocking(workspace.open_project, project_path, bool(body.get("autostart", True)))
    path = workspace.find_project(project_path)
    return JSONResponse({"project_path": path, "project": project.to_dict()}, status_code=201)


async def close_project(request: Request) -> JSONResponse:
    workspace = _workspace(request)
    ref = request.query_params.get("project")
    if not ref:
        raise HTTPException(status_code=400, detail="'project' is required.")
    project = await _run_blocking(workspace.close_project, ref)
    return JSONResponse({"closed": project.name})


#* --- Processes ---
async def list_processes(request: Request) -> JSONResponse:
    workspace = _workspace(request)
    ref = request.query_params.get("project")
    path = _resolve_project(workspace, ref) if ref else None
    processes = workspace.supervisor.list_processes(path)
    return JSONResponse({"processes": [p.to_dict() for p in processes]})


async def start_process(request: Request) -> JSONResponse:
    workspace = _workspace(request)
    body = await _json_body(request)
    command = body.get("command")
    path = _resolve_project(workspace, _require(body, "project_path"), allow_unopened=command is not None)
    autorestart = body.get("autorestart")
    info = await _run_blocking(
        workspace.supervisor.start, path, _require(body, "process_name"),
        command=command, autorestart=None if autorestart is None else bool(autorestart),
    )
    return JSONResponse(info.to_dict())


async def stop_process(request: Request) -> JSONResponse:
    workspace = _workspace(request)
    body = await _json_body(request)
    path = _resolve_project(workspace, _require(body, "project_path"))
    name = _require(body, "process_name")
    status = await _run_blocking(workspace.supervisor.stop, path, name)
    return JSONResponse({"project_path": path, "process_name": name, "status": status.value})


async def restart_process(request: Request) -> JSONResponse:
    workspace = _workspace(request)
    body = await _json_body(request)
    path = _resolve_project(workspace, _require(body, "project_path"))
    info = await _run_blocking(workspace.supervisor.restart, path, _require(body, "process_name"))
    return JSONResponse(info.to_dict())


async def write_input(request: Request) -> JSONResponse:
    workspace = _workspace(request)
    body = await _json_body(request)
    path = _resolve_project(workspace, _require(body, "project_path"))
    data = body.get("input")
    if not isinstance(data, str):
        raise HTTPException(status_code=400, detail="'input' must be a string.")
    written = await _run_blocking(workspace.supervisor.write_input, path, _require(body, "process_name"), data)
    return JSONResponse({"written": written})


async def process_logs(request: Request) -> JSONResponse:
    workspace = _workspace(request)
    path = _resolve_project(workspace, _require(request.query_params, "project"))
    name = _require(request.query_params, "name")
    lines = request.query_params.get("lines")
    try:
        limit = int(lines) if lines is not None else None
    except ValueError:
        raise HTTPException(status_code=400, detail="'lines' must be an integer.")
    key = make_key(path, name)
    if key not in workspace.supervisor.registry:
        raise UnknownProcess(key)
    return JSONResponse({"project_path": path, "process_name": name, "lines": workspace.log_buffer.lines(key, limit)})


#* --- Settings ---
async def get_settings(request: Request) -> JSONResponse:
    return JSONResponse(config.modifiable())


async def update_setting(request: Request) -> JSONResponse:
    body = await _json_body(request)
    key, value = body.get("key"), body.get("value")
    if not key or value is None:
        raise HTTPException(status_code=400, detail="'key' and 'value' are required.")
    success, message = config.update_setting(str(key).upper(), value)
    if not success:
        return error_response("update_failed", message, 400)
    return JSONResponse({"status": "success", "message": message})


#* --- Events ---
async def _wait_for_close(websocket: WebSocket) -> None:
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect" or message.get("text") == "close":
            return


async def events_endpoint(websocket: WebSocket) -> None:
    """Pushes every log and status event as JSON until the client disconnects."""
    if not is_local_client(websocket, websocket.app.state.allowed_hosts):
        await websocket.close(code=1008)
        return

    workspace = _workspace(websocket)
    project_filter = websocket.query_params.get("project")
    project_path = _resolve_project(workspace, project_filter, allow_unopened=True) if project_filter else None

    loop = asyncio.get_running_loop()
    events: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue()

    def forward(event) -> None:
        if project_path is None or event.project_path == project_path:
            loop.call_soon_threadsafe(events.put_nowait, event.to_dict())

    # Subscribe before accepting so nothing published after the handshake is missed.
    unsubscribes = [workspace.supervisor.logs.subscribe(forward), workspace.supervisor.statuses.subscribe(forward)]
    await websocket.accept()
    logger.info(f"Event stream opened for {websocket.client.host if websocket.client else 'unknown'}")
    closer = asyncio.ensure_future(_wait_for_close(websocket))
    try:
        while True:
            getter = asyncio.ensure_future(events.get())
            done, _ = await asyncio.wait({getter, closer}, return_when=asyncio.FIRST_COMPLETED)
            if closer in done:
                getter.cancel()
                break
            await websocket.send_json(getter.result())
    except WebSocketDisconnect:
        pass
    finally:
        for unsubscribe in unsubscribes:
            unsubscribe()
        closer.cancel()
        logger.info("Event stream closed.")


#* --- Application ---
def create_app(workspace: Workspace, allowed_hosts: Optional[Iterable[str]] = None) -> Starlette:
    """
    Builds the control API application for a workspace.

    :param workspace: The workspace whose projects and processes are exposed.
    :param allowed_hosts: Client addresses accepted; defaults to loopback only.
    """
    allowed = frozenset(allowed_hosts) if allowed_hosts is not None else LOOPBACK_HOSTS
    routes = [
        Route("/api/projects", endpoint=list_projects, methods=["GET"]),
        Route("/api/projects", endpoint=open_project, methods=["POST"]),
        Route("/api/projects", endpoint=close_project, methods=["DELETE"]),
        Route("/api/processes", endpoint=list_processes, methods=["GET"]),
        Route("/api/processes/start", endpoint=start_process, methods=["POST"]),
        Route("/api/processes/stop", endpoint=stop_process, methods=["POST"]),
        Route("/api/processes/restart", endpoint=restart_process, methods=["POST"]),
        Route("/api/processes/input", endpoint=write_input, methods=["POST"]),
        Route("/api/processes/logs", endpoint=process_logs, methods=["GET"]),
        Route("/api/config", endpoint=get_settings, methods=["GET"]),
        Route("/api/config", endpoint=update_setting, methods=["POST"]),
        WebSocketRoute("/api/events", endpoint=events_endpoint),
    ]
    middleware = [
        Middleware(LocalOnlyMiddleware, allowed_hosts=allowed),
        Middleware(SecurityHeadersMiddleware),
    ]
    exception_handlers = {
        SupervisorError: supervisor_error_handler,
        ConfigError: config_error_handler,
        UnknownProject: unknown_project_handler,
        HTTPException: http_error_handler,
    }
    app = Starlette(debug=False, routes=routes, middleware=middleware, exception_handlers=exception_handlers)
    app.state.workspace = workspace
    app.state.allowed_hosts = allowed
    return app
