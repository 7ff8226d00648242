"""FastAPI REST API and live channel for the shared task manager.

Every route except /auth/* and /health requires ``Authorization: Bearer
<token>``. Service errors (errors.TaskManagerError) become ``{"error": ...}``
responses with the matching status code.
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Path, Query, Request, WebSocket
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import analytics
import auth
import db
import notification_service
import user_service
from errors import TaskManagerError
from live_channel import ConnectionHub
from notification_service import NotificationService
from schemas import (
    AnalyticsSummary,
    AuthResponse,
    LoginRequest,
    MarkReadRequest,
    MessageResponse,
    NotificationList,
    ParticipantProgress,
    PasswordChange,
    Principal,
    ProfileUpdate,
    ProgressUpdate,
    RegisterRequest,
    ShareRequest,
    StatusShare,
    TaskCreate,
    TaskPayload,
    TaskUpdate,
    TrendReport,
    UnreadCount,
    UserRead,
)
from task_service import TaskService

logger = logging.getLogger(__name__)

CLIENT_ORIGIN = os.environ.get("CLIENT_ORIGIN", "http://localhost:5173")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create schema and wire hub -> notifications -> tasks; close live connections on exit."""
    db.init_db()
    hub = ConnectionHub(unread_count=notification_service.get_unread_count)
    notifications = NotificationService(hub)
    app.state.hub = hub
    app.state.notifications = notifications
    app.state.tasks = TaskService(notifications)
    try:
        yield
    finally:
        await hub.close()


app = FastAPI(title="Shared Tasks API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[CLIENT_ORIGIN],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


@app.exception_handler(TaskManagerError)
def handle_service_error(request: Request, exc: TaskManagerError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
def handle_bad_request(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    detail = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse({"error": detail}, status_code=400)


@app.exception_handler(Exception)
def log_unhandled_exception(request: Request, exc: Exception):
    """Log every unhandled exception so 500s show up in the terminal."""
    logger.exception("Unhandled exception for %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse({"error": "Internal server error"}, status_code=500)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_principal(request: Request) -> Principal:
    """Require a valid bearer token; raises Unauthorized (401) otherwise."""
    return auth.verify_token(auth.bearer_token(request.headers.get("authorization")))


def get_tasks(request: Request) -> TaskService:
    return request.app.state.tasks


def get_notifications(request: Request) -> NotificationService:
    return request.app.state.notifications


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(body: RegisterRequest) -> AuthResponse:
    user, token = user_service.register_user(body.username, body.email, body.password)
    return AuthResponse(user=user, token=token)


@app.post("/auth/login", response_model=AuthResponse)
def login(body: LoginRequest) -> AuthResponse:
    user, token = user_service.login(body.email, body.password)
    return AuthResponse(user=user, token=token)


@app.get("/profile", response_model=UserRead)
def get_profile(principal: Principal = Depends(get_principal)) -> UserRead:
    return user_service.get_profile(principal.id)


@app.put("/profile", response_model=UserRead)
def update_profile(body: ProfileUpdate, principal: Principal = Depends(get_principal)) -> UserRead:
    return user_service.update_profile(principal.id, body.username, body.email)


@app.put("/profile/password", response_model=MessageResponse)
def change_password(body: PasswordChange, principal: Principal = Depends(get_principal)) -> MessageResponse:
    user_service.change_password(principal.id, body.password)
    return MessageResponse(message="Password updated successfully")


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


@app.get("/tasks", response_model=list[TaskPayload])
async def list_tasks(
    principal: Principal = Depends(get_principal),
    tasks: TaskService = Depends(get_tasks),
) -> list[TaskPayload]:
    """Tasks the caller owns or participates in, newest first."""
    return await tasks.list_tasks_for_viewer(principal)


@app.get("/tasks/{task_id}", response_model=TaskPayload)
async def get_task(
    task_id: int = Path(le=notification_service.MAX_ROW_ID),
    principal: Principal = Depends(get_principal),
    tasks: TaskService = Depends(get_tasks),
) -> TaskPayload:
    return await tasks.get_task(task_id, principal)


@app.post("/tasks", response_model=TaskPayload, status_code=201)
async def create_task(
    body: TaskCreate,
    principal: Principal = Depends(get_principal),
    tasks: TaskService = Depends(get_tasks),
) -> TaskPayload:
    return await tasks.create_task(principal, body)


@app.put("/tasks/{task_id}", response_model=TaskPayload)
async def update_task(
    body: TaskUpdate,
    task_id: int = Path(le=notification_service.MAX_ROW_ID),
    principal: Principal = Depends(get_principal),
    tasks: TaskService = Depends(get_tasks),
) -> TaskPayload:
    """Partial update: only the fields present in the body are applied."""
    return await tasks.update_task(task_id, principal, body.model_dump(exclude_unset=True))


@app.delete("/tasks/{task_id}", response_model=MessageResponse)
async def delete_task(
    task_id: int = Path(le=notification_service.MAX_ROW_ID),
    principal: Principal = Depends(get_principal),
    tasks: TaskService = Depends(get_tasks),
) -> MessageResponse:
    await tasks.delete_task(task_id, principal)
    return MessageResponse(message="Task deleted successfully")


@app.post("/tasks/{task_id}/share", response_model=TaskPayload, status_code=201)
async def share_task(
    body: ShareRequest,
    task_id: int = Path(le=notification_service.MAX_ROW_ID),
    principal: Principal = Depends(get_principal),
    tasks: TaskService = Depends(get_tasks),
) -> TaskPayload:
    return await tasks.share_task(task_id, principal, body.identifier or body.email, body.accessLevel)


@app.put("/tasks/{task_id}/progress", response_model=TaskPayload)
async def update_progress(
    body: ProgressUpdate,
    task_id: int = Path(le=notification_service.MAX_ROW_ID),
    principal: Principal = Depends(get_principal),
    tasks: TaskService = Depends(get_tasks),
) -> TaskPayload:
    return await tasks.update_progress(task_id, principal, body.status)


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


@app.get("/notifications", response_model=NotificationList)
def list_notifications(
    limit: str | None = Query(None, description="Max notifications returned (default 50)"),
    principal: Principal = Depends(get_principal),
    notifications: NotificationService = Depends(get_notifications),
) -> NotificationList:
    return NotificationList(
        notifications=notifications.list_notifications(principal.id, limit),
        unreadCount=notifications.get_unread_count(principal.id),
    )


@app.post("/notifications/mark-read", response_model=UnreadCount)
async def mark_read(
    body: MarkReadRequest,
    principal: Principal = Depends(get_principal),
    notifications: NotificationService = Depends(get_notifications),
) -> UnreadCount:
    return UnreadCount(unreadCount=await notifications.mark_as_read(principal.id, body.ids))


@app.post("/notifications/mark-all-read", response_model=UnreadCount)
async def mark_all_read(
    principal: Principal = Depends(get_principal),
    notifications: NotificationService = Depends(get_notifications),
) -> UnreadCount:
    return UnreadCount(unreadCount=await notifications.mark_all_as_read(principal.id))


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------


@app.get("/analytics/summary", response_model=AnalyticsSummary)
def analytics_summary(principal: Principal = Depends(get_principal)) -> AnalyticsSummary:
    return analytics.summary(principal.id)


@app.get("/analytics/trends", response_model=TrendReport)
def analytics_trends(
    range: str = Query("weekly", description="weekly or monthly"),
    principal: Principal = Depends(get_principal),
) -> TrendReport:
    return analytics.trends(principal.id, range)


@app.get("/analytics/status-breakdown", response_model=list[StatusShare])
def analytics_status_breakdown(principal: Principal = Depends(get_principal)) -> list[StatusShare]:
    return analytics.status_breakdown(principal.id)


@app.get("/analytics/participant-progress", response_model=ParticipantProgress)
def analytics_participant_progress(principal: Principal = Depends(get_principal)) -> ParticipantProgress:
    return analytics.participant_progress(principal.id)


# ---------------------------------------------------------------------------
# Live channel
# ---------------------------------------------------------------------------


@app.websocket("/ws")
async def live_channel(websocket: WebSocket) -> None:
    """Per-user notification stream. Token in ``?token=`` or the Authorization header."""
    hub: ConnectionHub = websocket.app.state.hub
    token = websocket.query_params.get("token") or auth.bearer_token(websocket.headers.get("authorization"))
    principal = await hub.connect(websocket, token)
    if principal is None:
        return
    try:
        while True:
            # Clients only listen; text and binary frames alike are ignored.
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
    finally:
        hub.disconnect(websocket)
