import logging
from contextlib import asynccontextmanager
from typing import Annotated

import socketio
from fastapi import FastAPI, Response, Depends, Header, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from sharedish.config import settings
from sharedish.logging_utils import setup_logging, RequestLoggingMiddleware
from sharedish.metrics import get_metrics, get_metrics_content_type
from sharedish.presence import PresenceRegistry
from sharedish.relay import ChatRelay
from sharedish.schemas import (
    BlockRequest,
    ErrorResponse,
    HealthResponse,
    MessageResponse,
    ReportRequest,
    StatusResponse,
    ThreadDetailResponse,
    ThreadsListResponse,
    ThreadSummary,
    UnreadCountResponse,
)
from sharedish.storage import (
    SessionLocal,
    block_user,
    check_db_health,
    count_unread,
    create_report,
    delete_thread,
    get_db,
    get_last_message,
    get_thread,
    get_thread_messages,
    init_db,
    list_threads_for_user,
    mark_thread_read,
)


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: Initialize database and create tables
    - Shutdown: Cleanup resources
    """
    init_db()
    yield


app = FastAPI(
    title="Share Dish Chat API",
    description="Real-time chat relay and conversation history for Share Dish",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.cors_origins == "*" else settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Socket.IO Relay
# =============================================================================

sio = socketio.AsyncServer(
    async_mode="asgi",
    cors_allowed_origins=settings.cors_origins,
)
presence = PresenceRegistry(sio)
relay = ChatRelay(
    sio,
    presence,
    SessionLocal,
    preview_length=settings.NOTIFICATION_PREVIEW_LENGTH,
    enforce_identity=settings.ENFORCE_CONNECTION_IDENTITY,
)
relay.register()

# Entry point for uvicorn: Socket.IO on /socket.io, everything else to FastAPI
asgi_app = socketio.ASGIApp(sio, other_asgi_app=app)


# =============================================================================
# Caller Identity
# =============================================================================

def get_current_user_id(
    x_user_id: Annotated[str | None, Header(alias="X-User-Id")] = None
) -> str:
    """
    Resolve the calling user.

    Session tokens are issued and verified by the main application; it
    forwards the verified user id in X-User-Id.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="missing user identity"
        )
    return x_user_id.strip()


def get_participant_thread(db: Session, thread_id: int, user_id: str):
    """Load a thread the caller participates in, or raise 404/403."""
    thread = get_thread(db, thread_id)
    if thread is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="thread not found")
    if user_id not in thread.participants:
        logger.warning(f"User {user_id} denied access to thread {thread_id}")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="not a participant")
    return thread


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """
    Liveness probe - always returns 200 once the app is running.
    """
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if the Chat Store is reachable
    and its schema is applied, 503 otherwise.
    """
    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# Chat Routes
# =============================================================================

@app.get("/api/chat/user/chats", response_model=ThreadsListResponse)
def list_user_chats(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
) -> ThreadsListResponse:
    """
    List the caller's conversations, most recently active first.

    Each entry carries the latest message so inboxes can render previews.
    Conversations with users the caller has blocked are omitted.
    """
    threads = list_threads_for_user(db, user_id)

    data = []
    for thread in threads:
        last = get_last_message(db, thread.id)
        data.append(ThreadSummary(
            id=thread.id,
            post_id=thread.post_id,
            users=list(thread.participants),
            updated_at=thread.updated_at,
            last_message=MessageResponse.model_validate(last) if last else None,
        ))

    logger.info(f"GET /api/chat/user/chats: returned {len(data)} threads for {user_id}")
    return ThreadsListResponse(data=data, total=len(data))


@app.get("/api/chat/user/unread", response_model=UnreadCountResponse)
def unread_count(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
) -> UnreadCountResponse:
    """Number of messages sent to the caller that they have not opened yet."""
    return UnreadCountResponse(count=count_unread(db, user_id))


@app.get(
    "/api/chat/{thread_id}",
    response_model=ThreadDetailResponse,
    responses={
        403: {"model": ErrorResponse, "description": "Not a participant"},
        404: {"model": ErrorResponse, "description": "Thread not found"},
    }
)
def get_chat(
    thread_id: int,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
) -> ThreadDetailResponse:
    """
    Full history of one conversation in commit order.

    Opening a conversation marks the other participant's messages read.
    """
    thread = get_participant_thread(db, thread_id, user_id)
    post_id, users = thread.post_id, list(thread.participants)

    updated = mark_thread_read(db, thread_id, user_id)
    logger.debug(f"Marked {updated} messages read in thread {thread_id}")

    messages = [MessageResponse.model_validate(m) for m in get_thread_messages(db, thread_id)]
    return ThreadDetailResponse(id=thread_id, post_id=post_id, users=users, messages=messages)


@app.delete(
    "/api/chat/{thread_id}",
    response_model=StatusResponse,
    responses={
        403: {"model": ErrorResponse, "description": "Not a participant"},
        404: {"model": ErrorResponse, "description": "Thread not found"},
    }
)
def delete_chat(
    thread_id: int,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
) -> StatusResponse:
    """Delete a conversation and all of its messages."""
    get_participant_thread(db, thread_id, user_id)
    delete_thread(db, thread_id)
    logger.info(f"Thread {thread_id} deleted by {user_id}")
    return StatusResponse(status="deleted")


@app.post(
    "/api/chat/{thread_id}/report",
    response_model=StatusResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Reported user not in thread"},
        403: {"model": ErrorResponse, "description": "Not a participant"},
        404: {"model": ErrorResponse, "description": "Thread not found"},
    }
)
def report_chat(
    thread_id: int,
    body: ReportRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
) -> StatusResponse:
    """Report the other participant of a conversation."""
    thread = get_participant_thread(db, thread_id, user_id)
    if body.reported_user_id != thread.other_participant(user_id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="reported user is not the other participant"
        )

    create_report(db, thread_id, user_id, body.reported_user_id, body.message)
    return StatusResponse(status="reported")


# =============================================================================
# User Routes
# =============================================================================

@app.post(
    "/api/users/{user_id}/block",
    response_model=StatusResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Cannot block yourself"},
        403: {"model": ErrorResponse, "description": "Caller is not the user"},
    }
)
def block(
    user_id: str,
    body: BlockRequest,
    caller_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
) -> StatusResponse:
    """Block another user; their conversations disappear from the inbox."""
    if caller_id != user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="cannot block on behalf of another user")
    if body.blocked_user_id == user_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="cannot block yourself")

    created = block_user(db, user_id, body.blocked_user_id)
    return StatusResponse(status="blocked" if created else "already_blocked")


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """
    Expose Prometheus-style metrics.

    Includes http_requests_total, request_latency_seconds,
    socket_events_total and socket_connections.
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
