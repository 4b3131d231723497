import json
import logging
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import FastAPI, Response, Request, Depends, HTTPException, status, Query
from pydantic import ValidationError
from sqlalchemy.orm import Session

from meshsync.config import settings
from meshsync.crud import EntityRepository, build_crud_router
from meshsync.errors import NotFoundError, StorageError
from meshsync.logging_utils import setup_logging, RequestLoggingMiddleware, log_sync_data
from meshsync.metrics import (
    get_metrics,
    get_metrics_content_type,
    record_sync_conflicts,
    record_sync_outcomes,
)
from meshsync.models import EmergencyAlert, EmergencyContact
from meshsync.schemas import (
    AlertCreate,
    AlertResponse,
    AlertStatus,
    AlertUpdate,
    ConflictHistoryItem,
    ConflictHistoryResponse,
    ContactCreate,
    ContactResponse,
    DeleteResponse,
    ErrorResponse,
    FiltersApplied,
    HealthResponse,
    MessageResponse,
    MessagesListResponse,
    SyncRequest,
    SyncResponse,
)
from meshsync.storage import MessageStore, init_db, check_db_health, get_db, get_store
from meshsync.sync import SyncOrchestrator
from meshsync.utils import TIMESTAMP_FORMAT_HINT, to_epoch_ms, utc_now_iso


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

INVALID_BATCH_DETAIL = 'Invalid request format. Expected "messages" array.'


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: Initialize database, tables and indexes
    """
    init_db()
    yield


app = FastAPI(
    title="Mesh Sync API",
    description="Offline-first message and emergency alert sync for mesh devices",
    version="1.0.0",
    lifespan=lifespan,
)

# Add request logging middleware
app.add_middleware(RequestLoggingMiddleware)


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
async def health_ready(
    response: Response,
    store: MessageStore = Depends(get_store),
) -> HealthResponse:
    """
    Readiness probe - returns 200 only if the DB is reachable and the
    schema is applied, otherwise 503 (Service Unavailable).
    """
    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            database="unavailable",
            reason="Database not reachable or schema not applied"
        )

    try:
        total = store.count()
    except StorageError as e:
        logger.error(f"Failed to count messages: {e}")
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", database="unavailable", reason=str(e))

    return HealthResponse(status="ready", database="connected", total_messages=total)


# =============================================================================
# Sync Routes
# =============================================================================

@app.post(
    "/sync",
    response_model=SyncResponse,
    responses={
        400: {"description": "Malformed batch, or no message was saved or updated"},
    }
)
async def sync_messages(
    request: Request,
    response: Response,
    store: MessageStore = Depends(get_store),
) -> SyncResponse:
    """
    Reconcile a batch of messages buffered on a device while offline.

    - New ids are inserted unless the same device stored identical content
      within 5 seconds
    - Existing ids are resolved with ``conflict_strategy``
      (skip, latest, overwrite, version; default skip)
    - Every message gets exactly one outcome in the report

    Returns 200 if at least one message was saved or updated, 400 otherwise.
    """
    raw_body = await request.body()
    logger.debug(f"Request body size: {len(raw_body)} bytes")

    try:
        sync_request = SyncRequest.model_validate(json.loads(raw_body))
    except (ValueError, ValidationError) as e:
        # JSONDecodeError and UnicodeDecodeError are both ValueErrors
        logger.error(f"Malformed sync request: {e}")
        log_sync_data(request=request)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=INVALID_BATCH_DETAIL
        )

    report = SyncOrchestrator(store).sync(
        sync_request.messages,
        sync_request.conflict_strategy,
    )
    summary = report.summary

    record_sync_outcomes(summary.saved, summary.updated, summary.skipped, summary.errors)
    record_sync_conflicts(report.strategy.value, summary.conflicts)
    log_sync_data(
        request=request,
        batch_size=len(sync_request.messages),
        strategy=sync_request.conflict_strategy,
        summary=summary.model_dump(),
    )

    if not report.is_success:
        response.status_code = status.HTTP_400_BAD_REQUEST

    return report.to_response()


def _parse_bound(name: str, value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return to_epoch_ms(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid {name} timestamp. {TIMESTAMP_FORMAT_HINT}"
        )


@app.get(
    "/sync",
    response_model=MessagesListResponse,
)
async def list_messages(
    device_id: Annotated[str | None, Query(description="Filter by originating device")] = None,
    limit: Annotated[int | None, Query(ge=1, description="Maximum number of messages to return")] = None,
    since: Annotated[str | None, Query(description="Messages with timestamp >= since")] = None,
    until: Annotated[str | None, Query(description="Messages with timestamp <= until")] = None,
    min_version: Annotated[int | None, Query(ge=1, description="Messages with version >= min_version")] = None,
    store: MessageStore = Depends(get_store),
) -> MessagesListResponse:
    """
    List stored messages, newest device timestamp first.

    Bounds are compared as instants, so either accepted timestamp shape
    may be used for since/until.
    """
    logger.info(
        f"GET /sync: device_id={device_id}, limit={limit}, since={since}, "
        f"until={until}, min_version={min_version}"
    )

    since_ms = _parse_bound("since", since)
    until_ms = _parse_bound("until", until)

    try:
        messages = store.list_messages(
            device_id=device_id,
            since_ms=since_ms,
            until_ms=until_ms,
            min_version=min_version,
            limit=limit,
        )
    except StorageError as e:
        logger.error(f"Failed to list messages: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Database error: {e}"
        )

    data = [MessageResponse.model_validate(msg) for msg in messages]
    logger.info(f"GET /sync: returned {len(data)} messages")

    return MessagesListResponse(
        messages=data,
        count=len(data),
        filters_applied=FiltersApplied(
            device_id=device_id or "all",
            limit=limit or "none",
            since=since or "none",
            until=until or "none",
            min_version=min_version or "none",
        ),
    )


@app.get(
    "/conflicts",
    response_model=ConflictHistoryResponse,
)
async def conflict_history(
    limit: Annotated[int, Query(ge=1, description="Maximum number of entries")] = settings.CONFLICTS_DEFAULT_LIMIT,
    store: MessageStore = Depends(get_store),
) -> ConflictHistoryResponse:
    """
    Messages that have been overwritten at least once (version > 1),
    most recently updated first.
    """
    try:
        rows = store.list_versioned(limit=limit)
    except StorageError as e:
        logger.error(f"Failed to list conflict history: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Database error: {e}"
        )

    conflicts = [ConflictHistoryItem.model_validate(row) for row in rows]
    return ConflictHistoryResponse(conflicts=conflicts, count=len(conflicts))


@app.delete(
    "/messages/{message_id}",
    response_model=DeleteResponse,
    responses={404: {"model": ErrorResponse, "description": "Message not found"}},
)
async def delete_message(
    message_id: str,
    store: MessageStore = Depends(get_store),
) -> DeleteResponse:
    """Delete a stored message by id."""
    try:
        store.delete(message_id)
    except NotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Message not found"
        )
    except StorageError as e:
        logger.error(f"Failed to delete message {message_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Delete error: {e}"
        )

    return DeleteResponse(deleted_id=message_id)


# =============================================================================
# Alert and Contact Routes
# =============================================================================

alerts_router = build_crud_router(
    prefix="/alerts",
    model=EmergencyAlert,
    create_schema=AlertCreate,
    response_schema=AlertResponse,
    label="Alert",
    order_by=EmergencyAlert.timestamp.desc(),
)

contacts_router = build_crud_router(
    prefix="/contacts",
    model=EmergencyContact,
    create_schema=ContactCreate,
    response_schema=ContactResponse,
    label="Contact",
    order_by=EmergencyContact.name.asc(),
)


@alerts_router.put(
    "/{alert_id}",
    response_model=AlertResponse,
    responses={404: {"model": ErrorResponse}},
)
async def update_alert_status(
    alert_id: str,
    payload: AlertUpdate,
    db: Session = Depends(get_db),
):
    """
    Change an alert's status.

    Resolving records who resolved it and when; reopening clears both.
    """
    if payload.status is AlertStatus.RESOLVED:
        values = {
            "status": payload.status.value,
            "resolved": True,
            "resolved_by": payload.resolved_by,
            "resolved_at": utc_now_iso(),
        }
    else:
        values = {
            "status": payload.status.value,
            "resolved": False,
            "resolved_by": None,
            "resolved_at": None,
        }

    try:
        return EntityRepository(db, EmergencyAlert).update(alert_id, values)
    except NotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Alert not found"
        )
    except StorageError as e:
        logger.error(f"Failed to update alert {alert_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update alert"
        )


app.include_router(alerts_router)
app.include_router(contacts_router)


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """
    Expose Prometheus-style metrics.

    Includes http_requests_total, request_latency_seconds,
    sync_records_total and sync_conflicts_total.
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
