"""
Triage Controllers (API Routes)
================================

FastAPI routes for triage runs, suggestion review, triage configuration and
the audit trail.

Controllers are thin - they delegate to application services held by the
triage runtime in ``app.state``.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import JSONResponse

from helpdesk_triage.core import NotFoundError
from helpdesk_triage.shared.infrastructure.logging import get_logger
from helpdesk_triage.triage.application import (
    AcceptSuggestionRequest,
    AuditEventResponse,
    QueuedTriageResponse,
    RejectSuggestionRequest,
    SuggestionResponse,
    SuggestionStatsResponse,
    TicketAuditResponse,
    TicketCreatedRequest,
    TriageRequest,
    TriageResponse,
)
from helpdesk_triage.triage.application.dispatcher import DispatchReceipt
from helpdesk_triage.triage.domain import TriageConfig

logger = get_logger(__name__)
router = APIRouter(prefix="/triage", tags=["Ticket Triage"])
audit_router = APIRouter(prefix="/audit", tags=["Audit"])


# ========== Example payloads for Swagger ==========

TRIAGE_RESPONSE_EXAMPLE = {
    "trace_id": "5f0c2a8e-4d1b-4f7e-9a43-2b7e1c9d0a11",
    "ticket_id": "123e4567-e89b-12d3-a456-426614174000",
    "classification": {
        "category": "billing",
        "confidence": 0.83,
        "scores": {"billing": 0.6, "tech": 0.0, "shipping": 0.0, "other": 0.1}
    },
    "articles": [
        {"id": "9b1f...", "title": "How refunds work", "tags": ["billing", "refund"], "score": 7.4}
    ],
    "draft_reply": "Thank you for contacting us regarding your billing inquiry. ...",
    "citations": ["9b1f..."],
    "decision": {
        "action": "auto_closed",
        "threshold": 0.78,
        "suggestion_id": "c7d2...",
        "assignee_id": None,
        "assignee_name": None
    }
}


# ========== Dependencies ==========

def get_runtime(request: Request):
    """Triage runtime from app state."""
    runtime = getattr(request.app.state, "triage", None)
    if runtime is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Triage runtime not initialized"
        )
    return runtime


def _dispatch_response(receipt: DispatchReceipt):
    if receipt.result is not None:
        return TriageResponse.from_result(receipt.result)
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content=QueuedTriageResponse(
            trace_id=receipt.trace_id,
            ticket_id=receipt.ticket_id,
            job_id=receipt.job_id,
        ).model_dump()
    )


# ========== Triage Routes ==========

@router.post(
    "/tickets/{ticket_id}",
    response_model=TriageResponse,
    summary="Triage a ticket",
    description="""
    Run the triage pipeline (classify, retrieve, draft, decide) for a ticket.

    Without a queue backend the run is inline and the full result is
    returned. With one, the run is queued and `202 Accepted` carries the
    trace ID to follow it in the audit trail.
    """,
    responses={
        200: {"description": "Triage completed", "content": {"application/json": {"example": TRIAGE_RESPONSE_EXAMPLE}}},
        202: {"description": "Triage queued"},
        404: {"description": "Ticket not found"},
        409: {"description": "A triage run for this ticket is already in progress"},
    }
)
async def triage_ticket(
    ticket_id: str,
    payload: Optional[TriageRequest] = Body(default=None),
    runtime=Depends(get_runtime),
):
    receipt = await runtime.dispatcher.dispatch(ticket_id, payload.trace_id if payload else None)
    logger.info(
        "Triage dispatched",
        extra={"ticket_id": ticket_id, "trace_id": receipt.trace_id, "mode": receipt.mode}
    )
    return _dispatch_response(receipt)


@router.post(
    "/tickets/{ticket_id}/created",
    response_model=TriageResponse,
    summary="Ticket created hook",
    description="Records `TICKET_CREATED` under a new trace and dispatches the first triage run.",
    responses={202: {"description": "Triage queued"}}
)
async def ticket_created(
    ticket_id: str,
    payload: Optional[TicketCreatedRequest] = Body(default=None),
    runtime=Depends(get_runtime),
):
    payload = payload or TicketCreatedRequest()
    receipt = await runtime.dispatcher.ticket_created(ticket_id, payload.actor_id, payload.meta)
    return _dispatch_response(receipt)


@router.get(
    "/tickets/{ticket_id}/suggestion",
    response_model=SuggestionResponse,
    summary="Latest suggestion for a ticket",
    responses={404: {"description": "No suggestion for this ticket"}}
)
async def get_suggestion(ticket_id: str, runtime=Depends(get_runtime)):
    async with runtime.factory.suggestions() as service:
        suggestion = await service.get_suggestion(ticket_id)
    if suggestion is None:
        raise NotFoundError("suggestion for ticket", ticket_id)
    return SuggestionResponse.from_domain(suggestion)


@router.post(
    "/suggestions/{suggestion_id}/accept",
    response_model=SuggestionResponse,
    summary="Accept a suggestion",
    description="Marks the suggestion accepted and posts its draft as a visible reply by the agent.",
    responses={404: {"description": "Suggestion not found"}, 422: {"description": "Already decided"}}
)
async def accept_suggestion(
    suggestion_id: str,
    payload: AcceptSuggestionRequest,
    runtime=Depends(get_runtime),
):
    async with runtime.factory.suggestions() as service:
        suggestion = await service.accept_suggestion(suggestion_id, payload.actor_id)
    return SuggestionResponse.from_domain(suggestion)


@router.post(
    "/suggestions/{suggestion_id}/reject",
    response_model=SuggestionResponse,
    summary="Reject a suggestion",
    description="Marks the suggestion rejected with the agent and reason. The ticket is not changed.",
    responses={404: {"description": "Suggestion not found"}, 422: {"description": "Already decided"}}
)
async def reject_suggestion(
    suggestion_id: str,
    payload: RejectSuggestionRequest,
    runtime=Depends(get_runtime),
):
    async with runtime.factory.suggestions() as service:
        suggestion = await service.reject_suggestion(suggestion_id, payload.actor_id, payload.reason)
    return SuggestionResponse.from_domain(suggestion)


@router.get(
    "/stats",
    response_model=SuggestionStatsResponse,
    summary="Suggestion statistics",
)
async def get_stats(
    since: Optional[datetime] = Query(None, description="Only suggestions created since"),
    runtime=Depends(get_runtime),
):
    async with runtime.factory.suggestions() as service:
        stats = await service.suggestion_stats(since)
    return SuggestionStatsResponse(**stats)


@router.get("/config", response_model=TriageConfig, summary="Current triage configuration")
async def get_config(runtime=Depends(get_runtime)):
    async with runtime.factory.configs() as configs:
        return await configs.get_or_create_default()


@router.put("/config", response_model=TriageConfig, summary="Replace the triage configuration")
async def update_config(payload: TriageConfig, runtime=Depends(get_runtime)):
    async with runtime.factory.configs() as configs:
        config = await configs.update(payload)
    logger.info(
        "Triage config updated",
        extra={
            "auto_close_enabled": config.auto_close_enabled,
            "confidence_threshold": config.confidence_threshold,
        }
    )
    return config


# ========== Audit Routes ==========

@audit_router.get(
    "/tickets/{ticket_id}",
    response_model=TicketAuditResponse,
    summary="Audit trail of a ticket",
)
async def get_ticket_audit(ticket_id: str, runtime=Depends(get_runtime)):
    events = await runtime.factory.audit.by_ticket(ticket_id)
    return TicketAuditResponse(
        ticket_id=ticket_id,
        events=[AuditEventResponse.from_domain(e) for e in events],
        total=len(events),
    )


@audit_router.get(
    "/trace/{trace_id}",
    summary="Reconstruct one triage run",
    responses={404: {"description": "No events for this trace"}}
)
async def get_trace(trace_id: str, runtime=Depends(get_runtime)) -> Dict[str, Any]:
    return await runtime.factory.audit.trace_summary(trace_id)


@audit_router.get(
    "/export",
    summary="Export audit events as NDJSON",
    response_class=Response,
    responses={200: {"content": {"application/x-ndjson": {}}}}
)
async def export_audit(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    runtime=Depends(get_runtime),
):
    lines = await runtime.factory.audit.export(start, end)
    body = "".join(f"{line}\n" for line in lines)
    return Response(
        content=body,
        media_type="application/x-ndjson",
        headers={"Content-Disposition": 'attachment; filename="audit-export.ndjson"'},
    )


@audit_router.get("/stats", summary="Audit statistics")
async def get_audit_stats(
    days: int = Query(7, ge=1, le=90, description="Window ending now, used when start is omitted"),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    runtime=Depends(get_runtime),
) -> Dict[str, Any]:
    if start is None:
        start = (end or datetime.now(timezone.utc)) - timedelta(days=days)
    return await runtime.factory.audit.stats(start, end)


# Export routers for inclusion in main app
triage_router = router
