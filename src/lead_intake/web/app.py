"""FastAPI application receiving Gmail pushes and serving triage review."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterator
from datetime import datetime
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request, status as http_status
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field
from starlette.responses import Response

from lead_intake.auth import TokenStoreAccessor
from lead_intake.auth.tokens import TokenRefresher
from lead_intake.core import AppSettings, load_app_settings
from lead_intake.core.datetime_utils import serialize_datetime, utcnow
from lead_intake.core.interfaces import MalformedNotification
from lead_intake.core.models import (
    MailboxNotification,
    PendingEmail,
    ProcessReport,
    StoredMessage,
)
from lead_intake.ingestion import WatchManager, build_pipeline, decode_notification
from lead_intake.ingestion.history import HistoryApi
from lead_intake.ingestion.watch import RenewalReport, WatchApi
from lead_intake.intelligence import GeminiClient, LLMClient
from lead_intake.notify import EventDispatcher
from lead_intake.storage import SqliteCrmRepository
from lead_intake.transport import GmailClient, GoogleOAuthClient
from lead_intake.triage import LeadNotFound, PendingEmailNotFound, PendingReviewService

from .security import ApiTokenGuard, WebhookTokenGuard

LOGGER = logging.getLogger(__name__)

ACK = "OK"
DEFAULT_DISMISSED_LIMIT = 50
MAX_LIMIT = 500


class ApproveRequest(BaseModel):
    """Body of an approve-as-new-lead action."""

    first_name: str = Field(default="", max_length=200)
    last_name: str = Field(default="", max_length=200)
    company: str = Field(default="", max_length=200)
    lead_source: str | None = Field(default=None, max_length=100)


class LinkRequest(BaseModel):
    """Body of a link-to-existing-lead action."""

    lead_id: str = Field(min_length=1)


def create_app(
    settings: AppSettings | None = None,
    *,
    gmail_client: Any | None = None,
    oauth_client: TokenRefresher | None = None,
    llm_client: LLMClient | None = None,
    dispatcher: EventDispatcher | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    # pylint: disable=too-many-locals,too-many-statements
    app_settings = settings or load_app_settings()
    app = FastAPI(title="Lead Intake")

    gmail = gmail_client or GmailClient(app_settings.google)
    oauth = oauth_client or GoogleOAuthClient(app_settings.google)
    llm = llm_client
    if llm is None and app_settings.classifier.api_key:
        llm = GeminiClient(app_settings.classifier)
    events = dispatcher or EventDispatcher(app_settings.automation)

    webhook_guard = WebhookTokenGuard(app_settings.web.webhook_token)
    require_api_token = ApiTokenGuard(app_settings.web.api_token)

    def get_repository() -> Iterator[SqliteCrmRepository]:
        with SqliteCrmRepository(app_settings.storage) as repository:
            yield repository

    @app.exception_handler(PendingEmailNotFound)
    async def pending_not_found(_: Request, exc: PendingEmailNotFound) -> Response:
        return JSONResponse(
            {"detail": f"Pending email {exc} not found."},
            status_code=http_status.HTTP_404_NOT_FOUND,
        )

    @app.exception_handler(LeadNotFound)
    async def lead_not_found(_: Request, exc: LeadNotFound) -> Response:
        return JSONResponse(
            {"detail": f"Lead {exc} not found."},
            status_code=http_status.HTTP_404_NOT_FOUND,
        )

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        """Flush queued automation events on shutdown."""
        await asyncio.to_thread(events.close)
        LOGGER.info("Automation dispatcher closed")

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "classifier": llm.provider_id if llm is not None else None,
            "automation": events.enabled,
        }

    @app.post("/webhooks/gmail")
    async def gmail_webhook(request: Request) -> Response:
        if not webhook_guard.accepts(request):
            LOGGER.warning("Webhook request with invalid or missing token")
            return PlainTextResponse(ACK)
        try:
            envelope = await request.json()
        except ValueError:
            LOGGER.warning("Webhook body is not JSON")
            return PlainTextResponse(ACK)
        try:
            notification = decode_notification(envelope)
        except MalformedNotification as exc:
            LOGGER.warning("Ignoring malformed notification: %s", exc)
            return PlainTextResponse(ACK)

        try:
            report = await asyncio.to_thread(
                _run_pipeline,
                app_settings,
                notification,
                gmail,
                oauth,
                llm,
                events,
                clock,
            )
        except Exception as exc:  # noqa: BLE001  # pylint: disable=broad-exception-caught
            LOGGER.exception(
                "Unexpected error handling notification for %s: %s",
                notification.email_address,
                exc,
            )
            return PlainTextResponse(ACK)

        if report is None:
            return PlainTextResponse(ACK)
        return JSONResponse({"success": True, "processed": report.processed})

    @app.get("/api/pending-emails", dependencies=[Depends(require_api_token)])
    async def list_pending(
        repository: SqliteCrmRepository = Depends(get_repository),
    ) -> dict[str, Any]:
        review = PendingReviewService(repository, clock=clock)
        records = await asyncio.to_thread(review.list_open)
        return {"items": [_serialize_pending(record) for record in records]}

    @app.get("/api/pending-emails/dismissed", dependencies=[Depends(require_api_token)])
    async def list_dismissed(
        limit: int = DEFAULT_DISMISSED_LIMIT,
        repository: SqliteCrmRepository = Depends(get_repository),
    ) -> dict[str, Any]:
        review = PendingReviewService(repository, clock=clock)
        bounded = max(1, min(limit, MAX_LIMIT))
        records = await asyncio.to_thread(review.list_dismissed, bounded)
        return {"items": [_serialize_pending(record) for record in records]}

    @app.post(
        "/api/pending-emails/{pending_id}/approve",
        dependencies=[Depends(require_api_token)],
    )
    async def approve_pending(
        pending_id: str,
        payload: ApproveRequest,
        repository: SqliteCrmRepository = Depends(get_repository),
    ) -> dict[str, Any]:
        review = PendingReviewService(repository, clock=clock)
        result = await asyncio.to_thread(
            lambda: review.approve_as_new_lead(
                pending_id,
                first_name=payload.first_name,
                last_name=payload.last_name,
                company=payload.company,
                lead_source=payload.lead_source,
            )
        )
        return {
            "lead": {
                "id": result.lead.id,
                "email": result.lead.email,
                "lead_source": result.lead.lead_source,
            },
            "message": _serialize_message(result.message),
        }

    @app.post(
        "/api/pending-emails/{pending_id}/link",
        dependencies=[Depends(require_api_token)],
    )
    async def link_pending(
        pending_id: str,
        payload: LinkRequest,
        repository: SqliteCrmRepository = Depends(get_repository),
    ) -> dict[str, Any]:
        review = PendingReviewService(repository, clock=clock)
        message = await asyncio.to_thread(
            review.link_to_existing_lead, pending_id, payload.lead_id
        )
        return {"message": _serialize_message(message)}

    @app.post(
        "/api/pending-emails/{pending_id}/restore",
        dependencies=[Depends(require_api_token)],
    )
    async def restore_pending(
        pending_id: str,
        repository: SqliteCrmRepository = Depends(get_repository),
    ) -> dict[str, Any]:
        review = PendingReviewService(repository, clock=clock)
        await asyncio.to_thread(review.restore, pending_id)
        return {"success": True}

    @app.delete(
        "/api/pending-emails/{pending_id}",
        dependencies=[Depends(require_api_token)],
    )
    async def dismiss_pending(
        pending_id: str,
        repository: SqliteCrmRepository = Depends(get_repository),
    ) -> dict[str, Any]:
        review = PendingReviewService(repository, clock=clock)
        await asyncio.to_thread(review.dismiss, pending_id)
        return {"success": True}

    @app.post("/api/pending-emails/cleanup", dependencies=[Depends(require_api_token)])
    async def cleanup_dismissed(
        retention_days: int = 14,
        repository: SqliteCrmRepository = Depends(get_repository),
    ) -> dict[str, Any]:
        if retention_days < 0:
            raise HTTPException(
                status_code=http_status.HTTP_400_BAD_REQUEST,
                detail="retention_days must not be negative.",
            )
        review = PendingReviewService(repository, clock=clock)
        removed = await asyncio.to_thread(review.cleanup_expired_dismissed, retention_days)
        return {"removed": removed}

    @app.post("/api/watch/renew", dependencies=[Depends(require_api_token)])
    async def renew_watches() -> dict[str, Any]:
        report = await asyncio.to_thread(_renew_watches, app_settings, gmail, oauth, clock)
        return _serialize_renewal(report)

    return app


def _run_pipeline(
    settings: AppSettings,
    notification: MailboxNotification,
    gmail: HistoryApi,
    oauth: TokenRefresher,
    llm_client: LLMClient | None,
    events: EventDispatcher,
    clock: Callable[[], datetime],
) -> ProcessReport | None:
    # pylint: disable=too-many-arguments
    with SqliteCrmRepository(settings.storage) as repository:
        pipeline = build_pipeline(
            settings,
            repository,
            gmail=gmail,
            oauth=oauth,
            llm_client=llm_client,
            events=events,
            clock=clock,
        )
        return pipeline.handle(notification)


def _renew_watches(
    settings: AppSettings,
    gmail: WatchApi,
    oauth: TokenRefresher,
    clock: Callable[[], datetime],
) -> RenewalReport:
    with SqliteCrmRepository(settings.storage) as repository:
        tokens = TokenStoreAccessor(
            repository,
            oauth,
            skew_seconds=settings.google.token_refresh_skew_seconds,
            clock=clock,
        )
        manager = WatchManager(
            repository,
            tokens,
            gmail,
            topic_name=settings.google.pubsub_topic,
            renew_within_days=settings.watch.renew_within_days,
            clock=clock,
        )
        return manager.renew_all()


def _serialize_pending(record: PendingEmail) -> dict[str, Any]:
    return {
        "id": record.id,
        "from_email": record.from_email,
        "from_name": record.from_name,
        "subject": record.subject,
        "content": record.content,
        "gmail_message_id": record.gmail_message_id,
        "received_at": serialize_datetime(record.received_at),
        "status": str(record.status),
        "ai_classification": record.ai_classification,
        "ai_confidence": record.ai_confidence,
    }


def _serialize_message(message: StoredMessage) -> dict[str, Any]:
    return {
        "id": message.id,
        "lead_id": message.lead_id,
        "direction": message.direction,
        "subject": message.subject,
        "sent_at": serialize_datetime(message.sent_at),
        "is_read": message.is_read,
    }


def _serialize_renewal(report: RenewalReport) -> dict[str, Any]:
    return {
        "renewed": report.renewed,
        "failed": report.failed,
        "skipped": report.skipped,
        "results": [
            {
                "email": result.gmail_email,
                "status": result.status,
                "expiration": serialize_datetime(result.expiration),
                "error": result.error,
            }
            for result in report.results
        ],
    }


__all__ = ["create_app"]
