# formgen/services/webhook_service.py

import asyncio
import hashlib
import hmac
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple, Union
from uuid import UUID

import httpx
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from formgen.core.background import BackgroundTaskRunner
from formgen.models.webhook_log import WebhookLog
from formgen.schemas.form import Webhook
from formgen.schemas.webhook import WebhookPayload, WebhookTestResult

logger = logging.getLogger(__name__)

RESPONSE_BODY_LIMIT = 1000
TEST_EVENT = "webhook.test"


def build_signature(body: bytes, secret: Optional[str]) -> str:
    """sha256=<hex HMAC of the exact body>, or "" when the webhook has no secret"""
    if not secret:
        return ""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def verify_signature(body: Union[bytes, str, WebhookPayload], signature: str, secret: Optional[str]) -> bool:
    if isinstance(body, WebhookPayload):
        body = body.to_body()
    elif isinstance(body, str):
        body = body.encode("utf-8")

    expected = build_signature(body, secret)
    # compare_digest on bytes returns False for unequal lengths instead of raising
    return hmac.compare_digest((signature or "").encode("utf-8"), expected.encode("utf-8"))


class WebhookService:
    """
    At-least-once delivery of form events to user-configured endpoints.

    Each endpoint gets its own sequence of up to max_attempts POSTs with
    exponential backoff (2s, 4s, ...). A sequence writes exactly one
    WebhookLog row when it concludes: success, or failed after the last attempt.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        runner: BackgroundTaskRunner,
        max_attempts: int = 3,
        timeout: float = 10.0,
        user_agent: str = "FormGen-Webhook/1.0",
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.session_factory = session_factory
        self.runner = runner
        self.max_attempts = max_attempts
        self.timeout = timeout
        self.user_agent = user_agent
        self.transport = transport
        self._sleep = sleep

    def _headers(self, event: str, signature: str) -> dict:
        return {
            "Content-Type": "application/json",
            "X-FormGen-Event": event,
            "X-FormGen-Signature": signature,
            "User-Agent": self.user_agent,
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def _post(self, client: httpx.AsyncClient, url: str, body: bytes, headers: dict) -> httpx.Response:
        # httpx timeouts apply per phase; this bounds the whole request
        try:
            return await asyncio.wait_for(client.post(url, content=body, headers=headers), self.timeout)
        except asyncio.TimeoutError:
            raise httpx.TimeoutException(f"Request timed out after {self.timeout}s")

    def deliver_webhooks(
        self,
        form_id: UUID,
        event: str,
        webhooks: Sequence[Union[Webhook, dict]],
        payload: WebhookPayload,
    ) -> int:
        """
        Start one delivery sequence per enabled webhook subscribed to event.

        Returns immediately; sequences run on the background runner.

        Returns:
            Number of sequences started
        """
        active = [
            webhook for webhook in (Webhook.model_validate(wh) if isinstance(wh, dict) else wh for wh in webhooks)
            if webhook.enabled and event in webhook.events
        ]

        for webhook in active:
            self.runner.submit(
                self.deliver_webhook(webhook, form_id, event, payload),
                name=f"webhook-{webhook.id}",
            )

        if active:
            logger.info(f"📨 Dispatched {len(active)} webhook deliveries for form {form_id} ({event})")
        return len(active)

    async def deliver_webhook(
        self,
        webhook: Webhook,
        form_id: UUID,
        event: str,
        payload: WebhookPayload,
    ) -> WebhookLog:
        """Retry loop for a single endpoint; attempts are strictly sequential"""
        body = payload.to_body()
        headers = self._headers(event, build_signature(body, webhook.secret))

        attempts = 0
        last_error: Optional[str] = None
        last_response: Optional[Tuple[int, str]] = None

        async with self._client() as client:
            while attempts < self.max_attempts:
                attempts += 1

                try:
                    response = await self._post(client, webhook.url, body, headers)
                    last_response = (response.status_code, response.text[:RESPONSE_BODY_LIMIT])

                    if 200 <= response.status_code < 300:
                        logger.info(f"✅ Webhook delivered successfully to {webhook.url}")
                        return await self._write_log(
                            webhook, form_id, event, "success", attempts, last_response, None
                        )

                    last_error = f"HTTP {response.status_code}: {response.reason_phrase}"
                except (httpx.HTTPError, httpx.InvalidURL) as e:
                    last_error = str(e) or type(e).__name__

                logger.warning(f"Webhook delivery attempt {attempts} to {webhook.url} failed: {last_error}")

                if attempts < self.max_attempts:
                    await self._sleep(2 ** attempts)

        logger.error(f"❌ Webhook delivery failed after {attempts} attempts: {last_error}")
        return await self._write_log(webhook, form_id, event, "failed", attempts, last_response, last_error)

    async def _write_log(
        self,
        webhook: Webhook,
        form_id: UUID,
        event: str,
        status: str,
        attempts: int,
        response: Optional[Tuple[int, str]],
        error: Optional[str],
    ) -> WebhookLog:
        log = WebhookLog(
            webhook_id=webhook.id,
            form_id=form_id,
            event=event,
            status=status,
            attempts=attempts,
            last_attempt_at=datetime.now(timezone.utc),
            response_status_code=response[0] if response else None,
            response_body=response[1] if response else None,
            error=error,
        )
        async with self.session_factory() as db:
            db.add(log)
            await db.commit()
        return log

    async def test_webhook(self, url: str, secret: Optional[str]) -> WebhookTestResult:
        """Single attempt with a synthetic payload; nothing is logged"""
        payload = WebhookPayload(
            event=TEST_EVENT,
            form_id="test-form-id",
            submission_id="test-submission-id",
            timestamp=datetime.now(timezone.utc),
            data={"message": "This is a test webhook from FormGen AI"},
        )
        body = payload.to_body()

        try:
            async with self._client() as client:
                response = await self._post(
                    client, url, body, self._headers(TEST_EVENT, build_signature(body, secret))
                )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            return WebhookTestResult(success=False, message=f"Webhook test failed: {str(e) or type(e).__name__}")

        if 200 <= response.status_code < 300:
            return WebhookTestResult(
                success=True,
                message=f"Webhook test successful (HTTP {response.status_code})",
            )
        return WebhookTestResult(success=False, message=f"Webhook returned HTTP {response.status_code}")

    async def get_webhook_logs(self, form_id: UUID, page: int = 1, limit: int = 20) -> Tuple[List[WebhookLog], int]:
        offset = (page - 1) * limit
        async with self.session_factory() as db:
            logs = (await db.execute(
                select(WebhookLog)
                .where(WebhookLog.form_id == form_id)
                .order_by(WebhookLog.created_at.desc())
                .offset(offset)
                .limit(limit)
            )).scalars().all()
            total = (await db.execute(
                select(func.count()).select_from(WebhookLog).where(WebhookLog.form_id == form_id)
            )).scalar_one()
        return list(logs), total
