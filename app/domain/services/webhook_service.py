"""Webhook delivery engine for tenant-configured N8N workflows.

Deliveries are at-least-once with bounded retries and linear backoff. Expected
failures (4xx, 5xx, timeouts, network errors) are returned as data in a
``WebhookCallResult``; callers never need ``try`` around a delivery.

Each top-level ``call_webhook`` writes exactly one analytics row and one
counter update describing its terminal outcome, never one per attempt.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.encryption import EncryptionError, EncryptionService
from app.persistence.models.webhook import WebhookRegistration
from app.persistence.repositories.webhook_repository import (
    WebhookCallRepository,
    WebhookRepository,
)
from app.settings import settings
from app.utils.retry import AttemptOutcome, RetryPolicy, classify_status

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


@dataclass
class WebhookCallOptions:
    """Per-call delivery options."""
    timeout_ms: int = 30000
    max_retries: int = 3
    retry_delay_ms: int = 1000

    @classmethod
    def from_settings(cls) -> "WebhookCallOptions":
        return cls(
            timeout_ms=settings.webhook_timeout_ms,
            max_retries=settings.webhook_max_retries,
            retry_delay_ms=settings.webhook_retry_delay_ms,
        )


@dataclass
class WebhookCallResult:
    """Terminal outcome of a delivery, retries included."""
    success: bool
    attempt_number: int
    response_time_ms: float
    webhook_id: int | None = None
    status_code: int | None = None
    response_body: Any = None
    error_message: str | None = None


@dataclass
class WebhookTestResult:
    """Outcome of a connectivity check."""
    success: bool
    response_time_ms: float
    error_message: str | None = None


@dataclass
class _Attempt:
    outcome: AttemptOutcome
    status_code: int | None = None
    response_body: Any = None
    error_message: str | None = None


@dataclass
class _Target:
    """Registration fields read before the session is closed."""
    webhook_id: int
    tenant_id: int
    workflow_name: str
    url: str
    auth_token: str | None
    is_active: bool

    @classmethod
    def from_registration(cls, registration: WebhookRegistration) -> "_Target":
        return cls(
            webhook_id=registration.id,
            tenant_id=registration.tenant_id,
            workflow_name=registration.workflow_name,
            url=registration.webhook_url,
            auth_token=registration.auth_token,
            is_active=registration.is_active,
        )


def _elapsed_ms(started: float) -> float:
    return round((time.monotonic() - started) * 1000, 2)


class WebhookDeliveryService:
    """Delivers JSON payloads to webhook registrations.

    The service opens its own short-lived sessions from ``session_factory`` so
    it can run detached from the request that triggered it, and so no
    database connection is held while waiting on the remote endpoint.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        encryption: EncryptionService,
        http_client: httpx.AsyncClient | None = None,
        sleep: Sleep = asyncio.sleep,
        default_options: WebhookCallOptions | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.encryption = encryption
        self._http_client = http_client
        self._sleep = sleep
        self.default_options = default_options or WebhookCallOptions.from_settings()

    async def call_webhook(
        self,
        webhook_id: int,
        payload: dict[str, Any],
        options: WebhookCallOptions | None = None,
    ) -> WebhookCallResult:
        """Deliver a payload to one registration.

        Args:
            webhook_id: Registration ID
            payload: JSON-serializable request body
            options: Timeout and retry options (settings defaults if omitted)

        Returns:
            WebhookCallResult describing the terminal outcome
        """
        options = options or self.default_options
        started = time.monotonic()

        async with self.session_factory() as session:
            registration = await WebhookRepository(session).get_by_id(None, webhook_id)
            target = _Target.from_registration(registration) if registration else None

        if target is None:
            logger.warning(f"Webhook not found: {webhook_id}", extra={"webhook_id": webhook_id})
            return WebhookCallResult(
                success=False,
                attempt_number=0,
                response_time_ms=_elapsed_ms(started),
                webhook_id=webhook_id,
                error_message=f"Webhook not found: {webhook_id}",
            )

        if not target.is_active:
            logger.info(
                f"Webhook is disabled: {target.workflow_name}",
                extra={"tenant_id": target.tenant_id, "webhook_id": webhook_id},
            )
            result = WebhookCallResult(
                success=False,
                attempt_number=0,
                response_time_ms=_elapsed_ms(started),
                webhook_id=webhook_id,
                error_message=f"Webhook is disabled: {target.workflow_name}",
            )
            await self._record_call(target, payload, result)
            return result

        headers = self._build_headers(target)
        # Per-call options are not validated; always make at least one attempt
        policy = RetryPolicy(
            max_attempts=max(options.max_retries, 1),
            base_delay_ms=max(options.retry_delay_ms, 0),
        )

        attempt = _Attempt(outcome=AttemptOutcome.NETWORK_ERROR, error_message="All retries exhausted")
        attempt_number = 0
        for attempt_number in policy.attempts():
            attempt = await self._attempt(target.url, payload, headers, options.timeout_ms)

            if attempt.outcome is AttemptOutcome.SUCCESS:
                break
            if not policy.should_retry(attempt.outcome, attempt_number):
                break

            delay = policy.delay_seconds(attempt_number)
            logger.warning(
                f"Webhook attempt failed, retrying in {delay}s: {attempt.error_message}",
                extra={
                    "tenant_id": target.tenant_id,
                    "webhook_id": webhook_id,
                    "attempt": attempt_number,
                    "outcome": attempt.outcome.value,
                },
            )
            await self._sleep(delay)

        success = attempt.outcome is AttemptOutcome.SUCCESS
        result = WebhookCallResult(
            success=success,
            attempt_number=attempt_number,
            response_time_ms=_elapsed_ms(started),
            webhook_id=webhook_id,
            status_code=attempt.status_code,
            response_body=attempt.response_body,
            error_message=None if success else (attempt.error_message or "All retries exhausted"),
        )

        log_extra = {
            "tenant_id": target.tenant_id,
            "webhook_id": webhook_id,
            "workflow": target.workflow_name,
            "attempt": attempt_number,
            "status_code": attempt.status_code,
            "response_time_ms": result.response_time_ms,
        }
        if success:
            logger.info("Webhook delivered", extra=log_extra)
        else:
            logger.error(f"Webhook delivery failed: {result.error_message}", extra=log_extra)

        await self._increment_stats(target, success)
        await self._record_call(target, payload, result)
        return result

    async def call_webhook_by_name(
        self,
        tenant_id: int,
        workflow_name: str,
        payload: dict[str, Any],
        options: WebhookCallOptions | None = None,
    ) -> WebhookCallResult:
        """Deliver to the tenant's active registration for ``workflow_name``."""
        async with self.session_factory() as session:
            registration = await WebhookRepository(session).get_active_by_name(
                tenant_id, workflow_name
            )
            webhook_id = registration.id if registration else None

        if webhook_id is None:
            logger.info(
                f"Webhook not found: {workflow_name} for tenant {tenant_id}",
                extra={"tenant_id": tenant_id, "workflow": workflow_name},
            )
            return WebhookCallResult(
                success=False,
                attempt_number=0,
                response_time_ms=0.0,
                error_message=f"Webhook not found: {workflow_name} for tenant {tenant_id}",
            )

        return await self.call_webhook(webhook_id, payload, options)

    async def call_all_active_webhooks_for_tenant(
        self,
        tenant_id: int,
        payload: dict[str, Any],
        options: WebhookCallOptions | None = None,
    ) -> list[WebhookCallResult]:
        """Deliver to every active registration of a tenant concurrently.

        One registration's failure never affects the others.
        """
        async with self.session_factory() as session:
            registrations = await WebhookRepository(session).list_active(tenant_id)
            webhook_ids = [registration.id for registration in registrations]

        outcomes = await asyncio.gather(
            *(self.call_webhook(webhook_id, payload, options) for webhook_id in webhook_ids),
            return_exceptions=True,
        )

        results: list[WebhookCallResult] = []
        for webhook_id, outcome in zip(webhook_ids, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    f"Unexpected error delivering webhook: {outcome}",
                    exc_info=(type(outcome), outcome, outcome.__traceback__),
                    extra={"tenant_id": tenant_id, "webhook_id": webhook_id},
                )
                outcome = WebhookCallResult(
                    success=False,
                    attempt_number=0,
                    response_time_ms=0.0,
                    webhook_id=webhook_id,
                    error_message=str(outcome),
                )
            results.append(outcome)
        return results

    async def test_webhook(
        self, webhook_id: int, tenant_id: int | None = None
    ) -> WebhookTestResult:
        """Send a single test payload with a short timeout.

        Writes no analytics row, leaves counters untouched and never retries.
        """
        started = time.monotonic()
        async with self.session_factory() as session:
            registration = await WebhookRepository(session).get_by_id(tenant_id, webhook_id)
            target = _Target.from_registration(registration) if registration else None

        if target is None:
            return WebhookTestResult(
                success=False,
                response_time_ms=0.0,
                error_message=f"Webhook not found: {webhook_id}",
            )

        timeout_ms = settings.webhook_test_timeout_ms
        payload = {"test": True, "timestamp": datetime.utcnow().isoformat()}
        attempt = await self._attempt(target.url, payload, self._build_headers(target), timeout_ms)
        if attempt.outcome is AttemptOutcome.TIMEOUT:
            attempt.error_message = f"Request timeout after {timeout_ms / 1000:g} seconds"

        success = attempt.outcome is AttemptOutcome.SUCCESS
        return WebhookTestResult(
            success=success,
            response_time_ms=_elapsed_ms(started),
            error_message=None if success else attempt.error_message,
        )

    def _build_headers(self, target: _Target) -> dict[str, str]:
        """JSON headers plus the bearer token when it can be decrypted."""
        headers = {"Content-Type": "application/json"}
        if not target.auth_token:
            return headers

        try:
            token = self.encryption.decrypt(target.auth_token)
        except EncryptionError as e:
            # A bad secret must not block webhook traffic; send without auth
            logger.error(
                f"Failed to decrypt webhook auth token: {e}",
                extra={"tenant_id": target.tenant_id, "webhook_id": target.webhook_id},
            )
            return headers

        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _post(
        self, url: str, payload: dict[str, Any], headers: dict[str, str], timeout: float
    ) -> httpx.Response:
        if self._http_client is not None:
            return await self._http_client.post(url, json=payload, headers=headers, timeout=timeout)
        async with httpx.AsyncClient(timeout=timeout) as client:
            return await client.post(url, json=payload, headers=headers)

    async def _attempt(
        self,
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str],
        timeout_ms: int,
    ) -> _Attempt:
        """Make one HTTP POST and classify the outcome."""
        try:
            response = await self._post(url, payload, headers, timeout_ms / 1000)
        except httpx.TimeoutException:
            return _Attempt(
                outcome=AttemptOutcome.TIMEOUT,
                error_message=f"Request timeout after {timeout_ms}ms",
            )
        except httpx.RequestError as e:
            return _Attempt(
                outcome=AttemptOutcome.NETWORK_ERROR,
                error_message=f"Network error: {e}" if str(e) else "Network error",
            )

        outcome = classify_status(response.status_code)
        error_message = None
        if outcome is not AttemptOutcome.SUCCESS:
            error_message = f"HTTP {response.status_code}: {response.reason_phrase}"
        return _Attempt(
            outcome=outcome,
            status_code=response.status_code,
            response_body=self._parse_body(response),
            error_message=error_message,
        )

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        if not response.content:
            return None
        if "application/json" in response.headers.get("content-type", ""):
            try:
                return response.json()
            except ValueError:
                pass
        return response.text

    async def _increment_stats(self, target: _Target, success: bool) -> None:
        try:
            async with self.session_factory() as session:
                await WebhookRepository(session).increment_stats(target.webhook_id, success)
        except Exception:
            logger.exception(
                "Failed to update webhook counters",
                extra={"tenant_id": target.tenant_id, "webhook_id": target.webhook_id},
            )

    async def _record_call(
        self, target: _Target, payload: dict[str, Any], result: WebhookCallResult
    ) -> None:
        """Write the analytics row; failures are logged only."""
        try:
            async with self.session_factory() as session:
                await WebhookCallRepository(session).create(
                    target.tenant_id,
                    webhook_id=target.webhook_id,
                    request_payload=payload,
                    response_body=result.response_body,
                    status_code=result.status_code,
                    response_time_ms=result.response_time_ms,
                    attempt_count=result.attempt_number,
                    success=result.success,
                    error_message=result.error_message,
                )
        except Exception:
            logger.exception(
                "Failed to record webhook call",
                extra={"tenant_id": target.tenant_id, "webhook_id": target.webhook_id},
            )
