"""
SLA Collaborators
=================

Adapters for what the engine talks to outside its own store:
- Slack webhook for escalation alerts
- Sentiment service, poked for every public comment
- APScheduler interval timer driving the periodic SLA sweep
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from supportdesk.config import settings
from supportdesk.core import SideEffectException
from supportdesk.shared.infrastructure.logging import get_logger
from supportdesk.sla.application.events import EscalationAlert, SentimentAnalysisRequested

logger = get_logger(__name__)


class CircuitState:
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Stops calling a collaborator after repeated failures.

    ``failure_threshold`` consecutive failures open the circuit; after
    ``recovery_timeout`` seconds it half-opens and lets one request through. A
    success closes it again.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        time_source: Callable[[], float] = time.monotonic
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._time = time_source
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at: Optional[float] = None

    @property
    def state(self) -> str:
        if (
            self._state == CircuitState.OPEN
            and self._time() - self._opened_at >= self.recovery_timeout
        ):
            self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state != CircuitState.OPEN

    def record_success(self) -> None:
        self._consecutive_failures = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._consecutive_failures += 1
        if self._consecutive_failures < self.failure_threshold:
            return
        self._state = CircuitState.OPEN
        self._opened_at = self._time()
        logger.warning(
            "Circuit opened",
            extra={
                "consecutive_failures": self._consecutive_failures,
                "recovery_timeout": self.recovery_timeout,
            }
        )


class _HttpAdapter:
    """Lazily created, injectable httpx client."""

    def __init__(self, timeout: float, http_client: Optional[httpx.AsyncClient]):
        self._timeout = timeout
        self._http_client = http_client

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None


class SlackAlertNotifier(_HttpAdapter):
    """
    Posts escalation alerts to a Slack incoming webhook.

    Up to ``max_retries`` attempts with exponential backoff, behind a circuit
    breaker. An unset webhook URL turns delivery into a no-op.
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        channel: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        max_retries: int = 3,
        backoff_base: float = 1.0
    ):
        super().__init__(timeout_seconds or settings.slack_timeout_seconds, http_client)
        self._webhook_url = settings.slack_webhook_url if webhook_url is None else webhook_url
        self._channel = channel or settings.slack_channel
        self._max_retries = max_retries
        self._backoff_base = backoff_base
        self._circuit_breaker = CircuitBreaker(failure_threshold=5, recovery_timeout=60)

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._circuit_breaker

    def build_message(self, alert: EscalationAlert) -> Dict[str, Any]:
        """Slack Block Kit payload for one alert."""
        new = alert.new_priority.value
        if alert.escalated:
            headline = f"SLA Breach: escalated to {new}"
        else:
            headline = f"SLA Breach at {new} (ceiling)"

        blocks: List[Dict[str, Any]] = [
            {"type": "header", "text": {"type": "plain_text", "text": headline, "emoji": True}},
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Ticket:*\n{alert.ticket_id}"},
                    {"type": "mrkdwn", "text": f"*Severity:*\n{alert.severity.value.title()}"},
                    {"type": "mrkdwn", "text": f"*Previous Priority:*\n{alert.previous_priority.value}"},
                    {"type": "mrkdwn", "text": f"*New Priority:*\n{new}"},
                ],
            },
            {
                "type": "context",
                "elements": [{"type": "mrkdwn", "text": f"Triggered: {alert.triggered_at.isoformat()}"}],
            },
        ]
        return {"channel": self._channel, "blocks": blocks}

    async def send_alert(self, alert: EscalationAlert) -> bool:
        """
        Deliver one alert.

        Returns:
            True if Slack accepted it, False if delivery was skipped

        Raises:
            SideEffectException: When every attempt failed
        """
        if not self._webhook_url:
            logger.debug("Slack webhook not configured, alert skipped", extra={"ticket_id": alert.ticket_id})
            return False
        if not self._circuit_breaker.allow_request():
            logger.warning("Slack circuit open, alert skipped", extra={"ticket_id": alert.ticket_id})
            return False

        payload = self.build_message(alert)
        last_error = "no attempt made"

        for attempt in range(1, self._max_retries + 1):
            try:
                response = await self._client().post(self._webhook_url, json=payload)
            except httpx.HTTPError as e:
                last_error = str(e) or type(e).__name__
            else:
                if response.status_code == 200:
                    self._circuit_breaker.record_success()
                    logger.info(
                        "Escalation alert delivered",
                        extra={"ticket_id": alert.ticket_id, "severity": alert.severity.value}
                    )
                    return True
                last_error = f"HTTP {response.status_code}"

            logger.warning(
                "Slack delivery attempt failed",
                extra={"ticket_id": alert.ticket_id, "attempt": attempt, "error": last_error}
            )
            if attempt < self._max_retries:
                await asyncio.sleep(self._backoff_base * 2 ** (attempt - 1))

        self._circuit_breaker.record_failure()
        raise SideEffectException("Slack", last_error, {"ticket_id": alert.ticket_id})

    async def __call__(self, alert: EscalationAlert) -> None:
        await self.send_alert(alert)


class HttpSentimentAnalyzer(_HttpAdapter):
    """
    Asks the sentiment service to score a comment.

    Single attempt; the dispatcher logs failures.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        super().__init__(timeout_seconds or settings.sentiment_timeout_seconds, http_client)
        self._base_url = settings.sentiment_service_url if base_url is None else base_url

    async def analyze(self, comment_id: str) -> bool:
        """
        Returns:
            True if the service accepted the request, False if none is configured
        """
        if not self._base_url:
            logger.debug("Sentiment service not configured, analysis skipped")
            return False

        try:
            response = await self._client().post(
                f"{self._base_url.rstrip('/')}/analyze",
                json={"comment_id": comment_id},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise SideEffectException("Sentiment", str(e), {"comment_id": comment_id}) from e

        logger.debug("Sentiment analysis requested", extra={"comment_id": comment_id})
        return True

    async def __call__(self, event: SentimentAnalysisRequested) -> None:
        await self.analyze(event.comment_id)


class SLAScheduler:
    """
    Interval timer that runs the SLA sweep; at most one run at a time.

    ``stop`` returns only once no sweep is running, so the database can be
    closed right after it.
    """

    JOB_ID = "sla_check"

    def __init__(self, interval_seconds: int = 60):
        self.interval_seconds = interval_seconds
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._in_flight: Optional[asyncio.Task] = None

    async def _run_sweep(self, job_func: Callable[[], Awaitable[Any]]) -> None:
        self._in_flight = asyncio.current_task()
        try:
            await job_func()
        finally:
            self._in_flight = None

    async def start(self, job_func: Callable[[], Awaitable[Any]]) -> None:
        if self.is_running:
            logger.warning("SLA scheduler already started")
            return

        scheduler = AsyncIOScheduler()
        scheduler.add_job(
            self._run_sweep,
            "interval",
            args=[job_func],
            seconds=self.interval_seconds,
            id=self.JOB_ID,
            name="SLA sweep",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=60,
            replace_existing=True,
        )
        scheduler.start()
        self._scheduler = scheduler
        logger.info("SLA scheduler started", extra={"interval_seconds": self.interval_seconds})

    async def stop(self) -> None:
        """Stop the timer, then wait for a sweep that is still running."""
        scheduler, self._scheduler = self._scheduler, None
        if scheduler is None:
            return

        # AsyncIOScheduler applies shutdown on the next loop iteration and
        # cancels a running sweep; the sweep's session rolls back.
        scheduler.shutdown(wait=True)
        in_flight = self._in_flight
        if in_flight is not None and not in_flight.done():
            await asyncio.wait([in_flight])
        else:
            await asyncio.sleep(0)
        logger.info("SLA scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    @property
    def scheduler(self) -> Optional[AsyncIOScheduler]:
        return self._scheduler
