"""E-mail (Brevo) and SMS (Twilio) delivery plus the daily digest."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, time
from typing import Iterable
from zoneinfo import ZoneInfo

import httpx

from .ai import Summarizer
from .alerts import AlertPlan, Subscriber, plan_alerts
from .database import EventFilter
from .models import PersistedEvent, ScoredEvent
from .quota import SummarizationGate
from .status import StatusTracker
from .time_utils import Clock, utc_now

logger = logging.getLogger(__name__)

BREVO_URL = "https://api.brevo.com/v3/smtp/email"
TWILIO_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"
SMS_MAX_CHARS = 320
DIGEST_LIMIT = 200
DELIVERY_LOG_LIMIT = 100

DISCLAIMER = (
    "This alert is for informational purposes only. Not medical, legal, or financial advice. "
    "Consult qualified professionals for specific guidance."
)


def alert_subject(event: ScoredEvent) -> str:
    if event.category == "Urgent":
        return f"URGENT: {event.title}"
    return f"Regwatch Alert: {event.title}"


def alert_text(event: ScoredEvent) -> str:
    lines = [
        event.title,
        "",
        f"Source: {event.source}",
        f"Category: {event.category} (score {event.score})",
    ]
    if event.description:
        lines.append(f"Description: {event.description}")
    if event.summary:
        lines.append(f"Summary: {event.summary}")
    if event.reasons:
        lines.append(f"Why: {'; '.join(event.reasons)}")
    if event.link:
        lines.append(f"Link: {event.link}")
    lines.extend(["", DISCLAIMER])
    return "\n".join(lines)


class EmailSender:
    """Transactional e-mail through the Brevo SMTP API, one call per recipient."""

    def __init__(
        self,
        api_key: str,
        sender_email: str,
        sender_name: str = "Regwatch Alerts",
        *,
        timeout: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.sender = {"email": sender_email, "name": sender_name}
        self.timeout = timeout
        self._transport = transport

    async def _deliver(self, subject: str, text: str, recipients: Iterable[str]) -> dict[str, bool]:
        results: dict[str, bool] = {}
        recipients = list(recipients)
        if not self.api_key:
            logger.warning("BREVO_API_KEY not configured; e-mail disabled")
            return {r: False for r in recipients}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for recipient in recipients:
                try:
                    response = await client.post(
                        BREVO_URL,
                        headers={"api-key": self.api_key, "Content-Type": "application/json"},
                        json={
                            "sender": self.sender,
                            "to": [{"email": recipient}],
                            "subject": subject,
                            "textContent": text,
                        },
                    )
                    results[recipient] = response.is_success
                    if not response.is_success:
                        logger.warning("Brevo rejected mail to %s: HTTP %d", recipient, response.status_code)
                except httpx.HTTPError as exc:
                    logger.warning("Failed to e-mail %s: %s", recipient, exc)
                    results[recipient] = False
        return results

    async def send(self, event: ScoredEvent, recipients: Iterable[str]) -> dict[str, bool]:
        return await self._deliver(alert_subject(event), alert_text(event), recipients)

    async def send_digest(self, subject: str, text: str, recipients: Iterable[str]) -> dict[str, bool]:
        return await self._deliver(subject, text, recipients)


class SmsSender:
    """Twilio Messages API. Callers restrict SMS to Urgent events."""

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        *,
        timeout: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.timeout = timeout
        self._transport = transport

    @staticmethod
    def body(event: ScoredEvent) -> str:
        text = f"[{event.category}] {event.title}"
        if event.summary:
            text = f"{text}: {event.summary}"
        return text[:SMS_MAX_CHARS]

    async def send(self, event: ScoredEvent, recipients: Iterable[str]) -> dict[str, bool]:
        recipients = list(recipients)
        if not (self.account_sid and self.auth_token and self.from_number):
            logger.warning("Twilio credentials not configured; SMS disabled")
            return {r: False for r in recipients}
        url = TWILIO_URL.format(sid=self.account_sid)
        results: dict[str, bool] = {}
        async with httpx.AsyncClient(
            timeout=self.timeout,
            transport=self._transport,
            auth=(self.account_sid, self.auth_token),
        ) as client:
            for recipient in recipients:
                try:
                    response = await client.post(
                        url,
                        data={"To": recipient, "From": self.from_number, "Body": self.body(event)},
                    )
                    results[recipient] = response.is_success
                    if not response.is_success:
                        logger.warning("Twilio rejected SMS to %s: HTTP %d", recipient, response.status_code)
                except httpx.HTTPError as exc:
                    logger.warning("Failed to text %s: %s", recipient, exc)
                    results[recipient] = False
        return results


@dataclass
class AlertNotifier:
    """Pipeline notifier: plans recipients per event and dispatches."""

    email: EmailSender | None
    subscribers: list[Subscriber]
    sms: SmsSender | None = None
    sms_enabled: bool = False
    deliveries: deque[dict] = field(default_factory=lambda: deque(maxlen=DELIVERY_LOG_LIMIT))

    async def notify(self, event: PersistedEvent) -> AlertPlan:
        plan = plan_alerts(event, self.subscribers, sms_enabled=self.sms_enabled and self.sms is not None)
        if plan.empty:
            return plan
        record: dict = {"event_id": event.id, "email": {}, "sms": {}}
        if self.email is not None and plan.email:
            record["email"] = await self.email.send(event, plan.email)
        if self.sms is not None and plan.sms:
            record["sms"] = await self.sms.send(event, plan.sms)
        self.deliveries.append(record)
        logger.info(
            "Alerted %s: %d e-mail, %d SMS",
            event.id,
            sum(record["email"].values()),
            sum(record["sms"].values()),
        )
        return plan


@dataclass
class DigestResult:
    events: list[PersistedEvent]
    subject: str
    body: str
    deliveries: dict[str, bool] = field(default_factory=dict)
    sent: bool = False


def _start_of_day(now: datetime, tz: str) -> datetime:
    local = now.astimezone(ZoneInfo(tz))
    return datetime.combine(local.date(), time.min, tzinfo=local.tzinfo)


async def send_daily_digest(
    store,
    tracker: StatusTracker,
    summarizer: Summarizer | None,
    sender: EmailSender,
    recipients: Iterable[str],
    dry_run: bool = False,
    *,
    gate: SummarizationGate | None = None,
    tz: str = "UTC",
    clock: Clock = utc_now,
) -> DigestResult:
    """Mail today's Digest-tier events and stamp ``last_digest_sent``.

    Events without a stored summary get one from ``summarizer`` while
    ``gate`` allows, otherwise the truncated title. A dry run builds the
    body without AI calls, delivery or status updates.
    """
    now = clock()
    events = store.query(EventFilter(category="Digest", since=_start_of_day(now, tz), limit=DIGEST_LIMIT))
    subject = f"Regwatch Daily Digest - {now.astimezone(ZoneInfo(tz)):%a %b %d %Y}"

    lines = [f"{len(events)} regulatory updates for your review.", ""]
    for event in events:
        summary = event.summary
        if not summary and summarizer is not None:
            if not dry_run and (gate is None or gate.try_consume()):
                summary = await summarizer.summarize(event)
            else:
                summary = summarizer.fallback(event)
        lines.append(f"- [{event.source}] {event.title} (score {event.score})")
        if summary and summary != event.title:
            lines.append(f"  {summary}")
        if event.link:
            lines.append(f"  {event.link}")
    lines.extend(["", DISCLAIMER])
    result = DigestResult(events=events, subject=subject, body="\n".join(lines))

    if not events:
        logger.info("No digest events today; nothing to send")
        return result
    if dry_run:
        return result

    result.deliveries = await sender.send_digest(subject, result.body, recipients)
    result.sent = any(result.deliveries.values())
    if result.sent:
        tracker.mark_digest_sent()
    logger.info("Digest with %d events delivered to %d/%d recipients", len(events), sum(result.deliveries.values()), len(result.deliveries))
    return result
