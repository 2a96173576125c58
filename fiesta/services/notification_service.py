"""Email notifications for match, dispute and trust events.

Everything here runs after the core transaction has committed. Delivery is
queued on FastAPI background tasks and failures are logged, never raised.
"""

from __future__ import annotations

import logging
import smtplib
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from decimal import Decimal
from email.message import EmailMessage
from typing import Iterable

from fastapi import BackgroundTasks

from fiesta.core.config import get_settings
from fiesta.models import Dispute, Match, ParticipantRole, User

logger = logging.getLogger(__name__)


@asynccontextmanager
async def after_commit(event: str) -> AsyncIterator[None]:
    """Gather and queue a notification once the core change is durable.

    Lookups run after the commit, so a failure here is logged and dropped
    instead of turning a committed transition into an error response.
    """
    try:
        yield
    except Exception:
        logger.exception("Could not queue the %s notification", event)


def schedule_email(
    background_tasks: BackgroundTasks,
    *,
    recipients: Iterable[str],
    subject: str,
    body: str,
) -> None:
    """Queue an email to be delivered asynchronously."""
    recipients_list = [addr for addr in recipients if addr]
    if not recipients_list:
        logger.debug("No recipients provided for email; skipping")
        return
    settings = get_settings()
    if not settings.smtp_host or not settings.smtp_port:
        logger.debug("SMTP disabled; skipping email to %s", recipients_list)
        return
    background_tasks.add_task(_send_email, recipients_list, subject, body)


def _money(amount: Decimal | None) -> str:
    currency = get_settings().currency
    return f"{amount or Decimal('0.00')} {currency}"


def build_match_requested_email(*, participants: int) -> tuple[str, str]:
    subject = "New request for your experience"
    body = (
        "Hello,\n\n"
        f"A traveler asked to join your experience with {participants} participant(s). "
        f"Accept or reject the request within {get_settings().pending_match_ttl_hours} "
        "hours or it will expire.\n"
    )
    return subject, body


def build_match_accepted_email(*, platform_fee: Decimal | None) -> tuple[str, str]:
    subject = "Your match was accepted"
    fee_line = (
        f"A platform fee of {_money(platform_fee)} was charged to your wallet.\n"
        if platform_fee
        else ""
    )
    body = f"Good news!\n\nThe host accepted your request.\n{fee_line}"
    return subject, body


def build_match_rejected_email(*, reason: str | None) -> tuple[str, str]:
    subject = "Your match request was not accepted"
    body = "Hello,\n\nYour request was not accepted"
    body += f": {reason}.\n" if reason else ".\n"
    return subject, body


def build_match_cancelled_email(
    *, cancelled_by: ParticipantRole, refund_amount: Decimal
) -> tuple[str, str]:
    subject = "A match was cancelled"
    body = (
        f"Hello,\n\nThe {cancelled_by.value} cancelled the match.\n"
        f"Refunded to your wallet: {_money(refund_amount)}.\n"
    )
    return subject, body


def build_match_completed_email() -> tuple[str, str]:
    subject = "Experience completed"
    body = "Hello,\n\nThe experience is marked as completed. You can now leave a review.\n"
    return subject, body


def build_dispute_opened_email(*, reason: str) -> tuple[str, str]:
    subject = "A dispute was opened on your match"
    body = (
        f"Hello,\n\nA dispute was opened on one of your matches ({reason}). "
        "Our team will review it and may contact you through the dispute thread.\n"
    )
    return subject, body


def build_dispute_message_email() -> tuple[str, str]:
    subject = "New message on your dispute"
    body = "Hello,\n\nThere is a new message in your dispute thread.\n"
    return subject, body


def build_dispute_resolved_email(
    *, resolution: str, refund_amount: Decimal | None
) -> tuple[str, str]:
    subject = "Your dispute was resolved"
    body = f"Hello,\n\nThe dispute was resolved: {resolution}.\n"
    if refund_amount:
        body += f"Refund issued: {_money(refund_amount)}.\n"
    return subject, body


def build_strike_email(*, strikes: int, max_strikes: int) -> tuple[str, str]:
    subject = "Account warning"
    body = (
        f"Hello,\n\nYour account received a strike ({strikes}/{max_strikes}). "
        f"Reaching {max_strikes} strikes suspends the account.\n"
    )
    return subject, body


def build_ban_email(*, reason: str | None) -> tuple[str, str]:
    subject = "Your account has been suspended"
    body = "Hello,\n\nYour account has been suspended"
    body += f": {reason}.\n" if reason else ".\n"
    return subject, body


def _send_email(recipients: list[str], subject: str, body: str) -> None:
    settings = get_settings()
    if not settings.smtp_host or not settings.smtp_port:
        logger.info("SMTP settings missing; skipping email delivery to %s", recipients)
        return

    message = EmailMessage()
    message["Subject"] = subject
    message["To"] = ", ".join(recipients)
    message["From"] = settings.smtp_from or settings.smtp_username or "no-reply@fiesta.local"
    message.set_content(body)

    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port) as smtp:
            if settings.smtp_username and settings.smtp_password:
                smtp.starttls()
                smtp.login(settings.smtp_username, settings.smtp_password)
            smtp.send_message(message)
        logger.info("Email sent to %s", recipients)
    except Exception as exc:  # pragma: no cover - logging side-effect only
        logger.exception("Failed to send email to %s: %s", recipients, exc)


def notify_match_requested(
    background_tasks: BackgroundTasks, *, match: Match, emails: dict[str, str]
) -> None:
    subject, body = build_match_requested_email(participants=match.participants)
    schedule_email(
        background_tasks,
        recipients=[emails.get(ParticipantRole.HOST.value, "")],
        subject=subject,
        body=body,
    )


def notify_match_accepted(
    background_tasks: BackgroundTasks,
    *,
    emails: dict[str, str],
    platform_fee: Decimal | None,
) -> None:
    subject, body = build_match_accepted_email(platform_fee=platform_fee)
    schedule_email(
        background_tasks, recipients=emails.values(), subject=subject, body=body
    )


def notify_match_rejected(
    background_tasks: BackgroundTasks, *, match: Match, emails: dict[str, str]
) -> None:
    subject, body = build_match_rejected_email(reason=match.rejection_reason)
    schedule_email(
        background_tasks,
        recipients=[emails.get(ParticipantRole.REQUESTER.value, "")],
        subject=subject,
        body=body,
    )


def notify_match_cancelled(
    background_tasks: BackgroundTasks,
    *,
    emails: dict[str, str],
    cancelled_by: ParticipantRole,
    refund_amount: Decimal,
) -> None:
    subject, body = build_match_cancelled_email(
        cancelled_by=cancelled_by, refund_amount=refund_amount
    )
    schedule_email(
        background_tasks, recipients=emails.values(), subject=subject, body=body
    )


def notify_match_completed(
    background_tasks: BackgroundTasks, *, emails: dict[str, str]
) -> None:
    subject, body = build_match_completed_email()
    schedule_email(
        background_tasks, recipients=emails.values(), subject=subject, body=body
    )


def notify_dispute_opened(
    background_tasks: BackgroundTasks, *, dispute: Dispute, recipients: Iterable[str]
) -> None:
    subject, body = build_dispute_opened_email(reason=dispute.reason_label)
    schedule_email(background_tasks, recipients=recipients, subject=subject, body=body)


def notify_dispute_message(
    background_tasks: BackgroundTasks, *, recipients: Iterable[str]
) -> None:
    subject, body = build_dispute_message_email()
    schedule_email(background_tasks, recipients=recipients, subject=subject, body=body)


def notify_dispute_resolved(
    background_tasks: BackgroundTasks, *, dispute: Dispute, recipients: Iterable[str]
) -> None:
    resolution = dispute.resolution.value if dispute.resolution else "closed"
    subject, body = build_dispute_resolved_email(
        resolution=resolution, refund_amount=dispute.refund_amount
    )
    schedule_email(background_tasks, recipients=recipients, subject=subject, body=body)


def notify_trust_change(background_tasks: BackgroundTasks, *, user: User) -> None:
    if user.banned_at is not None:
        subject, body = build_ban_email(reason=user.ban_reason)
    else:
        subject, body = build_strike_email(
            strikes=user.strikes, max_strikes=get_settings().max_strikes
        )
    schedule_email(background_tasks, recipients=[user.email], subject=subject, body=body)
