"""Booking e-mails sent over SMTP.

Callers schedule these after the booking is committed; a delivery failure is
logged and never reaches the booking result.
"""

import html
import logging
import smtplib
import ssl
from dataclasses import dataclass, field
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from booking_service.core import config

logger = logging.getLogger(__name__)


@dataclass
class BookingNotice:
    booking_id: str
    start: datetime
    end: datetime
    person_name: str
    person_email: str
    visitor_data: dict = field(default_factory=dict)
    meeting_link: str | None = None
    notes: str | None = None
    cancellation_reason: str | None = None

    @classmethod
    def from_booking(cls, booking, person) -> 'BookingNotice':
        return cls(
            booking_id=booking.id,
            start=booking.start_time,
            end=booking.end_time,
            person_name=person.display_name,
            person_email=person.email,
            visitor_data=dict(booking.visitor_data or {}),
            meeting_link=booking.meeting_link,
            notes=booking.notes,
            cancellation_reason=booking.cancellation_reason,
        )

    @property
    def when(self) -> str:
        return f"{self.start.strftime('%A, %b %d %Y at %H:%M')} - {self.end.strftime('%H:%M')} UTC"


def smtp_configured() -> bool:
    return config.EMAIL_ENABLED and bool(config.SMTP_HOST and config.SMTP_USER and config.SMTP_PASS)


def send_email(to_email: str, subject: str, text_body: str, html_body: str) -> None:
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = f"{config.MAIL_FROM_NAME} <{config.SMTP_USER}>"
    msg["To"] = to_email
    msg.attach(MIMEText(text_body, "plain"))
    msg.attach(MIMEText(html_body, "html"))

    context = ssl.create_default_context()
    with smtplib.SMTP(config.SMTP_HOST, config.SMTP_PORT) as server:
        if config.SMTP_PORT == 587:
            server.starttls(context=context)
        server.login(config.SMTP_USER, config.SMTP_PASS)
        server.sendmail(config.SMTP_USER, [to_email], msg.as_string())


def _deliver(to_email: str | None, subject: str, text_body: str, html_body: str, booking_id: str) -> bool:
    if not to_email:
        logger.warning('No recipient for booking %s e-mail %r, skipping', booking_id, subject)
        return False
    if not smtp_configured():
        logger.info('SMTP not configured; e-mail %r for booking %s not sent to %s', subject, booking_id, to_email)
        return False
    try:
        send_email(to_email, subject, text_body, html_body)
    except (smtplib.SMTPException, OSError):
        logger.exception('Failed to send e-mail %r for booking %s', subject, booking_id)
        return False

    logger.info('Sent e-mail %r for booking %s to %s', subject, booking_id, to_email)
    return True


def _escape(value) -> str:
    return html.escape(str(value))


def send_booking_notifications(notice: BookingNotice) -> None:
    visitor_name = notice.visitor_data.get("name") or "Visitor"
    visitor_email = notice.visitor_data.get("email") or "-"
    visitor_phone = notice.visitor_data.get("phone") or "-"
    link_line = f"Meeting link: {notice.meeting_link}\n" if notice.meeting_link else ""
    link_html = f'<p><strong>Meeting link:</strong> <a href="{_escape(notice.meeting_link)}">{_escape(notice.meeting_link)}</a></p>' if notice.meeting_link else ""

    visitor_text = f"""
Your booking is confirmed

With: {notice.person_name}
When: {notice.when}
{link_line}Reference: {notice.booking_id}
    """.strip()
    visitor_html = f"""
    <h2>Your booking is confirmed</h2>
    <p><strong>With:</strong> {_escape(notice.person_name)}</p>
    <p><strong>When:</strong> {_escape(notice.when)}</p>
    {link_html}
    <p><strong>Reference:</strong> {_escape(notice.booking_id)}</p>
    """.strip()
    _deliver(notice.visitor_data.get("email"), "Your Booking Confirmation", visitor_text, visitor_html, notice.booking_id)

    notes_html = _escape(notice.notes or '').replace('\n', '<br/>') or '-'
    person_text = f"""
New booking

When: {notice.when}
Visitor: {visitor_name} ({visitor_email}, {visitor_phone})
{link_line}Notes:
{notice.notes or '-'}
    """.strip()
    person_html = f"""
    <h2>New booking</h2>
    <p><strong>When:</strong> {_escape(notice.when)}</p>
    <p><strong>Visitor:</strong> {_escape(visitor_name)} ({_escape(visitor_email)}, {_escape(visitor_phone)})</p>
    {link_html}
    <p><strong>Notes:</strong><br/>{notes_html}</p>
    """.strip()
    _deliver(notice.person_email, f"New booking with {visitor_name}", person_text, person_html, notice.booking_id)


def send_cancellation_notifications(notice: BookingNotice) -> None:
    reason = notice.cancellation_reason or "-"
    text_body = f"""
Booking cancelled

With: {notice.person_name}
When: {notice.when}
Reason: {reason}
    """.strip()
    html_body = f"""
    <h2>Booking cancelled</h2>
    <p><strong>With:</strong> {_escape(notice.person_name)}</p>
    <p><strong>When:</strong> {_escape(notice.when)}</p>
    <p><strong>Reason:</strong> {_escape(reason)}</p>
    """.strip()

    for recipient in (notice.visitor_data.get("email"), notice.person_email):
        _deliver(recipient, "Booking Cancelled", text_body, html_body, notice.booking_id)
