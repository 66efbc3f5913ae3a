import asyncio
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from consulting_slots.core.config import settings
from consulting_slots.services.events import BookingCancelled, BookingCreated, EventBus
from consulting_slots.services.timewindow import TimeWindow

logger = logging.getLogger(__name__)


def _send_email_sync(to_email: str, subject: str, html_body: str) -> None:
    """Send email via SMTP (blocking). Run off the event loop."""
    if not settings.email_enabled:
        logger.debug("Email disabled (SMTP not configured), skipping send")
        return
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = f"{settings.from_name} <{settings.from_email}>"
    msg["To"] = to_email
    msg.attach(MIMEText(html_body, "html", "utf-8"))
    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port) as server:
            server.starttls()
            server.login(settings.smtp_user, settings.smtp_password)
            server.sendmail(settings.from_email, [to_email], msg.as_string())
        logger.info("Email sent to %s", to_email)
    except Exception as e:
        logger.exception("Failed to send email to %s: %s", to_email, e)


def _html_escape(s: str) -> str:
    return (
        s.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
    )


def format_window(window: TimeWindow) -> str:
    date_str = window.date.strftime("%A, %B %d, %Y")
    start = window.start_time.strftime("%I:%M %p")
    end = window.end_time.strftime("%I:%M %p")
    return f"{date_str}, {start} – {end} ({window.timezone})"


def build_booking_html(title: str, greeting: str, window: TimeWindow, extra: str | None = None) -> str:
    extra_section = ""
    if extra:
        extra_section = f'<p style="margin:0 0 24px 0;color:#6b7280;font-size:14px;">{_html_escape(extra)}</p>'
    return f"""
<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>{title}</title>
</head>
<body style="margin:0;padding:0;font-family:-apple-system,BlinkMacSystemFont,'Segoe UI',Roboto,sans-serif;background-color:#f3f4f6;">
  <table role="presentation" width="100%" cellspacing="0" cellpadding="0" style="max-width:560px;margin:40px auto;background:#ffffff;border-radius:12px;">
    <tr>
      <td style="padding:32px;">
        <h1 style="margin:0 0 8px 0;font-size:22px;font-weight:600;color:#111827;">{title}</h1>
        <p style="margin:0 0 24px 0;font-size:15px;color:#6b7280;">{greeting}</p>
        <p style="margin:0 0 24px 0;font-size:16px;font-weight:600;color:#111827;">{_html_escape(format_window(window))}</p>
        {extra_section}
        <p style="margin:0;font-size:13px;color:#6b7280;">{settings.site_name}</p>
      </td>
    </tr>
  </table>
</body>
</html>
"""


def send_booking_confirmation_email(event: BookingCreated) -> None:
    name = _html_escape(event.customer_name or "there")
    html = build_booking_html(
        "Booking Confirmed", f"Hi {name}, your consultation is booked.", event.window
    )
    _send_email_sync(event.customer_email, f"{settings.site_name} – Booking Confirmed", html)
    specialist_html = build_booking_html(
        "New Booking",
        f"{name} ({_html_escape(event.customer_email)}) booked one of your slots.",
        event.window,
    )
    _send_email_sync(event.specialist_email, f"{settings.site_name} – New Booking", specialist_html)


def send_booking_cancelled_email(event: BookingCancelled) -> None:
    name = _html_escape(event.customer_name or "there")
    reason = f"Reason: {event.reason}" if event.reason else None
    html = build_booking_html(
        "Booking Cancelled", f"Hi {name}, this booking has been cancelled.", event.window, reason
    )
    _send_email_sync(event.customer_email, f"{settings.site_name} – Booking Cancelled", html)
    specialist_html = build_booking_html(
        "Booking Cancelled",
        f"The booking of {name} ({_html_escape(event.customer_email)}) was cancelled.",
        event.window,
        reason,
    )
    _send_email_sync(event.specialist_email, f"{settings.site_name} – Booking Cancelled", specialist_html)


async def notify_booking_created(event: BookingCreated) -> None:
    await asyncio.to_thread(send_booking_confirmation_email, event)


async def notify_booking_cancelled(event: BookingCancelled) -> None:
    await asyncio.to_thread(send_booking_cancelled_email, event)


def register_email_notifications(bus: EventBus) -> None:
    bus.subscribe(BookingCreated, notify_booking_created)
    bus.subscribe(BookingCancelled, notify_booking_cancelled)
