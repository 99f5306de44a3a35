# notifications.py
# Outbound email over SMTP (SSL on 465, STARTTLS otherwise).

from __future__ import annotations

import html
import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Any, Dict, Optional, Tuple

import settings
from errors import NotificationError
from pricing import format_event_date, format_price

log = logging.getLogger(__name__)


def compose_confirmation(data: Dict[str, Any], brand_name: str) -> Tuple[str, str, str]:
    name = data.get("name") or "there"
    event_name = data.get("event_name") or "your session"
    when = format_event_date(data.get("event_start_at")) or "TBA"
    location = data.get("location") or "Online"
    amount = format_price(data.get("amount_cents"), data.get("currency"))

    subject = f"Registration Confirmed: {event_name}"
    text_body = (
        f"Hi {name},\n\n"
        f"Your payment was received and your seat for {event_name} is confirmed.\n\n"
        f"When: {when}\n"
        f"Where: {location}\n"
        f"Amount paid: {amount}\n"
        f"Registration ID: {data.get('registration_id')}\n\n"
        f"See you there!\n— {brand_name}"
    )
    html_body = (
        f"<p>Hi {html.escape(name)},</p>"
        f"<p>Your payment was received and your seat for <strong>{html.escape(event_name)}</strong> is confirmed.</p>"
        f"<ul><li>When: {html.escape(when)}</li><li>Where: {html.escape(location)}</li>"
        f"<li>Amount paid: {html.escape(amount)}</li>"
        f"<li>Registration ID: {html.escape(str(data.get('registration_id')))}</li></ul>"
        f"<p>See you there!<br>{html.escape(brand_name)}</p>"
    )
    return subject, text_body, html_body


def compose_payment_reminder(data: Dict[str, Any], brand_name: str, site_url: str) -> Tuple[str, str, None]:
    name = data.get("name") or "there"
    event_name = data.get("event_name") or "your session"
    when = format_event_date(data.get("event_start_at")) or "TBA"
    amount = format_price(data.get("amount_cents"), data.get("currency"))
    subject = f"Payment Reminder: {event_name}"
    text_body = (
        f"Hi {name},\n\n"
        f"Your registration for {event_name} ({when}) is reserved but not yet paid.\n"
        f"Amount due: {amount}\n\n"
        f"Complete your payment here: {site_url}/payment/{data.get('registration_id')}\n\n"
        f"— {brand_name}"
    )
    return subject, text_body, None


def compose_welcome(data: Dict[str, Any], brand_name: str, site_url: str) -> Tuple[str, str, None]:
    name = data.get("name") or "there"
    subject = f"Welcome to {brand_name}, {name}!"
    text_body = (
        f"Hi {name},\n\n"
        f"Thanks for creating an account. Browse upcoming sessions at {site_url}/events.\n\n"
        f"— {brand_name}"
    )
    return subject, text_body, None


def compose_contact_notice(data: Dict[str, Any]) -> Tuple[str, str]:
    interest = data.get("interest")
    subject = f"New Contact Form Submission: {interest}" if interest else "New Contact Form Submission"
    body_lines = [
        "A visitor submitted the contact form.",
        "",
        f"Name: {data.get('name')}",
        f"Email: {data.get('email')}",
        f"Phone: {data.get('phone') or 'Not provided'}",
        f"Interest: {interest or 'Not specified'}",
        f"Source: {data.get('source') or 'Contact Page'}",
        "",
        data.get("message") or "No message provided",
    ]
    return subject, "\n".join(body_lines)


def compose_contact_auto_reply(data: Dict[str, Any], brand_name: str) -> Tuple[str, str, None]:
    subject = f"Thank You for Contacting {brand_name}"
    text_body = (
        f"Hello {data.get('name') or 'there'},\n\n"
        "Thank you for reaching out. We've received your message and a member of our team "
        "will be in touch within 24 hours.\n"
    )
    if data.get("interest"):
        text_body += f"\nWe look forward to discussing your interest in {data['interest']}.\n"
    text_body += f"\nBest regards,\nThe {brand_name} Team"
    return subject, text_body, None


def _compose_late_payment_notice(data: Dict[str, Any]) -> Tuple[str, str]:
    failed = data.get("refund_failed")
    action = "REFUND FAILED" if failed else "Refunded"
    subject = f"{action}: late payment from {data.get('name')} ({data.get('email')})"
    text_body = (
        "A payment succeeded after its registration was already closed or paid.\n\n"
        f"Name: {data.get('name') or 'Unknown'}\n"
        f"Email: {data.get('email') or 'N/A'}\n"
        f"Event: {data.get('event_name') or 'N/A'}\n"
        f"Amount: {format_price(data.get('amount_cents'), data.get('currency'))}\n"
        f"Payment intent: {data.get('refunded_intent')}\n"
        f"Registration: {data.get('registration_id')}\n"
    )
    if failed:
        text_body += "\nThe automatic refund did not go through. Refund it from the Stripe dashboard.\n"
    return subject, text_body


def _compose_operator_notice(data: Dict[str, Any]) -> Tuple[str, str]:
    if data.get("refunded_intent"):
        return _compose_late_payment_notice(data)
    subject = f"New paid registration — {data.get('name')} ({data.get('email')})"
    text_body = (
        "A registration has been paid.\n\n"
        f"Name: {data.get('name') or 'Unknown'}\n"
        f"Email: {data.get('email') or 'N/A'}\n"
        f"Event: {data.get('event_name') or 'N/A'}\n"
        f"Amount: {format_price(data.get('amount_cents'), data.get('currency'))}\n"
        f"Registration: {data.get('registration_id')}\n"
    )
    if data.get("confirmation_failed"):
        text_body += "\nThe confirmation email could not be sent. Resend it from the admin dashboard.\n"
    return subject, text_body


class SmtpNotifier:
    """Sends transactional email; every send is bounded by ``timeout``."""

    def __init__(
        self,
        host: str = settings.SMTP_HOST,
        port: int = settings.SMTP_PORT,
        username: str = settings.SMTP_USERNAME,
        password: str = settings.SMTP_PASSWORD,
        sender: str = settings.SMTP_FROM,
        backend: str = settings.EMAIL_BACKEND,
        starttls: bool = settings.SMTP_STARTTLS,
        timeout: float = settings.SMTP_TIMEOUT,
        operator_address: Optional[str] = settings.REG_NOTIFY_TO,
        contact_address: Optional[str] = settings.CONTACT_TO,
        notify_operators_enabled: bool = settings.REG_NOTIFY_ENABLED,
        brand_name: str = settings.BRAND_NAME,
        site_url: str = settings.SITE_URL,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        self.backend = backend
        self.starttls = starttls
        self.timeout = timeout
        self.operator_address = operator_address
        self.contact_address = contact_address
        self.notify_operators_enabled = notify_operators_enabled
        self.brand_name = brand_name
        self.site_url = site_url

    def send_email_notification(
        self,
        subject: str,
        text_body: str,
        to_address: str,
        reply_to: Optional[str] = None,
        html_body: Optional[str] = None,
    ) -> bool:
        """Send one message; returns False (and logs) instead of raising."""
        if self.backend != "smtp":
            log.warning("Email notification skipped: EMAIL_BACKEND=%s", self.backend)
            return False
        if not (self.username and self.password and to_address):
            log.warning("Email notification skipped: SMTP not fully configured")
            return False

        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self.sender or self.username
        message["To"] = to_address
        if reply_to:
            message["Reply-To"] = reply_to
        message.set_content(text_body)
        if html_body:
            message.add_alternative(html_body, subtype="html")

        try:
            if self.port == 465:
                with smtplib.SMTP_SSL(
                    self.host, self.port, context=ssl.create_default_context(), timeout=self.timeout
                ) as smtp:
                    smtp.login(self.username, self.password)
                    smtp.send_message(message)
            else:
                with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                    if self.starttls:
                        smtp.ehlo()
                        smtp.starttls(context=ssl.create_default_context())
                        smtp.ehlo()
                    smtp.login(self.username, self.password)
                    smtp.send_message(message)
            log.info("Email sent to %s (subject=%r)", to_address, subject)
            return True
        except (smtplib.SMTPException, OSError):
            log.exception("SMTP send to %s failed", to_address)
            return False

    def send_confirmation(self, to_email: str, template_data: Dict[str, Any]) -> None:
        subject, text_body, html_body = compose_confirmation(template_data, self.brand_name)
        if not self.send_email_notification(subject, text_body, to_email, html_body=html_body):
            raise NotificationError(f"Could not send confirmation email to {to_email}.")

    def send_payment_reminder(self, to_email: str, template_data: Dict[str, Any]) -> None:
        subject, text_body, html_body = compose_payment_reminder(template_data, self.brand_name, self.site_url)
        if not self.send_email_notification(subject, text_body, to_email, html_body=html_body):
            raise NotificationError(f"Could not send payment reminder to {to_email}.")

    def send_welcome(self, to_email: str, template_data: Dict[str, Any]) -> None:
        subject, text_body, html_body = compose_welcome(template_data, self.brand_name, self.site_url)
        if not self.send_email_notification(subject, text_body, to_email, html_body=html_body):
            raise NotificationError(f"Could not send welcome email to {to_email}.")

    def notify_operators(self, template_data: Dict[str, Any]) -> bool:
        if not (self.notify_operators_enabled and self.operator_address):
            return False
        subject, text_body = _compose_operator_notice(template_data)
        return self.send_email_notification(
            subject, text_body, self.operator_address, reply_to=template_data.get("email")
        )

    def send_contact_notice(self, data: Dict[str, Any]) -> None:
        subject, text_body = compose_contact_notice(data)
        if not self.send_email_notification(subject, text_body, self.contact_address, reply_to=data.get("email")):
            raise NotificationError("We couldn't send your message right now. Please try again later.")

    def send_contact_auto_reply(self, to_email: str, data: Dict[str, Any]) -> None:
        subject, text_body, html_body = compose_contact_auto_reply(data, self.brand_name)
        if not self.send_email_notification(subject, text_body, to_email, html_body=html_body):
            raise NotificationError(f"Could not send contact acknowledgement to {to_email}.")
