import smtplib
import unittest
from datetime import datetime, timezone
from unittest.mock import patch

from errors import NotificationError
from notifications import (
    SmtpNotifier,
    _compose_operator_notice,
    compose_confirmation,
    compose_contact_auto_reply,
    compose_contact_notice,
    compose_payment_reminder,
)

TEMPLATE_DATA = {
    "registration_id": "reg-1",
    "name": "Ada",
    "email": "ada@example.com",
    "event_name": "Intro",
    "event_start_at": datetime(2025, 6, 1, 9, 0, tzinfo=timezone.utc),
    "location": "Online (Zoom)",
    "amount_cents": 19900,
    "currency": "usd",
}


def _notifier(**overrides):
    options = dict(
        host="smtp.example.com",
        port=465,
        username="mailer@example.com",
        password="app-password",
        sender="Bootcamp <mailer@example.com>",
        backend="smtp",
        operator_address="ops@example.com",
        contact_address="hello@example.com",
        notify_operators_enabled=True,
        brand_name="AI Bootcamp",
        site_url="https://example.com",
    )
    options.update(overrides)
    return SmtpNotifier(**options)


class ComposeTests(unittest.TestCase):
    def test_confirmation(self):
        subject, text_body, html_body = compose_confirmation(TEMPLATE_DATA, "AI Bootcamp")
        self.assertEqual(subject, "Registration Confirmed: Intro")
        self.assertIn("$199.00", text_body)
        self.assertIn("Jun 01, 2025 09:00 UTC", text_body)
        self.assertIn("reg-1", html_body)

    def test_html_is_escaped(self):
        data = dict(TEMPLATE_DATA, name="<script>")
        _, _, html_body = compose_confirmation(data, "AI Bootcamp")
        self.assertNotIn("<script>", html_body)

    def test_reminder_links_to_payment(self):
        subject, text_body, _ = compose_payment_reminder(TEMPLATE_DATA, "AI Bootcamp", "https://example.com")
        self.assertEqual(subject, "Payment Reminder: Intro")
        self.assertIn("https://example.com/payment/reg-1", text_body)

    def test_late_payment_notice(self):
        subject, text_body = _compose_operator_notice(dict(TEMPLATE_DATA, refunded_intent="pi_9"))
        self.assertTrue(subject.startswith("Refunded: late payment"))
        self.assertIn("pi_9", text_body)
        subject, text_body = _compose_operator_notice(
            dict(TEMPLATE_DATA, refunded_intent="pi_9", refund_failed=True)
        )
        self.assertTrue(subject.startswith("REFUND FAILED"))
        self.assertIn("Stripe dashboard", text_body)

    def test_contact_notice(self):
        subject, text_body = compose_contact_notice({"name": "Ada", "email": "ada@example.com", "interest": "Bootcamp"})
        self.assertEqual(subject, "New Contact Form Submission: Bootcamp")
        self.assertIn("Phone: Not provided", text_body)
        self.assertIn("No message provided", text_body)
        self.assertEqual(compose_contact_notice({"name": "Ada"})[0], "New Contact Form Submission")

    def test_contact_auto_reply(self):
        subject, text_body, _ = compose_contact_auto_reply({"name": "Ada", "interest": "Bootcamp"}, "AI Bootcamp")
        self.assertEqual(subject, "Thank You for Contacting AI Bootcamp")
        self.assertIn("Hello Ada", text_body)
        self.assertIn("Bootcamp", text_body)


class SmtpNotifierTests(unittest.TestCase):
    def test_sends_over_ssl(self):
        with patch("notifications.smtplib.SMTP_SSL") as smtp_cls:
            _notifier().send_confirmation("ada@example.com", TEMPLATE_DATA)
        smtp = smtp_cls.return_value.__enter__.return_value
        smtp.login.assert_called_once_with("mailer@example.com", "app-password")
        message = smtp.send_message.call_args.args[0]
        self.assertEqual(message["To"], "ada@example.com")
        self.assertEqual(message["Subject"], "Registration Confirmed: Intro")

    def test_starttls_on_other_ports(self):
        with patch("notifications.smtplib.SMTP") as smtp_cls:
            sent = _notifier(port=587, starttls=True).send_email_notification("Hi", "Body", "ada@example.com")
        self.assertTrue(sent)
        smtp = smtp_cls.return_value.__enter__.return_value
        smtp.starttls.assert_called_once()
        smtp.send_message.assert_called_once()

    def test_smtp_failure_raises_notification_error(self):
        with patch("notifications.smtplib.SMTP_SSL", side_effect=smtplib.SMTPException("down")):
            with self.assertRaises(NotificationError):
                _notifier().send_confirmation("ada@example.com", TEMPLATE_DATA)

    def test_disabled_backend_does_not_connect(self):
        with patch("notifications.smtplib.SMTP_SSL") as smtp_cls:
            self.assertFalse(_notifier(backend="console").send_email_notification("Hi", "Body", "ada@example.com"))
            self.assertFalse(_notifier(password="").send_email_notification("Hi", "Body", "ada@example.com"))
        smtp_cls.assert_not_called()

    def test_operator_notice(self):
        with patch("notifications.smtplib.SMTP_SSL") as smtp_cls:
            self.assertTrue(_notifier().notify_operators(TEMPLATE_DATA))
            self.assertFalse(_notifier(notify_operators_enabled=False).notify_operators(TEMPLATE_DATA))
        message = smtp_cls.return_value.__enter__.return_value.send_message.call_args.args[0]
        self.assertEqual(message["To"], "ops@example.com")
        self.assertEqual(message["Reply-To"], "ada@example.com")

    def test_contact_notice_goes_to_contact_address(self):
        form = {"name": "Ada", "email": "ada@example.com", "message": "Hi"}
        with patch("notifications.smtplib.SMTP_SSL") as smtp_cls:
            _notifier().send_contact_notice(form)
        message = smtp_cls.return_value.__enter__.return_value.send_message.call_args.args[0]
        self.assertEqual(message["To"], "hello@example.com")
        self.assertEqual(message["Reply-To"], "ada@example.com")

        with patch("notifications.smtplib.SMTP_SSL") as smtp_cls:
            with self.assertRaises(NotificationError):
                _notifier(contact_address="").send_contact_notice(form)
        smtp_cls.assert_not_called()


if __name__ == "__main__":
    unittest.main()
