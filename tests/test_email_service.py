"""Tests for transactional mail rendering and SMTP delivery."""

import smtplib
from unittest.mock import MagicMock

import pytest

from emovers.service import email as email_module
from emovers.service.email import EmailService


def _configured(**kwargs):
    options = {
        "smtp_host": "smtp.example.com",
        "smtp_port": 587,
        "smtp_user": "mailer@example.com",
        "smtp_password": "pw",
        "from_email": "noreply@example.com",
    }
    options.update(kwargs)
    return EmailService(**options)


class TestRender:
    def test_code_templates_include_code_and_ttl(self):
        service = EmailService(from_name="E-movers")
        subject, html_body, text_body = service.render(
            email_module.PASSWORD_RESET_OTP, {"otp": "482913", "ttl_minutes": 10, "name": "Alice"}
        )
        assert subject == "Reset your E-movers password"
        assert "482913" in html_body
        assert "482913" in text_body
        assert "expires in 10 minutes" in text_body
        assert "Hi Alice," in text_body

    def test_welcome_has_no_code(self):
        service = EmailService(base_url="https://app.example.com")
        subject, html_body, text_body = service.render(email_module.WELCOME, {})
        assert subject.startswith("Welcome to")
        assert 'class="code"' not in html_body
        assert "https://app.example.com" in text_body
        assert "Hi there," in text_body

    def test_unknown_template(self):
        with pytest.raises(ValueError):
            EmailService().render("newsletter", {})


class TestSend:
    def test_dev_mode_logs_instead_of_sending(self, monkeypatch):
        smtp = MagicMock()
        monkeypatch.setattr(email_module.smtplib, "SMTP", smtp)
        service = EmailService()
        assert service.is_configured is False
        assert service.send("alice@example.com", email_module.LOGIN_OTP, {"otp": "123456"}) is True
        smtp.assert_not_called()

    def test_starttls_delivery(self, monkeypatch):
        smtp = MagicMock()
        server = smtp.return_value.__enter__.return_value
        monkeypatch.setattr(email_module.smtplib, "SMTP", smtp)
        service = _configured()
        assert service.send("alice@example.com", email_module.EMAIL_VERIFICATION, {"otp": "1"}) is True
        smtp.assert_called_once_with("smtp.example.com", 587, timeout=30.0)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("mailer@example.com", "pw")
        from_addr, to_addr, body = server.sendmail.call_args.args
        assert from_addr == "noreply@example.com"
        assert to_addr == "alice@example.com"
        assert "Verify your" in body

    def test_implicit_tls_delivery(self, monkeypatch):
        smtp_ssl = MagicMock()
        monkeypatch.setattr(email_module.smtplib, "SMTP_SSL", smtp_ssl)
        service = _configured(smtp_port=465, smtp_use_tls=False)
        assert service.send("alice@example.com", email_module.WELCOME) is True
        smtp_ssl.return_value.__enter__.return_value.sendmail.assert_called_once()

    @pytest.mark.parametrize(
        "error",
        [
            smtplib.SMTPAuthenticationError(535, b"bad credentials"),
            smtplib.SMTPRecipientsRefused({"alice@example.com": (550, b"no such user")}),
            smtplib.SMTPServerDisconnected("gone"),
            ConnectionRefusedError("refused"),
            TimeoutError("timed out"),
        ],
    )
    def test_delivery_failure_returns_false(self, monkeypatch, error):
        smtp = MagicMock()
        smtp.return_value.__enter__.return_value.sendmail.side_effect = error
        monkeypatch.setattr(email_module.smtplib, "SMTP", smtp)
        assert _configured().send("alice@example.com", email_module.LOGIN_OTP, {"otp": "1"}) is False

    def test_redact_email(self):
        service = EmailService()
        assert service._redact_email("alice@example.com") == "al***@example.com"
        assert service._redact_email("not-an-address") == "redacted"
