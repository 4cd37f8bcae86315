import logging
import smtplib

import pytest

from errors import UpstreamFailure
from mailer import Mailer, password_reset_email, resend_verification_email, verification_email
from tests.conftest import make_settings


def smtp_settings():
    return make_settings(
        smtp_host="smtp.test", smtp_user="mailer", smtp_password="secret", smtp_from="noreply@x.com"
    )


def test_templates_include_link():
    link = "http://api.test/verify-email/abc"
    email = verification_email("jane@x.com", link)
    assert email.subject == "Complete Your MyPortfolify Registration"
    assert "Hi jane!" in email.text
    assert link in email.text
    assert link in email.html

    assert resend_verification_email("jane@x.com", link).subject == "Resend Email Verification for MyPortfolify"

    reset = password_reset_email("jane@x.com", "http://app.test/reset-password/abc", 60)
    assert "60 minutes" in reset.text
    assert "http://app.test/reset-password/abc" in reset.html


def test_unconfigured_mailer_logs_instead_of_sending(caplog, monkeypatch):
    mailer = Mailer(make_settings())
    assert not mailer.configured

    def fail(message):
        raise AssertionError("should not deliver")

    monkeypatch.setattr(mailer, "deliver", fail)
    with caplog.at_level(logging.WARNING, logger="mailer"):
        mailer.send(verification_email("jane@x.com", "http://api.test/verify-email/abc"))
    assert "[DEV EMAIL]" in caplog.text
    assert "http://api.test/verify-email/abc" in caplog.text


def test_configured_mailer_delivers(monkeypatch):
    mailer = Mailer(smtp_settings())
    assert mailer.configured
    sent = []
    monkeypatch.setattr(mailer, "deliver", sent.append)

    mailer.send(verification_email("jane@x.com", "http://api.test/verify-email/abc"))
    [message] = sent
    assert message["To"] == "jane@x.com"
    assert message["From"] == "noreply@x.com"
    assert message.get_body(preferencelist=("plain",)) is not None
    assert message.get_body(preferencelist=("html",)) is not None


@pytest.mark.parametrize("error", [smtplib.SMTPAuthenticationError(535, b"bad"), ConnectionRefusedError()])
def test_delivery_failure_is_an_upstream_failure(monkeypatch, error):
    mailer = Mailer(smtp_settings())

    def deliver(message):
        raise error

    monkeypatch.setattr(mailer, "deliver", deliver)
    with pytest.raises(UpstreamFailure):
        mailer.send(verification_email("jane@x.com", "http://api.test/verify-email/abc"))
