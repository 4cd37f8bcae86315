"""Outbound email: message builders and an SMTP transport with a dev fallback."""
import logging
import smtplib
from datetime import datetime
from email.message import EmailMessage
from typing import NamedTuple

from config import Settings
from errors import UpstreamFailure

log = logging.getLogger(__name__)


class Email(NamedTuple):
    to: str
    subject: str
    text: str
    html: str


def _greeting_name(email: str) -> str:
    return email.split("@")[0]


def _layout(heading: str, body_html: str, link: str, button: str, footer_note: str) -> str:
    year = datetime.utcnow().year
    return f"""\
<div style="font-family: 'Segoe UI', Roboto, Helvetica, Arial, sans-serif; max-width: 600px; margin: 0 auto; color: #333;">
  <div style="background-color: #f8f9fa; padding: 30px; border-radius: 8px;">
    <div style="text-align: center; margin-bottom: 25px;">
      <h1 style="color: #2c3e50; font-size: 24px; margin: 0;">MyPortfolify</h1>
    </div>
    <div style="background-color: white; padding: 30px; border-radius: 5px;">
      <h2 style="color: #2c3e50; font-size: 20px; margin-top: 0;">{heading}</h2>
      {body_html}
      <div style="text-align: center; margin: 30px 0;">
        <a href="{link}" style="display: inline-block; padding: 12px 24px; background-color: #4f46e5; color: white; text-decoration: none; border-radius: 4px;">{button}</a>
      </div>
      <p style="line-height: 1.6; font-size: 14px; color: #666;">{footer_note}</p>
    </div>
    <div style="margin-top: 30px; text-align: center; font-size: 12px; color: #777;">
      <p>&copy; {year} MyPortfolify. All rights reserved.</p>
      <p>If the button doesn't work, copy and paste this URL into your browser:</p>
      <p style="word-break: break-all;">{link}</p>
    </div>
  </div>
</div>
"""


def verification_email(to: str, link: str) -> Email:
    name = _greeting_name(to)
    text = (
        f"Hi {name}!\n\n"
        "Welcome to MyPortfolify! To get started, please verify your email address "
        f"by clicking the link below:\n\n{link}\n\n"
        "If you didn't request this, please ignore this email.\n\n"
        "Thanks,\nThe MyPortfolify Team"
    )
    html = _layout(
        "Welcome to MyPortfolify!",
        f"<p>Hi {name},</p><p>Thank you for creating an account. Please verify your "
        "email address to complete your registration and start building your portfolio.</p>",
        link,
        "Verify Email Address",
        "If you didn't create a MyPortfolify account, you can safely ignore this email.",
    )
    return Email(to, "Complete Your MyPortfolify Registration", text, html)


def resend_verification_email(to: str, link: str) -> Email:
    name = _greeting_name(to)
    text = (
        f"Hi {name}!\n\n"
        "You requested a new verification email. Please verify your email address "
        f"by clicking the link below:\n\n{link}\n\n"
        "If you didn't request this, please ignore this email.\n\n"
        "Thanks,\nThe MyPortfolify Team"
    )
    html = _layout(
        "Verify Your Email Address",
        f"<p>Hi {name},</p><p>Please verify your email address to activate your account.</p>",
        link,
        "Verify Email Address",
        "If you didn't create a MyPortfolify account, you can safely ignore this email.",
    )
    return Email(to, "Resend Email Verification for MyPortfolify", text, html)


def password_reset_email(to: str, link: str, valid_minutes: int) -> Email:
    text = (
        "Hi there,\n\n"
        "We received a request to reset your MyPortfolify password. "
        f"Click the link below to proceed:\n\n{link}\n\n"
        f"This link expires in {valid_minutes} minutes for security reasons.\n\n"
        "If you didn't request this, please ignore this email or contact support.\n\n"
        "- The MyPortfolify Team"
    )
    html = _layout(
        "Password Reset Request",
        "<p>We received a request to reset the password for your account.</p>",
        link,
        "Reset Password",
        f"This link will expire in {valid_minutes} minutes. If you didn't request a "
        "password reset, you can ignore this email.",
    )
    return Email(to, "Password Reset Request for Your MyPortfolify Account", text, html)


class Mailer:
    """Sends Email tuples over SMTP.

    Without SMTP credentials (local development) messages are logged instead
    of sent, so the verification and reset links can be copied from the log.
    """

    def __init__(self, settings: Settings):
        self.host = settings.smtp_host
        self.port = settings.smtp_port
        self.user = settings.smtp_user
        self.password = settings.smtp_password.get_secret_value()
        self.sender = settings.smtp_from
        self.use_tls = settings.smtp_use_tls

    @property
    def configured(self) -> bool:
        return bool(self.host and self.user and self.password)

    def build_message(self, email: Email) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = email.subject
        msg["From"] = self.sender
        msg["To"] = email.to
        msg.set_content(email.text)
        msg.add_alternative(email.html, subtype="html")
        return msg

    def send(self, email: Email) -> None:
        if not self.configured:
            log.warning("[DEV EMAIL] To: %s\nSubject: %s\n\n%s", email.to, email.subject, email.text)
            return
        try:
            self.deliver(self.build_message(email))
        except (smtplib.SMTPException, OSError) as e:
            log.exception("Failed to send email %r to %s", email.subject, email.to)
            raise UpstreamFailure("Failed to send email") from e
        log.info("Sent email %r to %s", email.subject, email.to)

    def deliver(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=30) as smtp:
            if self.use_tls:
                smtp.starttls()
            smtp.login(self.user, self.password)
            smtp.send_message(message)
