from __future__ import annotations

import logging
import smtplib
from email.mime.text import MIMEText
from email.utils import formatdate
from html import escape as html_escape
from typing import Callable, Optional

import boto3
import resend
from botocore.exceptions import BotoCoreError, ClientError, EndpointConnectionError, NoCredentialsError

from sessionauth.core.config import Settings
from sessionauth.core.errors import EmailDeliveryError, EmailNotConfiguredError

logger = logging.getLogger(__name__)

# (to_email, subject, body) -> provider message id
Transport = Callable[[str, str, str], Optional[str]]

SUPPORTED_PROVIDERS = {"resend", "ses", "smtp", "console"}


def _normalize_provider(raw: str | None) -> str:
    """
    Supported providers:
    - resend (default when unset)
    - ses
    - smtp (alias: gmail)
    - console (log only; used whenever EMAIL_ENABLED is false)
    """
    provider = (raw or "").strip().lower()
    if not provider:
        return "resend"
    if provider == "gmail":
        return "smtp"
    if provider in SUPPORTED_PROVIDERS:
        return provider
    raise EmailNotConfiguredError(
        f"Unsupported EMAIL_PROVIDER={provider!r}. Supported: resend (default), ses, smtp, console."
    )


def _require_from_email(cfg: Settings) -> str:
    if not cfg.FROM_EMAIL:
        raise EmailNotConfiguredError("FROM_EMAIL is not set")
    return cfg.FROM_EMAIL


def _console_transport(to_email: str, subject: str, body: str) -> None:  # noqa: ARG001
    # Never log the body: it carries the code or link.
    logger.info("Email delivery disabled; dropped message to=%s subject=%r", to_email, subject)
    return None


def _resend_transport(cfg: Settings) -> Transport:
    api_key = (cfg.RESEND_API_KEY or "").strip()
    if not api_key:
        raise EmailNotConfiguredError("RESEND_API_KEY is not set")
    from_email = _require_from_email(cfg)

    def send(to_email: str, subject: str, body: str) -> str | None:
        payload = {
            "from": from_email,
            "to": [to_email],
            "subject": subject,
            "text": body,
            "html": f"<pre>{html_escape(body)}</pre>",
        }
        try:
            resend.api_key = api_key
            res = resend.Emails.send(payload)  # type: ignore[attr-defined]
        except Exception as e:  # noqa: BLE001
            raise EmailDeliveryError(f"Resend send failed: {e}") from e

        if isinstance(res, dict) and res.get("error"):
            raise EmailDeliveryError(f"Resend API error: {res.get('error')}")
        msg_id = res.get("id") if isinstance(res, dict) else None
        logger.info("Resend email sent: to=%s msg_id=%s", to_email, msg_id)
        return msg_id

    return send


def _ses_transport(cfg: Settings) -> Transport:
    region = (cfg.AWS_REGION or "").strip()
    if not region:
        raise EmailNotConfiguredError("AWS_REGION is not set (required for SES)")
    from_email = _require_from_email(cfg)
    client = boto3.client("ses", region_name=region)

    def send(to_email: str, subject: str, body: str) -> str | None:
        try:
            res = client.send_email(
                Source=from_email,
                Destination={"ToAddresses": [to_email]},
                Message={
                    "Subject": {"Data": subject, "Charset": "UTF-8"},
                    "Body": {"Text": {"Data": body, "Charset": "UTF-8"}},
                },
            )
        except NoCredentialsError as e:
            logger.exception("SES email failed (no AWS credentials)")
            raise EmailDeliveryError("SES email failed: AWS credentials not available") from e
        except EndpointConnectionError as e:
            logger.exception("SES email failed (endpoint connection)")
            raise EmailDeliveryError("SES email failed: could not connect to SES endpoint") from e
        except ClientError as e:
            logger.exception("SES email failed (client error)")
            code = (e.response or {}).get("Error", {}).get("Code", "ClientError")
            raise EmailDeliveryError(f"SES email failed: {code}") from e
        except BotoCoreError as e:
            logger.exception("SES email failed (botocore)")
            raise EmailDeliveryError("SES email failed") from e

        msg_id = res.get("MessageId")
        logger.info("SES email sent: to=%s msg_id=%s", to_email, msg_id)
        return msg_id

    return send


def _smtp_transport(cfg: Settings) -> Transport:
    if not cfg.SMTP_HOST:
        raise EmailNotConfiguredError("SMTP_HOST is not set")
    from_email = _require_from_email(cfg)

    def send(to_email: str, subject: str, body: str) -> None:
        msg = MIMEText(body, "plain", "utf-8")
        msg["From"] = from_email
        msg["To"] = to_email
        msg["Subject"] = subject
        msg["Date"] = formatdate(localtime=True)

        try:
            if cfg.SMTP_USE_SSL:
                server: smtplib.SMTP = smtplib.SMTP_SSL(cfg.SMTP_HOST, cfg.SMTP_PORT, timeout=10)
            else:
                server = smtplib.SMTP(cfg.SMTP_HOST, cfg.SMTP_PORT, timeout=10)
        except OSError as e:
            raise EmailDeliveryError(f"SMTP connection failed: {e}") from e

        try:
            server.ehlo()
            if cfg.SMTP_USE_TLS and not cfg.SMTP_USE_SSL:
                server.starttls()
                server.ehlo()
            if cfg.SMTP_USERNAME:
                server.login(cfg.SMTP_USERNAME, cfg.SMTP_PASSWORD)
            server.sendmail(from_email, [to_email], msg.as_string())
        except (smtplib.SMTPException, OSError) as e:
            raise EmailDeliveryError(f"SMTP send failed: {e}") from e
        finally:
            try:
                server.quit()
            except (smtplib.SMTPException, OSError):
                pass

        logger.info("SMTP email sent: to=%s", to_email)
        return None

    return send


class EmailDispatcher:
    """
    Sends the three auth emails. Built once at startup (see build_email_dispatcher)
    and handed to services, so the transport is never module-global state.
    """

    def __init__(self, transport: Transport, *, frontend_base_url: str, provider: str = "custom") -> None:
        self._transport = transport
        self.frontend_base_url = frontend_base_url.rstrip("/")
        self.provider = provider

    def _send(self, to_email: str, subject: str, body: str) -> str | None:
        return self._transport(to_email, subject, body)

    def send_verification_email(self, *, to: str, user_id: str, token: str) -> str | None:
        link = f"{self.frontend_base_url}/auth/verify-email/{user_id}/{token}"
        body = "\n".join(
            [
                "Welcome!",
                "",
                "Please verify your email by opening the link below:",
                link,
                "",
                "If you did not create this account, you can ignore this email.",
            ]
        )
        return self._send(to, "Verify your email", body)

    def send_two_factor_email(self, *, to: str, code: str) -> str | None:
        body = "\n".join(
            [
                f"Your verification code is: {code}",
                "",
                "It expires in a few minutes and can be used once.",
                "If you did not try to sign in, change your password.",
            ]
        )
        return self._send(to, "Your verification code", body)

    def send_password_reset_email(self, *, to: str, token: str) -> str | None:
        link = f"{self.frontend_base_url}/auth/reset-password/{token}"
        body = "\n".join(
            [
                "We received a request to reset your password.",
                "",
                "Open the link below to choose a new one:",
                link,
                "",
                "If you did not request this, you can ignore this email.",
            ]
        )
        return self._send(to, "Reset your password", body)


def build_email_dispatcher(cfg: Settings) -> EmailDispatcher:
    provider = _normalize_provider(cfg.EMAIL_PROVIDER) if cfg.EMAIL_ENABLED else "console"
    if provider == "ses":
        transport = _ses_transport(cfg)
    elif provider == "smtp":
        transport = _smtp_transport(cfg)
    elif provider == "resend":
        transport = _resend_transport(cfg)
    else:
        transport = _console_transport

    logger.info("Email dispatcher ready: provider=%s enabled=%s", provider, cfg.EMAIL_ENABLED)
    return EmailDispatcher(transport, frontend_base_url=cfg.FRONTEND_BASE_URL, provider=provider)
