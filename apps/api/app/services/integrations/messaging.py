"""Outbound messaging - Twilio SMS (per-org credentials) and Resend email."""

import logging
import re

import httpx
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.encryption import decrypt_json
from app.core.errors import ProviderError
from app.db.enums import IntegrationKind, IntegrationProvider
from app.db.models import OrgIntegration, Organization
from app.services.integrations.base import EmailProvider, SmsProvider
from app.services.integrations.http import DEFAULT_TIMEOUT, call_provider, malformed_response

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")


def render_template(body: str, variables: dict) -> str:
    """Replace {{key}} placeholders; unknown keys render as empty strings."""
    return _PLACEHOLDER.sub(lambda m: str(variables.get(m.group(1)) or ""), body)


class TwilioSms(SmsProvider):
    provider = IntegrationProvider.TWILIO.value
    api_base = "https://api.twilio.com/2010-04-01"

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self._transport = transport

    def _get_config(self, db: Session, org_id) -> dict:
        integration = db.query(OrgIntegration).filter(
            OrgIntegration.org_id == org_id,
            OrgIntegration.kind == IntegrationKind.SMS.value,
            OrgIntegration.is_active.is_(True),
        ).first()
        if not integration or not integration.config_encrypted:
            raise ProviderError(self.provider, "No SMS channel configured for org")
        try:
            config = decrypt_json(integration.config_encrypted)
        except ValueError as exc:
            raise ProviderError(self.provider, str(exc)) from exc
        config.setdefault("phone_number", integration.external_id)
        return config

    async def send_sms(self, db: Session, org: Organization, to: str, body: str) -> str:
        config = self._get_config(db, org.id)
        account_sid = config["account_sid"]
        async with httpx.AsyncClient(transport=self._transport, timeout=DEFAULT_TIMEOUT) as client:
            response = await call_provider(
                self.provider,
                lambda: client.post(
                    f"{self.api_base}/Accounts/{account_sid}/Messages.json",
                    auth=(account_sid, config["auth_token"]),
                    data={"To": to, "From": config["phone_number"], "Body": body},
                ),
            )
        with malformed_response(self.provider):
            sid = response.json()["sid"]
        logger.info("SMS sent for org=%s sid=%s", org.id, sid)
        return sid


class ResendEmail(EmailProvider):
    provider = "resend"
    api_url = "https://api.resend.com/emails"

    def __init__(
        self,
        api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key if api_key is not None else settings.RESEND_API_KEY
        self._transport = transport

    async def send_email(self, to: str | list[str], subject: str, html: str) -> str | None:
        if not self.api_key:
            raise ProviderError(self.provider, "RESEND_API_KEY not configured")
        recipients = to if isinstance(to, list) else [to]
        async with httpx.AsyncClient(transport=self._transport, timeout=DEFAULT_TIMEOUT) as client:
            response = await call_provider(
                self.provider,
                lambda: client.post(
                    self.api_url,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json={
                        "from": settings.EMAIL_FROM,
                        "to": recipients,
                        "subject": subject,
                        "html": html,
                    },
                ),
            )
        with malformed_response(self.provider):
            return response.json().get("id")
