"""Calendar integrations - Google Calendar and Microsoft Graph.

Handles:
- Free/busy queries used during slot generation
- Event creation for confirmed appointments
- OAuth token refresh (credentials are stored encrypted on OrgIntegration)
"""

import logging
from datetime import datetime, timedelta, timezone

import httpx
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.encryption import decrypt_json, encrypt_json
from app.core.errors import ProviderError
from app.db.enums import IntegrationKind, IntegrationProvider
from app.db.models import OrgIntegration, Organization
from app.services.availability_service import BusyInterval
from app.services.integrations.base import CalendarEventDetails, CalendarProvider
from app.services.integrations.http import DEFAULT_TIMEOUT, call_provider, malformed_response

logger = logging.getLogger(__name__)


def _parse_utc(value: str) -> datetime:
    """Parse provider timestamps ('...Z', '+00:00', or Graph's naive 7-digit fraction)."""
    text = value.replace("Z", "+00:00")
    if "+" in text[10:] or "-" in text[10:]:
        return datetime.fromisoformat(text).astimezone(timezone.utc)
    return datetime.fromisoformat(text[:19]).replace(tzinfo=timezone.utc)


# =============================================================================
# Provider Clients
# =============================================================================

class GoogleCalendarClient:
    provider = IntegrationProvider.GOOGLE.value
    token_url = "https://oauth2.googleapis.com/token"
    api_base = "https://www.googleapis.com/calendar/v3"

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=DEFAULT_TIMEOUT)

    async def refresh_token(self, refresh_token: str) -> dict:
        async with self._client() as client:
            response = await call_provider(
                self.provider,
                lambda: client.post(
                    self.token_url,
                    data={
                        "client_id": settings.GOOGLE_CLIENT_ID,
                        "client_secret": settings.GOOGLE_CLIENT_SECRET,
                        "refresh_token": refresh_token,
                        "grant_type": "refresh_token",
                    },
                ),
            )
        with malformed_response(self.provider):
            data = response.json()
            return {
                "access_token": data["access_token"],
                "refresh_token": data.get("refresh_token"),
                "expires_in": int(data.get("expires_in", 3600)),
            }

    async def get_busy(
        self,
        access_token: str,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime,
    ) -> list[BusyInterval]:
        async with self._client() as client:
            response = await call_provider(
                self.provider,
                lambda: client.post(
                    f"{self.api_base}/freeBusy",
                    headers={"Authorization": f"Bearer {access_token}"},
                    json={
                        "timeMin": time_min.isoformat(),
                        "timeMax": time_max.isoformat(),
                        "items": [{"id": calendar_id}],
                    },
                ),
            )
        with malformed_response(self.provider):
            calendar = response.json().get("calendars", {}).get(calendar_id, {})
            return [
                BusyInterval(start=_parse_utc(b["start"]), end=_parse_utc(b["end"]))
                for b in calendar.get("busy", [])
            ]

    async def create_event(
        self,
        access_token: str,
        calendar_id: str,
        details: CalendarEventDetails,
    ) -> str:
        async with self._client() as client:
            response = await call_provider(
                self.provider,
                lambda: client.post(
                    f"{self.api_base}/calendars/{calendar_id}/events",
                    headers={"Authorization": f"Bearer {access_token}"},
                    json={
                        "summary": details.summary,
                        "description": details.description,
                        "location": details.location,
                        "start": {"dateTime": details.start.isoformat(), "timeZone": "UTC"},
                        "end": {"dateTime": details.end.isoformat(), "timeZone": "UTC"},
                    },
                ),
            )
        with malformed_response(self.provider):
            return response.json()["id"]


class MicrosoftCalendarClient:
    provider = IntegrationProvider.MICROSOFT.value
    token_url = "https://login.microsoftonline.com/common/oauth2/v2.0/token"
    api_base = "https://graph.microsoft.com/v1.0/me"

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=DEFAULT_TIMEOUT)

    async def refresh_token(self, refresh_token: str) -> dict:
        async with self._client() as client:
            response = await call_provider(
                self.provider,
                lambda: client.post(
                    self.token_url,
                    data={
                        "client_id": settings.MICROSOFT_CLIENT_ID,
                        "client_secret": settings.MICROSOFT_CLIENT_SECRET,
                        "refresh_token": refresh_token,
                        "grant_type": "refresh_token",
                        "scope": "Calendars.ReadWrite offline_access",
                    },
                ),
            )
        with malformed_response(self.provider):
            data = response.json()
            return {
                "access_token": data["access_token"],
                "refresh_token": data.get("refresh_token"),
                "expires_in": int(data.get("expires_in", 3600)),
            }

    async def get_busy(
        self,
        access_token: str,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime,
    ) -> list[BusyInterval]:
        # getSchedule expects naive times with an explicit zone
        fmt = "%Y-%m-%dT%H:%M:%S"
        async with self._client() as client:
            response = await call_provider(
                self.provider,
                lambda: client.post(
                    f"{self.api_base}/calendar/getSchedule",
                    headers={"Authorization": f"Bearer {access_token}"},
                    json={
                        "schedules": ["me"],
                        "startTime": {
                            "dateTime": time_min.astimezone(timezone.utc).strftime(fmt),
                            "timeZone": "UTC",
                        },
                        "endTime": {
                            "dateTime": time_max.astimezone(timezone.utc).strftime(fmt),
                            "timeZone": "UTC",
                        },
                    },
                ),
            )
        with malformed_response(self.provider):
            schedules = response.json().get("value") or [{}]
            return [
                BusyInterval(
                    start=_parse_utc(item["start"]["dateTime"]),
                    end=_parse_utc(item["end"]["dateTime"]),
                )
                for item in schedules[0].get("scheduleItems", [])
            ]

    async def create_event(
        self,
        access_token: str,
        calendar_id: str,
        details: CalendarEventDetails,
    ) -> str:
        async with self._client() as client:
            response = await call_provider(
                self.provider,
                lambda: client.post(
                    f"{self.api_base}/events",
                    headers={"Authorization": f"Bearer {access_token}"},
                    json={
                        "subject": details.summary,
                        "body": {"contentType": "text", "content": details.description},
                        "location": {"displayName": details.location},
                        "start": {"dateTime": details.start.isoformat(), "timeZone": "UTC"},
                        "end": {"dateTime": details.end.isoformat(), "timeZone": "UTC"},
                    },
                ),
            )
        with malformed_response(self.provider):
            return response.json()["id"]


# =============================================================================
# Org Calendar
# =============================================================================

class OrgCalendar(CalendarProvider):
    """
    Dispatches to the org's connected calendar (Google or Microsoft).

    An org without an active calendar integration has no busy time and
    gets no events.
    """

    def __init__(self, clients: dict | None = None):
        self.clients = clients or {
            IntegrationProvider.GOOGLE.value: GoogleCalendarClient(),
            IntegrationProvider.MICROSOFT.value: MicrosoftCalendarClient(),
        }

    def get_integration(self, db: Session, org_id) -> OrgIntegration | None:
        return db.query(OrgIntegration).filter(
            OrgIntegration.org_id == org_id,
            OrgIntegration.kind == IntegrationKind.CALENDAR.value,
            OrgIntegration.is_active.is_(True),
        ).first()

    async def _access_token(self, db: Session, integration: OrgIntegration, client) -> str:
        """Return a valid access token, refreshing and re-encrypting if expired."""
        try:
            config = decrypt_json(integration.config_encrypted)
        except ValueError as exc:
            raise ProviderError(integration.provider, str(exc)) from exc

        expiry = config.get("token_expiry")
        now = datetime.now(timezone.utc)
        with malformed_response(integration.provider):
            fresh = bool(expiry) and _parse_utc(expiry) > now
        if fresh and config.get("access_token"):
            return config["access_token"]
        if not config.get("refresh_token"):
            if config.get("access_token") and not expiry:
                return config["access_token"]
            raise ProviderError(integration.provider, "access token expired and no refresh token")

        data = await client.refresh_token(config["refresh_token"])
        config.update(
            access_token=data["access_token"],
            refresh_token=data["refresh_token"] or config["refresh_token"],
            token_expiry=(now + timedelta(seconds=data["expires_in"])).isoformat(),
        )
        integration.config_encrypted = encrypt_json(config)
        db.commit()
        logger.info("Refreshed %s calendar token for org=%s", integration.provider, integration.org_id)
        return config["access_token"]

    def _client_for(self, integration: OrgIntegration):
        client = self.clients.get(integration.provider)
        if client is None:
            raise ProviderError(integration.provider, "unsupported calendar provider")
        return client

    async def get_free_busy(
        self,
        db: Session,
        org: Organization,
        time_min: datetime,
        time_max: datetime,
    ) -> list[BusyInterval]:
        integration = self.get_integration(db, org.id)
        if not integration:
            return []
        client = self._client_for(integration)
        token = await self._access_token(db, integration, client)
        return await client.get_busy(token, integration.external_id or "primary", time_min, time_max)

    async def create_event(
        self,
        db: Session,
        org: Organization,
        details: CalendarEventDetails,
    ) -> str | None:
        integration = self.get_integration(db, org.id)
        if not integration:
            logger.info("No calendar connected for org=%s; skipping event", org.id)
            return None
        client = self._client_for(integration)
        token = await self._access_token(db, integration, client)
        return await client.create_event(token, integration.external_id or "primary", details)
