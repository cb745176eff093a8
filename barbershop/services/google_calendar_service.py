"""
Google Calendar Service
Mirrors a shop's appointments into one Google Calendar and flags
overlaps with events created directly in Google Calendar
"""

import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional
from urllib.parse import quote, urlencode

import httpx
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import BUSINESS_TIMEZONE, GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET, GOOGLE_REDIRECT_URI
from ..exceptions import IntegrationNotConfiguredError, SyncInProgressError
from ..models import ACTIVE_APPOINTMENT_STATUSES, Agendamento
from ..models_integrations import CalendarSyncLease
from ..shared.dates import business_now, from_ms_epoch, ms_epoch, parse_event_time, to_rfc3339
from .integration_config import IntegrationLogger, load_integration_config, save_integration_config

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"  # noqa: S105 - OAuth endpoint URL
GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"
GOOGLE_CALENDAR_SCOPES = [
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
]

SYNC_WINDOW_DAYS = 30
SYNC_LEASE_SECONDS = 300
MAX_EVENTS_PER_PAGE = 250

# Replacement slot scan used by the "merge" resolution
MERGE_SCAN_START_HOUR = 9
MERGE_SCAN_END_HOUR = 18
MAX_SUGGESTED_SLOTS = 3

RESOLUTIONS = ("keep_local", "keep_remote", "merge")


@dataclass
class CalendarSettings:
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    calendar_id: str = "primary"
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_expiry_date: Optional[int] = None  # ms since epoch
    last_sync_time: Optional[str] = None

    @classmethod
    def from_config(cls, config: dict) -> "CalendarSettings":
        return cls(
            client_id=config.get("clientId") or GOOGLE_CLIENT_ID,
            client_secret=config.get("clientSecret") or GOOGLE_CLIENT_SECRET,
            calendar_id=config.get("calendarId") or "primary",
            access_token=config.get("accessToken"),
            refresh_token=config.get("refreshToken"),
            token_expiry_date=config.get("tokenExpiryDate"),
            last_sync_time=config.get("lastSyncTime"),
        )

    def to_config(self) -> dict:
        return {
            "clientId": self.client_id,
            "clientSecret": self.client_secret,
            "calendarId": self.calendar_id,
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
            "tokenExpiryDate": self.token_expiry_date,
            "lastSyncTime": self.last_sync_time,
        }

    @property
    def token_expired(self) -> bool:
        return self.token_expiry_date is not None and self.token_expiry_date <= ms_epoch()


@dataclass
class SyncConflict:
    appointment_id: str
    event_id: str
    event_summary: str
    local_start: datetime
    local_end: datetime
    remote_start: datetime
    remote_end: datetime
    type: str = "time_overlap"
    resolution: str = "manual"

    def to_dict(self) -> dict:
        data = asdict(self)
        for key in ("local_start", "local_end", "remote_start", "remote_end"):
            data[key] = data[key].isoformat()
        return data


@dataclass
class SyncResult:
    success: bool = False
    created: int = 0
    updated: int = 0
    deleted: int = 0
    conflicts: list[SyncConflict] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "created": self.created,
            "updated": self.updated,
            "deleted": self.deleted,
            "conflicts": [c.to_dict() for c in self.conflicts],
            "errors": self.errors,
        }


def build_auth_url(state: str) -> str:
    """Google consent screen URL; state carries the shop id back to the callback"""
    params = {
        "client_id": GOOGLE_CLIENT_ID,
        "redirect_uri": GOOGLE_REDIRECT_URI,
        "response_type": "code",
        "scope": " ".join(GOOGLE_CALENDAR_SCOPES),
        "access_type": "offline",
        "prompt": "consent",
        "state": state,
    }
    return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"


async def exchange_authorization_code(
    code: str, transport: Optional[httpx.AsyncBaseTransport] = None
) -> Optional[dict]:
    """Exchange an OAuth code for tokens. Returns None if Google rejects it."""
    async with httpx.AsyncClient(transport=transport, timeout=30.0) as client:
        response = await client.post(
            GOOGLE_TOKEN_URL,
            data={
                "code": code,
                "client_id": GOOGLE_CLIENT_ID,
                "client_secret": GOOGLE_CLIENT_SECRET,
                "redirect_uri": GOOGLE_REDIRECT_URI,
                "grant_type": "authorization_code",
            },
        )
    if response.status_code != 200:
        logger.error(f"❌ Token exchange failed: {response.text}")
        return None
    return response.json()


class GoogleCalendarService:
    def __init__(
        self,
        db: Session,
        barbearia_id: str,
        settings: Optional[CalendarSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.db = db
        self.barbearia_id = barbearia_id
        self.settings = settings
        self.transport = transport
        self.audit = IntegrationLogger(db, "google_calendar", barbearia_id)
        self._lease_holder = uuid.uuid4().hex

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport, timeout=30.0)

    def _auth_headers(self) -> dict:
        return {"Authorization": f"Bearer {self.settings.access_token}"}

    def _events_path(self) -> str:
        return f"/calendars/{quote(self.settings.calendar_id, safe='')}/events"

    async def initialize(self) -> None:
        """Load the shop's integration row and refresh an expired token"""
        if self.settings is None:
            config = load_integration_config(self.db, "google_calendar", self.barbearia_id)
            if config is None:
                raise IntegrationNotConfiguredError("google_calendar")
            self.settings = CalendarSettings.from_config(config)

        if self.settings.token_expired:
            logger.info("🔄 Google Calendar token expired, refreshing...")
            await self.refresh_access_token()

    def _save_settings(self) -> None:
        save_integration_config(
            self.db, "google_calendar", self.settings.to_config(), self.barbearia_id
        )

    async def refresh_access_token(self) -> bool:
        """Exchange the refresh token for a new access token. False on any failure."""
        if not self.settings.refresh_token:
            logger.error("❌ No Google refresh token stored")
            self.audit.log("refresh_token", erro="Missing refresh token")
            return False

        try:
            async with self._client() as client:
                response = await client.post(
                    GOOGLE_TOKEN_URL,
                    data={
                        "client_id": self.settings.client_id,
                        "client_secret": self.settings.client_secret,
                        "refresh_token": self.settings.refresh_token,
                        "grant_type": "refresh_token",
                    },
                )
        except httpx.HTTPError as e:
            logger.error(f"❌ Token refresh request failed: {e}")
            self.audit.log("refresh_token", erro=str(e))
            return False

        if response.status_code != 200:
            logger.error(f"❌ Token refresh failed: {response.text}")
            self.audit.log("refresh_token", erro=f"HTTP {response.status_code}: {response.text}")
            return False

        tokens = response.json()
        new_access_token = tokens.get("access_token")
        if not new_access_token:
            logger.error("❌ No access token in refresh response")
            self.audit.log("refresh_token", erro="No access token in refresh response")
            return False

        self.settings.access_token = new_access_token
        self.settings.token_expiry_date = ms_epoch() + int(tokens.get("expires_in", 3600)) * 1000
        if tokens.get("refresh_token"):
            self.settings.refresh_token = tokens["refresh_token"]
        self._save_settings()

        logger.info("✅ Google Calendar token refreshed successfully")
        return True

    async def _request(self, method: str, path: str, **kwargs) -> Optional[httpx.Response]:
        """Calendar API call with one refresh-and-retry on 401. None on transport failure."""
        if self.settings is None:
            await self.initialize()

        url = f"{GOOGLE_CALENDAR_API}{path}"
        try:
            async with self._client() as client:
                response = await client.request(method, url, headers=self._auth_headers(), **kwargs)
                if response.status_code == 401:
                    logger.info("🔄 Google Calendar returned 401, refreshing token and retrying once")
                    if not await self.refresh_access_token():
                        return response
                    response = await client.request(
                        method, url, headers=self._auth_headers(), **kwargs
                    )
                return response
        except httpx.HTTPError as e:
            logger.error(f"❌ Google Calendar request failed ({method} {path}): {e}")
            return None

    def _stamp(self, event: dict, agendamento_id: Optional[str]) -> dict:
        """Tag the event as ours and bump its syncVersion"""
        body = dict(event)
        private = dict((event.get("extendedProperties") or {}).get("private") or {})
        private["barbeariaId"] = self.barbearia_id
        if agendamento_id:
            private["agendamentoId"] = str(agendamento_id)
        private["syncVersion"] = str(ms_epoch())
        body["extendedProperties"] = {"private": private}
        return body

    async def create_event(self, event: dict, agendamento_id: Optional[str] = None) -> Optional[str]:
        """Returns the Google event id, or None if creation failed"""
        body = self._stamp(event, agendamento_id)
        dados = {"summary": event.get("summary"), "agendamentoId": agendamento_id}

        response = await self._request("POST", self._events_path(), json=body)
        if response is None or response.status_code not in (200, 201):
            error = response.text if response is not None else "Request failed"
            logger.error(f"❌ Failed to create calendar event: {error}")
            self.audit.log("create_event", dados, erro=error)
            return None

        event_id = response.json().get("id")
        logger.info(f"✅ Google Calendar event created: {event_id}")
        self.audit.log("create_event", dados, {"eventId": event_id})
        return event_id

    async def update_event(
        self, event_id: str, event: dict, agendamento_id: Optional[str] = None
    ) -> bool:
        body = self._stamp(event, agendamento_id)
        dados = {"eventId": event_id, "agendamentoId": agendamento_id}

        response = await self._request("PUT", f"{self._events_path()}/{event_id}", json=body)
        if response is None or response.status_code != 200:
            error = response.text if response is not None else "Request failed"
            logger.error(f"❌ Failed to update calendar event {event_id}: {error}")
            self.audit.log("update_event", dados, erro=error)
            return False

        logger.info(f"✅ Google Calendar event updated: {event_id}")
        self.audit.log("update_event", dados, {"eventId": event_id})
        return True

    async def delete_event(self, event_id: str) -> bool:
        """Already-deleted events (410) count as success"""
        response = await self._request("DELETE", f"{self._events_path()}/{event_id}")
        if response is None or response.status_code not in (200, 204, 410):
            error = response.text if response is not None else "Request failed"
            logger.error(f"❌ Failed to delete calendar event {event_id}: {error}")
            self.audit.log("delete_event", {"eventId": event_id}, erro=error)
            return False

        logger.info(f"✅ Google Calendar event deleted: {event_id}")
        self.audit.log("delete_event", {"eventId": event_id}, {"deleted": True})
        return True

    async def _fetch_events(self, time_min: datetime, time_max: datetime) -> Optional[list[dict]]:
        params = {
            "timeMin": to_rfc3339(time_min),
            "timeMax": to_rfc3339(time_max),
            "singleEvents": "true",
            "orderBy": "startTime",
            "maxResults": MAX_EVENTS_PER_PAGE,
        }
        response = await self._request("GET", self._events_path(), params=params)
        if response is None or response.status_code != 200:
            error = response.text if response is not None else "Request failed"
            logger.error(f"❌ Failed to list calendar events: {error}")
            self.audit.log("get_events", {"timeMin": params["timeMin"]}, erro=error)
            return None
        return response.json().get("items", [])

    async def get_events(self, time_min: datetime, time_max: datetime) -> list[dict]:
        return await self._fetch_events(time_min, time_max) or []

    @staticmethod
    def _private(event: dict) -> dict:
        return (event.get("extendedProperties") or {}).get("private") or {}

    @classmethod
    def is_system_event(cls, event: dict) -> bool:
        """Events carrying our private tag were created by this system"""
        private = cls._private(event)
        return bool(private.get("barbeariaId") or private.get("agendamentoId"))

    def detect_conflicts(self, remote_event: dict, appointments: list[Agendamento]) -> list[SyncConflict]:
        """One time_overlap conflict per local appointment intersecting an external event"""
        if self.is_system_event(remote_event):
            return []

        remote_start = parse_event_time(remote_event.get("start"))
        remote_end = parse_event_time(remote_event.get("end"))
        if remote_start is None or remote_end is None:
            return []

        conflicts = []
        for appointment in appointments:
            if appointment.status == "cancelado":
                continue
            local_start = appointment.data_hora
            local_end = appointment.fim
            if local_start < remote_end and remote_start < local_end:
                conflicts.append(
                    SyncConflict(
                        appointment_id=appointment.id,
                        event_id=remote_event.get("id"),
                        event_summary=remote_event.get("summary") or "",
                        local_start=local_start,
                        local_end=local_end,
                        remote_start=remote_start,
                        remote_end=remote_end,
                    )
                )
        return conflicts

    def _is_stale(self, event: dict, appointment: Agendamento) -> bool:
        version = self._private(event).get("syncVersion")
        if not version:
            return True
        try:
            synced_at = from_ms_epoch(int(version))
        except ValueError:
            return True
        return appointment.updated_at is not None and appointment.updated_at > synced_at

    def convert_appointment_to_event(self, appointment: Agendamento) -> dict:
        service_label = ", ".join(appointment.nomes_servicos) or "Serviço"
        client_name = appointment.cliente.nome if appointment.cliente else "Cliente"

        lines = [f"Serviço: {service_label}", f"Cliente: {client_name}"]
        if appointment.barbeiro:
            lines.append(f"Barbeiro: {appointment.barbeiro.nome}")
        lines.append(f"Preço: R$ {appointment.valor_total or 0:.2f}".replace(".", ","))
        if appointment.observacoes:
            lines.append(f"Observações: {appointment.observacoes}")

        event: dict[str, Any] = {
            "summary": f"{service_label} - {client_name}",
            "description": "\n".join(lines),
            "start": {"dateTime": appointment.data_hora.isoformat(), "timeZone": BUSINESS_TIMEZONE},
            "end": {"dateTime": appointment.fim.isoformat(), "timeZone": BUSINESS_TIMEZONE},
            "reminders": {
                "useDefault": False,
                "overrides": [
                    {"method": "email", "minutes": 60},
                    {"method": "popup", "minutes": 15},
                ],
            },
        }
        if appointment.barbearia and appointment.barbearia.endereco:
            event["location"] = appointment.barbearia.endereco
        if appointment.cliente and appointment.cliente.email:
            event["attendees"] = [{"email": appointment.cliente.email, "displayName": client_name}]
        return event

    def _acquire_lease(self) -> None:
        now = datetime.utcnow()
        expires_at = now + timedelta(seconds=SYNC_LEASE_SECONDS)

        taken = (
            self.db.query(CalendarSyncLease)
            .filter(
                CalendarSyncLease.barbearia_id == self.barbearia_id,
                CalendarSyncLease.expires_at <= now,
            )
            .update(
                {CalendarSyncLease.holder: self._lease_holder, CalendarSyncLease.expires_at: expires_at},
                synchronize_session=False,
            )
        )
        if taken:
            self.db.commit()
            return

        if self.db.query(CalendarSyncLease).filter(CalendarSyncLease.barbearia_id == self.barbearia_id).first():
            self.db.rollback()
            raise SyncInProgressError(f"Calendar sync already running for {self.barbearia_id}")

        try:
            self.db.add(
                CalendarSyncLease(
                    barbearia_id=self.barbearia_id, holder=self._lease_holder, expires_at=expires_at
                )
            )
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise SyncInProgressError(f"Calendar sync already running for {self.barbearia_id}") from e

    def _release_lease(self) -> None:
        try:
            self.db.query(CalendarSyncLease).filter(
                CalendarSyncLease.barbearia_id == self.barbearia_id,
                CalendarSyncLease.holder == self._lease_holder,
            ).delete(synchronize_session=False)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"❌ Failed to release calendar sync lease for {self.barbearia_id}: {e}")

    def _link_event(self, appointment: Agendamento, event_id: str) -> None:
        # Setting updated_at to itself keeps the link write from looking like a local edit
        self.db.query(Agendamento).filter(Agendamento.id == appointment.id).update(
            {
                Agendamento.google_calendar_event_id: event_id,
                Agendamento.updated_at: Agendamento.updated_at,
            },
            synchronize_session=False,
        )
        self.db.commit()

    async def sync_with_local_appointments(self) -> SyncResult:
        """
        Reconcile the next 30 days of local appointments with the calendar.

        Creates missing events, updates stale ones, deletes events of cancelled
        appointments and reports overlaps with external events. Only one sync
        per shop runs at a time (raises SyncInProgressError otherwise).
        """
        await self.initialize()
        self._acquire_lease()
        result = SyncResult()

        try:
            now = business_now()
            window_end = now + timedelta(days=SYNC_WINDOW_DAYS)

            appointments = (
                self.db.query(Agendamento)
                .filter(
                    Agendamento.barbearia_id == self.barbearia_id,
                    Agendamento.data_hora >= now,
                    Agendamento.data_hora <= window_end,
                    Agendamento.status != "cancelado",
                )
                .order_by(Agendamento.data_hora)
                .all()
            )

            remote_events = await self._fetch_events(now, window_end)
            if remote_events is None:
                result.errors.append("Failed to list Google Calendar events")
                self.audit.log("sincronizacao", {"appointments": len(appointments)}, erro=result.errors[0])
                return result

            remote_by_appointment = {}
            for event in remote_events:
                private = self._private(event)
                if private.get("agendamentoId") and private.get("barbeariaId", self.barbearia_id) == self.barbearia_id:
                    remote_by_appointment[private["agendamentoId"]] = event

            for appointment in appointments:
                try:
                    remote = remote_by_appointment.get(str(appointment.id))
                    payload = self.convert_appointment_to_event(appointment)
                    if remote:
                        if not self._is_stale(remote, appointment):
                            continue
                        if await self.update_event(remote["id"], payload, appointment.id):
                            result.updated += 1
                        else:
                            result.errors.append(f"Failed to update event for appointment {appointment.id}")
                    else:
                        event_id = await self.create_event(payload, appointment.id)
                        if event_id:
                            self._link_event(appointment, event_id)
                            result.created += 1
                        else:
                            result.errors.append(f"Failed to create event for appointment {appointment.id}")
                except Exception as e:
                    logger.error(f"❌ Error syncing appointment {appointment.id}: {e}")
                    result.errors.append(f"Appointment {appointment.id}: {e}")

            orphaned_ids = set(remote_by_appointment) - {str(a.id) for a in appointments}
            if orphaned_ids:
                cancelled = (
                    self.db.query(Agendamento.id)
                    .filter(
                        Agendamento.id.in_(orphaned_ids),
                        Agendamento.barbearia_id == self.barbearia_id,
                        Agendamento.status == "cancelado",
                    )
                    .all()
                )
                for (agendamento_id,) in cancelled:
                    if await self.delete_event(remote_by_appointment[agendamento_id]["id"]):
                        result.deleted += 1

            for event in remote_events:
                result.conflicts.extend(self.detect_conflicts(event, appointments))

            self.settings.last_sync_time = datetime.utcnow().isoformat()
            self._save_settings()

            result.success = True
            self.audit.log(
                "sincronizacao_completa",
                {"appointments": len(appointments), "remoteEvents": len(remote_events)},
                {
                    "created": result.created,
                    "updated": result.updated,
                    "deleted": result.deleted,
                    "conflicts": len(result.conflicts),
                    "errors": len(result.errors),
                },
            )
            logger.info(
                f"✅ Calendar sync for {self.barbearia_id}: created={result.created} "
                f"updated={result.updated} deleted={result.deleted} conflicts={len(result.conflicts)}"
            )
            return result
        finally:
            self._release_lease()

    def find_available_slots(
        self,
        preferred: datetime,
        duration_minutes: int,
        barbeiro_id: Optional[str] = None,
        exclude_agendamento_id: Optional[str] = None,
        busy: Optional[list[tuple[datetime, datetime]]] = None,
    ) -> list[datetime]:
        """Hourly 9h-18h scan of the preferred day, skipping past and busy hours"""
        day = preferred.replace(hour=0, minute=0, second=0, microsecond=0)
        closing = day.replace(hour=MERGE_SCAN_END_HOUR)
        now = business_now()
        blocked = list(busy or [])

        if barbeiro_id:
            query = self.db.query(Agendamento).filter(
                Agendamento.barbeiro_id == barbeiro_id,
                Agendamento.status.in_(ACTIVE_APPOINTMENT_STATUSES),
                Agendamento.data_hora >= day,
                Agendamento.data_hora < day + timedelta(days=1),
            )
            if exclude_agendamento_id:
                query = query.filter(Agendamento.id != exclude_agendamento_id)
            others = query.all()
            blocked.extend((other.data_hora, other.fim) for other in others)

        slots = []
        for hour in range(MERGE_SCAN_START_HOUR, MERGE_SCAN_END_HOUR):
            start = day.replace(hour=hour)
            end = start + timedelta(minutes=duration_minutes)
            if end > closing:
                break
            if start <= now:
                continue
            if any(start < busy_end and busy_start < end for busy_start, busy_end in blocked):
                continue
            slots.append(start)
            if len(slots) == MAX_SUGGESTED_SLOTS:
                break
        return slots

    async def resolve_conflict(self, conflict: SyncConflict, resolution: str) -> bool:
        if resolution not in RESOLUTIONS:
            logger.warning(f"⚠️ Unknown conflict resolution: {resolution}")
            return False

        if resolution == "keep_local":
            return await self.delete_event(conflict.event_id)

        appointment = (
            self.db.query(Agendamento)
            .filter(Agendamento.id == conflict.appointment_id, Agendamento.barbearia_id == self.barbearia_id)
            .first()
        )
        if not appointment:
            logger.warning(f"⚠️ Appointment {conflict.appointment_id} not found for conflict resolution")
            return False

        if resolution == "keep_remote":
            appointment.status = "cancelado"
            appointment.observacoes = (
                f"Cancelado devido a conflito com evento externo: {conflict.event_summary}"
            )
            self.db.commit()
            self.audit.log("resolve_conflict", conflict.to_dict(), {"resolution": resolution})
            return True

        duration = appointment.duracao_minutos
        slots = self.find_available_slots(
            appointment.data_hora,
            duration,
            barbeiro_id=appointment.barbeiro_id,
            exclude_agendamento_id=appointment.id,
            busy=[(conflict.remote_start, conflict.remote_end)],
        )
        if not slots:
            logger.warning(f"⚠️ No free slot to move appointment {appointment.id}")
            self.audit.log("resolve_conflict", conflict.to_dict(), erro="No available slot")
            return False

        appointment.data_hora = slots[0]
        appointment.data_fim = slots[0] + timedelta(minutes=duration)
        note = "Reagendado devido a conflito com evento externo"
        appointment.observacoes = f"{appointment.observacoes}\n{note}" if appointment.observacoes else note
        self.db.commit()

        if appointment.google_calendar_event_id:
            await self.update_event(
                appointment.google_calendar_event_id,
                self.convert_appointment_to_event(appointment),
                appointment.id,
            )

        self.audit.log(
            "resolve_conflict", conflict.to_dict(), {"resolution": resolution, "newStart": slots[0].isoformat()}
        )
        return True

    async def test_connection(self) -> bool:
        response = await self._request("GET", "/users/me/calendarList", params={"maxResults": 1})
        return response is not None and response.status_code == 200

    async def get_calendar_list(self) -> list[dict]:
        response = await self._request("GET", "/users/me/calendarList")
        if response is None or response.status_code != 200:
            logger.error("❌ Failed to list Google calendars")
            return []
        return response.json().get("items", [])
