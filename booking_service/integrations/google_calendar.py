"""Google Calendar access for busy-time lookups and booking events.

Credentials are refresh tokens stored on the person; google-auth refreshes
the access token transparently on each request.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, NamedTuple, Protocol

import httplib2
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build

from booking_service.core import config
from booking_service.core.clock import format_rfc3339, parse_rfc3339
from booking_service.scheduling.intervals import Interval

logger = logging.getLogger(__name__)


class CalendarBinding(NamedTuple):
    person_id: str
    calendar_id: str
    credential: str


class CreatedEvent(NamedTuple):
    event_id: str
    meeting_link: str | None = None


@dataclass
class CalendarEvent:
    summary: str
    start: datetime
    end: datetime
    description: str | None = None
    location: str | None = None
    attendees: list[str] = field(default_factory=list)


class CalendarProvider(Protocol):
    def query_free_busy(
        self, bindings: list[CalendarBinding], start: datetime, end: datetime
    ) -> dict[str, list[Interval]]: ...

    def list_busy_intervals(self, binding: CalendarBinding, start: datetime, end: datetime) -> list[Interval]: ...

    def create_event(self, binding: CalendarBinding, event: CalendarEvent) -> CreatedEvent: ...

    def update_event(self, binding: CalendarBinding, event_id: str, **changes: Any) -> None: ...

    def delete_event(self, binding: CalendarBinding, event_id: str) -> None: ...


def binding_for(person) -> CalendarBinding | None:
    if not (person.calendar_id and person.calendar_credential):
        return None
    return CalendarBinding(person.id, person.calendar_id, person.calendar_credential)


def is_blocking_event(event: dict) -> bool:
    start = event.get('start') or {}
    end = event.get('end') or {}
    # All-day events only carry "date"; they never block a timed slot.
    if not start.get('dateTime') or not end.get('dateTime'):
        return False
    if event.get('status') == 'cancelled':
        return False
    if event.get('transparency') == 'transparent':
        return False
    return True


def busy_intervals_from_events(events: Iterable[dict]) -> list[Interval]:
    return [
        Interval(parse_rfc3339(event['start']['dateTime']), parse_rfc3339(event['end']['dateTime']))
        for event in events
        if is_blocking_event(event)
    ]


def busy_intervals_from_free_busy(calendar_data: dict) -> list[Interval]:
    return [
        Interval(parse_rfc3339(period['start']), parse_rfc3339(period['end']))
        for period in calendar_data.get('busy', [])
        if period.get('start') and period.get('end')
    ]


class GoogleCalendarClient:
    def __init__(
        self,
        client_id: str = config.GOOGLE_CLIENT_ID,
        client_secret: str = config.GOOGLE_CLIENT_SECRET,
        token_uri: str = config.GOOGLE_TOKEN_URI,
        timeout_seconds: float = config.CALENDAR_CHUNK_TIMEOUT_SECONDS,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.token_uri = token_uri
        self.timeout_seconds = timeout_seconds

    def _service(self, credential: str):
        # A fresh transport per call: httplib2 connections are not thread-safe.
        creds = Credentials(
            token=None,
            refresh_token=credential,
            client_id=self.client_id,
            client_secret=self.client_secret,
            token_uri=self.token_uri,
            scopes=config.GOOGLE_SCOPES,
        )
        http = AuthorizedHttp(creds, http=httplib2.Http(timeout=self.timeout_seconds))
        return build('calendar', 'v3', http=http, cache_discovery=False)

    def query_free_busy(
        self, bindings: list[CalendarBinding], start: datetime, end: datetime
    ) -> dict[str, list[Interval]]:
        if not bindings:
            return {}

        # Every binding in a chunk is queried with the first person's credentials;
        # freebusy only needs read access to each calendar.
        service = self._service(bindings[0].credential)
        body = {
            'timeMin': format_rfc3339(start),
            'timeMax': format_rfc3339(end),
            'items': [{'id': binding.calendar_id} for binding in bindings],
        }
        response = service.freebusy().query(body=body).execute()
        calendars = response.get('calendars', {})

        result: dict[str, list[Interval]] = {}
        for binding in bindings:
            calendar_data = calendars.get(binding.calendar_id)
            if not calendar_data:
                result[binding.person_id] = []
                continue
            if calendar_data.get('errors'):
                logger.warning(
                    'Free/busy lookup returned errors for person %s: %s',
                    binding.person_id,
                    calendar_data['errors'],
                )
            result[binding.person_id] = busy_intervals_from_free_busy(calendar_data)

        logger.debug('Free/busy query covered %d calendars', len(bindings))
        return result

    def list_busy_intervals(self, binding: CalendarBinding, start: datetime, end: datetime) -> list[Interval]:
        service = self._service(binding.credential)
        events: list[dict] = []
        page_token = None
        while True:
            response = service.events().list(
                calendarId=binding.calendar_id,
                timeMin=format_rfc3339(start),
                timeMax=format_rfc3339(end),
                singleEvents=True,
                orderBy='startTime',
                pageToken=page_token,
            ).execute()
            events.extend(response.get('items', []))
            page_token = response.get('nextPageToken')
            if not page_token:
                break

        logger.debug('Fetched %d calendar events for person %s', len(events), binding.person_id)
        return busy_intervals_from_events(events)

    def create_event(self, binding: CalendarBinding, event: CalendarEvent) -> CreatedEvent:
        service = self._service(binding.credential)
        body = {
            'summary': event.summary,
            'description': event.description,
            'location': event.location,
            'start': {'dateTime': format_rfc3339(event.start), 'timeZone': 'UTC'},
            'end': {'dateTime': format_rfc3339(event.end), 'timeZone': 'UTC'},
            'attendees': [{'email': email} for email in event.attendees],
            'conferenceData': {
                'createRequest': {
                    'requestId': f'booking-{uuid.uuid4().hex}',
                    'conferenceSolutionKey': {'type': 'hangoutsMeet'},
                }
            },
            'reminders': {
                'useDefault': False,
                'overrides': [
                    {'method': 'email', 'minutes': 24 * 60},
                    {'method': 'popup', 'minutes': 30},
                ],
            },
        }
        created = service.events().insert(
            calendarId=binding.calendar_id,
            body=body,
            conferenceDataVersion=1,
            sendUpdates='all',
        ).execute()

        logger.info('Calendar event %s created for person %s', created.get('id'), binding.person_id)
        return CreatedEvent(event_id=created['id'], meeting_link=created.get('hangoutLink'))

    def update_event(self, binding: CalendarBinding, event_id: str, **changes: Any) -> None:
        body: dict[str, Any] = {}
        if changes.get('summary'):
            body['summary'] = changes['summary']
        if changes.get('description'):
            body['description'] = changes['description']
        if changes.get('start'):
            body['start'] = {'dateTime': format_rfc3339(changes['start']), 'timeZone': 'UTC'}
        if changes.get('end'):
            body['end'] = {'dateTime': format_rfc3339(changes['end']), 'timeZone': 'UTC'}

        service = self._service(binding.credential)
        service.events().patch(
            calendarId=binding.calendar_id,
            eventId=event_id,
            body=body,
            sendUpdates='all',
        ).execute()
        logger.info('Calendar event %s updated for person %s', event_id, binding.person_id)

    def delete_event(self, binding: CalendarBinding, event_id: str) -> None:
        service = self._service(binding.credential)
        service.events().delete(
            calendarId=binding.calendar_id,
            eventId=event_id,
            sendUpdates='all',
        ).execute()
        logger.info('Calendar event %s deleted for person %s', event_id, binding.person_id)
