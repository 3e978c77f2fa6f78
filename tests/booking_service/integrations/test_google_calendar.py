from datetime import datetime
from types import SimpleNamespace

import pytest

from booking_service.integrations.google_calendar import (
    CalendarBinding,
    CalendarEvent,
    GoogleCalendarClient,
    binding_for,
    busy_intervals_from_events,
    busy_intervals_from_free_busy,
    is_blocking_event,
)
from booking_service.scheduling.intervals import Interval

START = datetime(2030, 1, 7)
END = datetime(2030, 1, 8)


def timed_event(start: str, end: str, **fields) -> dict:
    return {'start': {'dateTime': start}, 'end': {'dateTime': end}, **fields}


class FakeRequest:
    def __init__(self, response) -> None:
        self.response = response

    def execute(self):
        return self.response


class FakeCalendarService:
    """Mimics the discovery client's resource/request chaining."""

    def __init__(self, free_busy_response=None, event_pages=(), inserted=None) -> None:
        self.free_busy_response = free_busy_response or {}
        self.event_pages = list(event_pages)
        self.inserted = inserted or {}
        self.calls = []

    def freebusy(self):
        return self

    def events(self):
        return self

    def query(self, body):
        self.calls.append(('freebusy.query', body))
        return FakeRequest(self.free_busy_response)

    def list(self, **kwargs):
        self.calls.append(('events.list', kwargs))
        return FakeRequest(self.event_pages.pop(0))

    def insert(self, **kwargs):
        self.calls.append(('events.insert', kwargs))
        return FakeRequest(self.inserted)

    def patch(self, **kwargs):
        self.calls.append(('events.patch', kwargs))
        return FakeRequest({})

    def delete(self, **kwargs):
        self.calls.append(('events.delete', kwargs))
        return FakeRequest('')


@pytest.fixture
def binding() -> CalendarBinding:
    return CalendarBinding('p-1', 'pat@example.com', 'refresh-token')


@pytest.mark.parametrize(
    ('event', 'expected'),
    [
        (timed_event('2030-01-07T09:00:00Z', '2030-01-07T10:00:00Z'), True),
        (timed_event('2030-01-07T09:00:00Z', '2030-01-07T10:00:00Z', transparency='opaque'), True),
        (timed_event('2030-01-07T09:00:00Z', '2030-01-07T10:00:00Z', transparency='transparent'), False),
        (timed_event('2030-01-07T09:00:00Z', '2030-01-07T10:00:00Z', status='cancelled'), False),
        ({'start': {'date': '2030-01-07'}, 'end': {'date': '2030-01-08'}}, False),
        ({}, False),
    ],
)
def test_is_blocking_event(event: dict, expected: bool) -> None:
    assert is_blocking_event(event) is expected


def test_busy_intervals_from_events_converts_offsets_to_utc() -> None:
    events = [
        timed_event('2030-01-07T10:00:00+01:00', '2030-01-07T10:30:00+01:00'),
        {'start': {'date': '2030-01-07'}, 'end': {'date': '2030-01-08'}},
    ]

    assert busy_intervals_from_events(events) == [
        Interval(datetime(2030, 1, 7, 9, 0), datetime(2030, 1, 7, 9, 30))
    ]


def test_busy_intervals_from_free_busy_skips_incomplete_periods() -> None:
    calendar_data = {
        'busy': [
            {'start': '2030-01-07T09:00:00Z', 'end': '2030-01-07T09:30:00Z'},
            {'start': '2030-01-07T11:00:00Z'},
        ]
    }

    assert busy_intervals_from_free_busy(calendar_data) == [
        Interval(datetime(2030, 1, 7, 9, 0), datetime(2030, 1, 7, 9, 30))
    ]


def test_binding_requires_calendar_and_credential() -> None:
    bound = SimpleNamespace(id='p-1', calendar_id='cal', calendar_credential='token')
    unbound = SimpleNamespace(id='p-2', calendar_id='cal', calendar_credential=None)

    assert binding_for(bound) == CalendarBinding('p-1', 'cal', 'token')
    assert binding_for(unbound) is None


def test_query_free_busy_maps_calendars_to_people(monkeypatch: pytest.MonkeyPatch, binding) -> None:
    other = CalendarBinding('p-2', 'sam@example.com', 'other-token')
    missing = CalendarBinding('p-3', 'gone@example.com', 'third-token')
    service = FakeCalendarService(
        free_busy_response={
            'calendars': {
                'pat@example.com': {'busy': [{'start': '2030-01-07T09:00:00Z', 'end': '2030-01-07T09:30:00Z'}]},
                'sam@example.com': {'errors': [{'reason': 'notFound'}], 'busy': []},
            }
        }
    )
    client = GoogleCalendarClient(client_id='id', client_secret='secret')
    monkeypatch.setattr(client, '_service', lambda credential: service)

    result = client.query_free_busy([binding, other, missing], START, END)

    assert result == {
        'p-1': [Interval(datetime(2030, 1, 7, 9, 0), datetime(2030, 1, 7, 9, 30))],
        'p-2': [],
        'p-3': [],
    }
    _, body = service.calls[0]
    assert body['timeMin'] == '2030-01-07T00:00:00Z'
    assert body['timeMax'] == '2030-01-08T00:00:00Z'
    assert body['items'] == [{'id': 'pat@example.com'}, {'id': 'sam@example.com'}, {'id': 'gone@example.com'}]


def test_query_free_busy_without_bindings_makes_no_request() -> None:
    assert GoogleCalendarClient(client_id='id', client_secret='secret').query_free_busy([], START, END) == {}


def test_list_busy_intervals_follows_pages(monkeypatch: pytest.MonkeyPatch, binding) -> None:
    service = FakeCalendarService(
        event_pages=[
            {
                'items': [timed_event('2030-01-07T09:00:00Z', '2030-01-07T09:30:00Z')],
                'nextPageToken': 'page-2',
            },
            {'items': [timed_event('2030-01-07T13:00:00Z', '2030-01-07T14:00:00Z', transparency='transparent')]},
        ]
    )
    client = GoogleCalendarClient(client_id='id', client_secret='secret')
    monkeypatch.setattr(client, '_service', lambda credential: service)

    intervals = client.list_busy_intervals(binding, START, END)

    assert intervals == [Interval(datetime(2030, 1, 7, 9, 0), datetime(2030, 1, 7, 9, 30))]
    assert [kwargs['pageToken'] for _, kwargs in service.calls] == [None, 'page-2']
    assert service.calls[0][1]['singleEvents'] is True


def test_create_event_requests_meet_link(monkeypatch: pytest.MonkeyPatch, binding) -> None:
    service = FakeCalendarService(inserted={'id': 'evt-1', 'hangoutLink': 'https://meet.google.com/abc'})
    client = GoogleCalendarClient(client_id='id', client_secret='secret')
    monkeypatch.setattr(client, '_service', lambda credential: service)
    event = CalendarEvent(
        summary='Booking with Vera',
        start=datetime(2030, 1, 7, 9, 0),
        end=datetime(2030, 1, 7, 9, 30),
        attendees=['vera@example.com'],
    )

    created = client.create_event(binding, event)

    assert (created.event_id, created.meeting_link) == ('evt-1', 'https://meet.google.com/abc')
    _, kwargs = service.calls[0]
    assert kwargs['conferenceDataVersion'] == 1
    assert kwargs['body']['start'] == {'dateTime': '2030-01-07T09:00:00Z', 'timeZone': 'UTC'}
    assert kwargs['body']['attendees'] == [{'email': 'vera@example.com'}]


def test_delete_event_notifies_attendees(monkeypatch: pytest.MonkeyPatch, binding) -> None:
    service = FakeCalendarService()
    client = GoogleCalendarClient(client_id='id', client_secret='secret')
    monkeypatch.setattr(client, '_service', lambda credential: service)

    client.delete_event(binding, 'evt-1')

    assert service.calls == [
        ('events.delete', {'calendarId': 'pat@example.com', 'eventId': 'evt-1', 'sendUpdates': 'all'})
    ]


def test_update_event_patches_only_given_fields(monkeypatch: pytest.MonkeyPatch, binding) -> None:
    service = FakeCalendarService()
    client = GoogleCalendarClient(client_id='id', client_secret='secret')
    monkeypatch.setattr(client, '_service', lambda credential: service)

    client.update_event(binding, 'evt-1', start=datetime(2030, 1, 7, 10, 0), summary='Moved')

    _, kwargs = service.calls[0]
    assert kwargs['eventId'] == 'evt-1'
    assert kwargs['body'] == {
        'summary': 'Moved',
        'start': {'dateTime': '2030-01-07T10:00:00Z', 'timeZone': 'UTC'},
    }
