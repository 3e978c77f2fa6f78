from datetime import datetime

import pytest
from fastapi import BackgroundTasks, HTTPException
from pydantic import ValidationError

from booking_service.models.booking import STATUS_CANCELLED, STATUS_CONFIRMED
from booking_service.notifications import mailer
from booking_service.routes.booking_routes import (
    CancelBookingRequest,
    CreateBookingRequest,
    UpdateBookingRequest,
    cancel_booking,
    create_booking,
    get_booking,
    get_booking_stats,
    list_bookings,
    update_booking,
)
from booking_service.scheduling.availability import AvailabilityService
from booking_service.scheduling.busy import BusyIntervalAggregator
from booking_service.scheduling.reservation import ReservationGuard

NOW = datetime(2030, 1, 1, 0, 0)
MONDAY_RULE = (1, '09:00', '10:00')


@pytest.fixture
def guard() -> ReservationGuard:
    availability = AvailabilityService(BusyIntervalAggregator(None), clock=lambda: NOW)
    return ReservationGuard(availability, clock=lambda: NOW)


@pytest.fixture(autouse=True)
def database_ready(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr('booking_service.routes.common.ensure_database_ready', lambda: None)


def booking_request(person_id: str, **fields) -> CreateBookingRequest:
    return CreateBookingRequest(
        person_id=person_id,
        start_time=fields.pop('start_time', datetime(2030, 1, 7, 9, 0)),
        end_time=fields.pop('end_time', datetime(2030, 1, 7, 9, 30)),
        visitor_data=fields.pop('visitor_data', {'name': 'Vera Visitor', 'email': 'vera@example.com'}),
        **fields,
    )


def list_all(db, organization_id: str = 'org-1', **filters):
    params = {
        'status_filter': None,
        'person_id': None,
        'start_date': None,
        'end_date': None,
        'limit': 100,
        'offset': 0,
    }
    params.update(filters)
    return list_bookings(organization_id=organization_id, db=db, **params)


def test_create_booking_request_normalizes_fields() -> None:
    request = CreateBookingRequest(
        person_id=' p-1 ',
        start_time=datetime(2030, 1, 7, 9, 0),
        end_time=datetime(2030, 1, 7, 9, 30),
        visitor_data={'name': 'Vera', 'email': ' VERA@EXAMPLE.COM '},
        notes='   ',
    )

    assert request.person_id == 'p-1'
    assert request.visitor_data['email'] == 'vera@example.com'
    assert request.notes is None


@pytest.mark.parametrize(
    'fields',
    [
        {'person_id': '   '},
        {'visitor_data': {'email': 'not-an-email'}},
        {'notes': 'x' * 601},
    ],
)
def test_create_booking_request_rejects_invalid_fields(fields: dict) -> None:
    payload = {
        'person_id': 'p-1',
        'start_time': datetime(2030, 1, 7, 9, 0),
        'end_time': datetime(2030, 1, 7, 9, 30),
        **fields,
    }

    with pytest.raises(ValidationError):
        CreateBookingRequest(**payload)


def test_create_booking_commits_and_schedules_notifications(booking_db, make_person, guard) -> None:
    person = make_person(rules=[MONDAY_RULE])
    background_tasks = BackgroundTasks()

    booking = create_booking(
        data=booking_request(person.id, notes='First visit'),
        background_tasks=background_tasks,
        db=booking_db,
        guard=guard,
    )

    assert booking.status == STATUS_CONFIRMED
    assert booking.notes == 'First visit'
    assert [task.func for task in background_tasks.tasks] == [mailer.send_booking_notifications]
    notice = background_tasks.tasks[0].args[0]
    assert notice.booking_id == booking.id
    assert notice.person_email == 'pat@example.com'


def test_create_booking_skips_notifications_when_disabled(booking_db, make_person, org_config, guard) -> None:
    org_config(email_enabled=False)
    person = make_person(rules=[MONDAY_RULE])
    background_tasks = BackgroundTasks()

    create_booking(data=booking_request(person.id), background_tasks=background_tasks, db=booking_db, guard=guard)

    assert background_tasks.tasks == []


def test_create_booking_for_taken_slot_is_conflict(booking_db, make_person, guard) -> None:
    person = make_person(rules=[MONDAY_RULE])
    create_booking(data=booking_request(person.id), background_tasks=BackgroundTasks(), db=booking_db, guard=guard)

    with pytest.raises(HTTPException) as exception_info:
        create_booking(data=booking_request(person.id), background_tasks=BackgroundTasks(), db=booking_db, guard=guard)

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail == 'This time is no longer available.'
    assert len(list_all(booking_db)) == 1


@pytest.mark.parametrize(
    ('person_kwargs', 'status_code'),
    [
        ({'is_active': False}, 409),
        (None, 404),
    ],
)
def test_create_booking_for_unavailable_person(booking_db, make_person, guard, person_kwargs, status_code: int) -> None:
    person_id = make_person(rules=[MONDAY_RULE], **person_kwargs).id if person_kwargs else 'missing'

    with pytest.raises(HTTPException) as exception_info:
        create_booking(data=booking_request(person_id), background_tasks=BackgroundTasks(), db=booking_db, guard=guard)

    assert exception_info.value.status_code == status_code


def test_create_booking_in_the_past_is_bad_request(booking_db, make_person, guard) -> None:
    person = make_person(rules=[MONDAY_RULE])
    data = booking_request(
        person.id,
        start_time=datetime(2029, 12, 31, 9, 0),
        end_time=datetime(2029, 12, 31, 9, 30),
    )

    with pytest.raises(HTTPException) as exception_info:
        create_booking(data=data, background_tasks=BackgroundTasks(), db=booking_db, guard=guard)

    assert exception_info.value.status_code == 400


def test_get_booking_unknown_id_is_not_found(booking_db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_booking(booking_id='missing', db=booking_db)

    assert exception_info.value.status_code == 404


def test_list_bookings_rejects_unknown_status(booking_db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        list_all(booking_db, status_filter='pending')

    assert exception_info.value.status_code == 400


def test_update_and_cancel_booking(booking_db, make_person, make_booking) -> None:
    booking = make_booking(make_person(), datetime(2030, 1, 7, 9, 0), datetime(2030, 1, 7, 9, 30))

    updated = update_booking(booking_id=booking.id, data=UpdateBookingRequest(notes='Running late'), db=booking_db)
    assert updated.notes == 'Running late'

    background_tasks = BackgroundTasks()
    cancelled = cancel_booking(
        booking_id=booking.id,
        data=CancelBookingRequest(reason='Rescheduling'),
        background_tasks=background_tasks,
        db=booking_db,
        calendar=None,
    )

    assert cancelled.status == STATUS_CANCELLED
    assert cancelled.cancellation_reason == 'Rescheduling'
    assert [task.func for task in background_tasks.tasks] == [mailer.send_cancellation_notifications]
    assert [b.status for b in list_all(booking_db, status_filter=STATUS_CANCELLED)] == [STATUS_CANCELLED]


def test_booking_stats(booking_db, make_person, make_booking) -> None:
    person = make_person()
    make_booking(person, datetime(2030, 1, 7, 9, 0), datetime(2030, 1, 7, 9, 30))
    make_booking(person, datetime(2030, 1, 8, 9, 0), datetime(2030, 1, 8, 9, 30), status=STATUS_CANCELLED)

    stats = get_booking_stats(organization_id='org-1', db=booking_db)

    assert (stats.total, stats.confirmed, stats.cancelled, stats.upcoming) == (2, 1, 1, 1)
