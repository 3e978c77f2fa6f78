import os
import threading

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from booking_service.database import Base  # noqa: E402
from booking_service.integrations.google_calendar import CreatedEvent  # noqa: E402
from booking_service.models.availability_rule import AvailabilityRule  # noqa: E402
from booking_service.models.booking import STATUS_CONFIRMED, Booking  # noqa: E402
from booking_service.models.organization_config import OrganizationConfig  # noqa: E402
from booking_service.models.person import Person  # noqa: E402

TABLES = [
    OrganizationConfig.__table__,
    Person.__table__,
    AvailabilityRule.__table__,
    Booking.__table__,
]


class FakeCalendar:
    """In-memory calendar provider; busy time is keyed by person id."""

    def __init__(self, busy=None, failing_person_ids=()):
        self.busy = dict(busy or {})
        self.failing_person_ids = set(failing_person_ids)
        self.fail_create = False
        self.fail_list = False
        self.free_busy_calls = []
        self.list_calls = []
        self.created = []
        self.deleted = []
        self._lock = threading.Lock()

    def query_free_busy(self, bindings, start, end):
        with self._lock:
            self.free_busy_calls.append([binding.person_id for binding in bindings])
        if any(binding.person_id in self.failing_person_ids for binding in bindings):
            raise RuntimeError('free/busy unavailable')
        return {binding.person_id: list(self.busy.get(binding.person_id, [])) for binding in bindings}

    def list_busy_intervals(self, binding, start, end):
        self.list_calls.append(binding.person_id)
        if self.fail_list:
            raise RuntimeError('events unavailable')
        return list(self.busy.get(binding.person_id, []))

    def create_event(self, binding, event):
        if self.fail_create:
            raise RuntimeError('insert failed')
        event_id = f'evt-{len(self.created) + 1}'
        self.created.append((binding.person_id, event))
        return CreatedEvent(event_id=event_id, meeting_link=f'https://meet.example.com/{event_id}')

    def update_event(self, binding, event_id, **changes):
        pass

    def delete_event(self, binding, event_id):
        self.deleted.append(event_id)


@pytest.fixture
def booking_db():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine, tables=TABLES)

    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine, tables=list(reversed(TABLES)))


@pytest.fixture
def make_person(booking_db):
    def factory(
        name='Pat Doe',
        email='pat@example.com',
        organization_id='org-1',
        rules=(),
        calendar=False,
        is_active=True,
    ):
        person = Person(
            organization_id=organization_id,
            display_name=name,
            email=email,
            is_active=is_active,
            calendar_id=f'{email}-calendar' if calendar else None,
            calendar_credential='refresh-token' if calendar else None,
        )
        booking_db.add(person)
        booking_db.flush()
        for day, start_time, end_time in rules:
            booking_db.add(
                AvailabilityRule(person_id=person.id, day_of_week=day, start_time=start_time, end_time=end_time)
            )
        booking_db.commit()
        return person

    return factory


@pytest.fixture
def make_booking(booking_db):
    def factory(person, start, end, status=STATUS_CONFIRMED, **fields):
        booking = Booking(
            person_id=person.id,
            organization_id=person.organization_id,
            start_time=start,
            end_time=end,
            status=status,
            visitor_data=fields.pop('visitor_data', {}),
            **fields,
        )
        booking_db.add(booking)
        booking_db.commit()
        return booking

    return factory


@pytest.fixture
def org_config(booking_db):
    def factory(organization_id='org-1', **fields):
        config = OrganizationConfig(organization_id=organization_id, booking_slug=organization_id, **fields)
        booking_db.add(config)
        booking_db.commit()
        return config

    return factory


@pytest.fixture
def fake_calendar():
    return FakeCalendar()
