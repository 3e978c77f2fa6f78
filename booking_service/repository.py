"""Repository-style reads and writes over a SQLAlchemy session.

Bulk reads are keyed by the person-id set so the availability path issues a
constant number of queries regardless of how many people an organization has.
"""

from collections import defaultdict
from datetime import datetime
from typing import Iterable

from sqlalchemy.orm import Session

from booking_service.models.availability_rule import AvailabilityRule
from booking_service.models.booking import STATUS_CONFIRMED, Booking
from booking_service.models.organization_config import OrganizationConfig
from booking_service.models.person import Person
from booking_service.scheduling.rules import validate_rule_window


def get_organization_config(db: Session, organization_id: str) -> OrganizationConfig | None:
    return db.query(OrganizationConfig).filter(OrganizationConfig.organization_id == organization_id).first()


def get_person(db: Session, person_id: str) -> Person | None:
    return db.query(Person).filter(Person.id == person_id).first()


def lock_person(db: Session, person_id: str) -> Person | None:
    # SELECT ... FOR UPDATE; serializes reservations for one person until commit.
    return db.query(Person).filter(Person.id == person_id).with_for_update().first()


def list_active_people(db: Session, organization_id: str) -> list[Person]:
    return db.query(Person).filter(
        Person.organization_id == organization_id,
        Person.is_active.is_(True),
    ).order_by(Person.created_at.asc(), Person.id.asc()).all()


def rules_by_person(db: Session, person_ids: Iterable[str]) -> dict[str, list[AvailabilityRule]]:
    person_ids = list(person_ids)
    grouped: dict[str, list[AvailabilityRule]] = defaultdict(list)
    if not person_ids:
        return grouped

    rules = db.query(AvailabilityRule).filter(
        AvailabilityRule.person_id.in_(person_ids),
        AvailabilityRule.is_active.is_(True),
    ).order_by(AvailabilityRule.id.asc()).all()
    for rule in rules:
        grouped[rule.person_id].append(rule)
    return grouped


def confirmed_bookings_by_person(
    db: Session,
    person_ids: Iterable[str],
    window_start: datetime,
    window_end: datetime,
) -> dict[str, list[Booking]]:
    person_ids = list(person_ids)
    grouped: dict[str, list[Booking]] = defaultdict(list)
    if not person_ids:
        return grouped

    bookings = db.query(Booking).filter(
        Booking.person_id.in_(person_ids),
        Booking.status == STATUS_CONFIRMED,
        Booking.end_time > window_start,
        Booking.start_time < window_end,
    ).order_by(Booking.start_time.asc()).all()
    for booking in bookings:
        grouped[booking.person_id].append(booking)
    return grouped


def first_conflicting_booking(db: Session, person_id: str, start: datetime, end: datetime) -> Booking | None:
    return db.query(Booking).filter(
        Booking.person_id == person_id,
        Booking.status == STATUS_CONFIRMED,
        Booking.start_time < end,
        Booking.end_time > start,
    ).first()


def list_rules(db: Session, person_id: str) -> list[AvailabilityRule]:
    return db.query(AvailabilityRule).filter(
        AvailabilityRule.person_id == person_id,
    ).order_by(AvailabilityRule.day_of_week.asc(), AvailabilityRule.start_time.asc()).all()


def replace_rules(db: Session, person_id: str, rules: Iterable[dict]) -> list[AvailabilityRule]:
    """Delete the person's rules and insert ``rules``; the caller commits."""
    new_rules = []
    for rule in rules:
        validate_rule_window(rule['day_of_week'], rule['start_time'], rule['end_time'])
        new_rules.append(
            AvailabilityRule(
                person_id=person_id,
                day_of_week=rule['day_of_week'],
                start_time=rule['start_time'],
                end_time=rule['end_time'],
                is_active=rule.get('is_active', True),
            )
        )

    db.query(AvailabilityRule).filter(AvailabilityRule.person_id == person_id).delete(synchronize_session=False)
    db.add_all(new_rules)
    db.flush()
    return new_rules


def set_person_active(db: Session, person: Person, is_active: bool) -> Person:
    person.is_active = is_active
    db.flush()
    return person


def bind_calendar(db: Session, person: Person, calendar_id: str, credential: str) -> Person:
    person.calendar_id = calendar_id
    person.calendar_credential = credential
    db.flush()
    return person


def unbind_calendar(db: Session, person: Person) -> Person:
    person.calendar_id = None
    person.calendar_credential = None
    db.flush()
    return person
