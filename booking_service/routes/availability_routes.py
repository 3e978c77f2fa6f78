from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_service import repository
from booking_service.core.clock import to_utc_naive
from booking_service.core.exceptions import BookingServiceError
from booking_service.database import get_db
from booking_service.routes import common
from booking_service.scheduling.availability import AvailabilityService
from booking_service.scheduling.rules import parse_rule_time
from booking_service.services import get_availability_service

router = APIRouter(tags=['availability'])

MIN_DURATION_MINUTES = 5
MAX_DURATION_MINUTES = 8 * 60


class AvailableSlotResponse(BaseModel):
    start_time: datetime
    end_time: datetime
    person_id: str
    person_name: str
    person_email: str


class SlotCheckResponse(BaseModel):
    person_id: str
    start_time: datetime
    end_time: datetime
    available: bool


class AvailabilityRuleInput(BaseModel):
    day_of_week: int = Field(ge=0, le=6)
    start_time: str
    end_time: str
    is_active: bool = True

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_hhmm(cls, value: str) -> str:
        normalized = value.strip()
        parse_rule_time(normalized)
        return normalized

    @model_validator(mode='after')
    def validate_window(self) -> 'AvailabilityRuleInput':
        if parse_rule_time(self.start_time) >= parse_rule_time(self.end_time):
            raise ValueError('start_time must be before end_time.')
        return self


class ReplaceRulesRequest(BaseModel):
    rules: list[AvailabilityRuleInput]


class AvailabilityRuleResponse(BaseModel):
    id: int
    day_of_week: int
    start_time: str
    end_time: str
    is_active: bool

    class Config:
        from_attributes = True


@router.get('/{organization_id}/slots', response_model=list[AvailableSlotResponse])
def list_available_slots(
    organization_id: str,
    start_date: date = Query(...),
    end_date: date = Query(...),
    duration_minutes: int | None = Query(default=None, ge=MIN_DURATION_MINUTES, le=MAX_DURATION_MINUTES),
    db: Session = Depends(get_db),
    availability: AvailabilityService = Depends(get_availability_service),
):
    common.ensure_database_ready()

    try:
        slots = availability.compute_slots(db, organization_id, start_date, end_date, duration_minutes)
    except BookingServiceError as exc:
        raise common.http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise common.database_unavailable() from exc

    return [
        AvailableSlotResponse(
            start_time=slot.start,
            end_time=slot.end,
            person_id=slot.person_id,
            person_name=slot.person_name,
            person_email=slot.person_email,
        )
        for slot in slots
    ]


@router.get('/{organization_id}/dates', response_model=list[date])
def list_available_dates(
    organization_id: str,
    start_date: date = Query(...),
    end_date: date = Query(...),
    duration_minutes: int | None = Query(default=None, ge=MIN_DURATION_MINUTES, le=MAX_DURATION_MINUTES),
    db: Session = Depends(get_db),
    availability: AvailabilityService = Depends(get_availability_service),
):
    common.ensure_database_ready()

    try:
        return availability.compute_available_dates(db, organization_id, start_date, end_date, duration_minutes)
    except BookingServiceError as exc:
        raise common.http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise common.database_unavailable() from exc


@router.get('/people/{person_id}/check', response_model=SlotCheckResponse)
def check_slot(
    person_id: str,
    start_time: datetime = Query(...),
    end_time: datetime = Query(...),
    db: Session = Depends(get_db),
    availability: AvailabilityService = Depends(get_availability_service),
):
    start_time, end_time = to_utc_naive(start_time), to_utc_naive(end_time)
    if start_time >= end_time:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='start_time must be before end_time.',
        )

    common.ensure_database_ready()

    try:
        available = availability.is_slot_available(db, person_id, start_time, end_time)
    except BookingServiceError as exc:
        raise common.http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise common.database_unavailable() from exc

    return SlotCheckResponse(person_id=person_id, start_time=start_time, end_time=end_time, available=available)


@router.get('/people/{person_id}/rules', response_model=list[AvailabilityRuleResponse])
def list_person_rules(person_id: str, db: Session = Depends(get_db)):
    common.ensure_database_ready()

    try:
        if repository.get_person(db, person_id) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Person not found.')
        return repository.list_rules(db, person_id)
    except SQLAlchemyError as exc:
        raise common.database_unavailable() from exc


@router.put('/people/{person_id}/rules', response_model=list[AvailabilityRuleResponse])
def replace_person_rules(person_id: str, data: ReplaceRulesRequest, db: Session = Depends(get_db)):
    common.ensure_database_ready()

    try:
        if repository.get_person(db, person_id) is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Person not found.')

        repository.replace_rules(db, person_id, [rule.model_dump() for rule in data.rules])
        db.commit()

        return repository.list_rules(db, person_id)
    except BookingServiceError as exc:
        db.rollback()
        raise common.http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise common.database_unavailable() from exc
