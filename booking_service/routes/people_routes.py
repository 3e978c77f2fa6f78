import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_service import repository
from booking_service.database import get_db
from booking_service.routes import common

router = APIRouter(tags=['people'])

logger = logging.getLogger(__name__)


class UpdatePersonRequest(BaseModel):
    is_active: bool


class CalendarBindingRequest(BaseModel):
    calendar_id: str
    refresh_token: str

    @field_validator('calendar_id', 'refresh_token')
    @classmethod
    def validate_not_blank(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Value must not be blank.')
        return normalized


class PersonResponse(BaseModel):
    id: str
    organization_id: str
    display_name: str
    email: str
    is_active: bool
    has_calendar: bool

    class Config:
        from_attributes = True


def _require_person(db: Session, person_id: str):
    person = repository.get_person(db, person_id)
    if person is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Person not found.')
    return person


@router.patch('/{person_id}', response_model=PersonResponse)
def update_person(person_id: str, data: UpdatePersonRequest, db: Session = Depends(get_db)):
    common.ensure_database_ready()

    try:
        person = _require_person(db, person_id)
        repository.set_person_active(db, person, data.is_active)
        db.commit()
        db.refresh(person)
    except SQLAlchemyError as exc:
        db.rollback()
        raise common.database_unavailable() from exc

    logger.info('Person %s is_active=%s', person_id, data.is_active)
    return person


@router.put('/{person_id}/calendar', response_model=PersonResponse)
def bind_person_calendar(person_id: str, data: CalendarBindingRequest, db: Session = Depends(get_db)):
    common.ensure_database_ready()

    try:
        person = _require_person(db, person_id)
        repository.bind_calendar(db, person, data.calendar_id, data.refresh_token)
        db.commit()
        db.refresh(person)
    except SQLAlchemyError as exc:
        db.rollback()
        raise common.database_unavailable() from exc

    logger.info('Calendar %s bound to person %s', data.calendar_id, person_id)
    return person


@router.delete('/{person_id}/calendar', response_model=PersonResponse)
def unbind_person_calendar(person_id: str, db: Session = Depends(get_db)):
    common.ensure_database_ready()

    try:
        person = _require_person(db, person_id)
        repository.unbind_calendar(db, person)
        db.commit()
        db.refresh(person)
    except SQLAlchemyError as exc:
        db.rollback()
        raise common.database_unavailable() from exc

    logger.info('Calendar unbound from person %s', person_id)
    return person
