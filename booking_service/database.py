import os
from dotenv import load_dotenv
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker


load_dotenv()
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./booking.db")

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    DATABASE_URL,
    pool_pre_ping=True,
    connect_args=connect_args,
)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

BOOKING_OVERLAP_CONSTRAINT = 'bookings_no_confirmed_overlap'

_schema_lock = Lock()
_booking_schema_checked = False


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_booking_schema() -> None:
    global _booking_schema_checked

    if _booking_schema_checked:
        return

    with _schema_lock:
        if _booking_schema_checked:
            return

        inspector = inspect(engine)

        if 'bookings' not in inspector.get_table_names():
            _booking_schema_checked = True
            return

        with engine.begin() as connection:
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_bookings_person_time ON bookings(person_id, start_time, end_time)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_bookings_status ON bookings(status)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_bookings_org ON bookings(organization_id)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_availability_rules_person_day ON availability_rules(person_id, day_of_week)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_people_org_active ON people(organization_id, is_active)')
            )

            if engine.dialect.name == 'postgresql':
                _ensure_overlap_constraint(connection)

        _booking_schema_checked = True


def _ensure_overlap_constraint(connection) -> None:
    # Confirmed bookings of one person may never overlap; the row lock taken at
    # reservation time serializes writers, this constraint backs it up.
    connection.execute(text('CREATE EXTENSION IF NOT EXISTS btree_gist'))
    exists = connection.execute(
        text('SELECT 1 FROM pg_constraint WHERE conname = :name'),
        {'name': BOOKING_OVERLAP_CONSTRAINT},
    ).first()
    if exists:
        return
    connection.execute(
        text(
            f'ALTER TABLE bookings ADD CONSTRAINT {BOOKING_OVERLAP_CONSTRAINT} '
            "EXCLUDE USING gist (person_id WITH =, tsrange(start_time, end_time) WITH &&) "
            "WHERE (status = 'confirmed')"
        )
    )
