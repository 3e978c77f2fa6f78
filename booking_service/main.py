import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from booking_service.core import config
from booking_service.database import Base, engine, ensure_booking_schema
from booking_service.models import availability_rule, booking, organization_config, person  # noqa: F401
from booking_service.routes import availability_routes, booking_routes, people_routes
from booking_service.services import cache_sweeper

config.configure_logging()

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)


@app.on_event('startup')
def initialize_database() -> None:
    config.validate_runtime_config()
    try:
        Base.metadata.create_all(bind=engine)
        ensure_booking_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and database credentials.')


@app.on_event('startup')
def start_cache_sweeper() -> None:
    cache_sweeper.start()


@app.on_event('shutdown')
def stop_cache_sweeper() -> None:
    cache_sweeper.stop()


@app.get('/')
def root():
    return {'status': 'Booking Service API Running'}


app.include_router(availability_routes.router, prefix='/availability')
app.include_router(booking_routes.router, prefix='/bookings')
app.include_router(people_routes.router, prefix='/people')
