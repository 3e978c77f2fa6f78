"""Process-wide service instances shared by the routers."""

import logging

from booking_service.core import config
from booking_service.integrations.google_calendar import CalendarProvider, GoogleCalendarClient
from booking_service.scheduling.availability import AvailabilityService
from booking_service.scheduling.busy import BusyIntervalAggregator
from booking_service.scheduling.cache import CacheSweeper, InMemoryBusyCache
from booking_service.scheduling.reservation import ReservationGuard

logger = logging.getLogger(__name__)


def build_calendar_client() -> CalendarProvider | None:
    if not (config.GOOGLE_CLIENT_ID and config.GOOGLE_CLIENT_SECRET):
        logger.info('Google Calendar credentials not configured; external busy time is ignored')
        return None
    return GoogleCalendarClient()


busy_cache = InMemoryBusyCache(ttl_seconds=config.BUSY_CACHE_TTL_SECONDS)
cache_sweeper = CacheSweeper(busy_cache, interval_seconds=config.BUSY_CACHE_SWEEP_SECONDS)
calendar_client = build_calendar_client()
availability_service = AvailabilityService(BusyIntervalAggregator(calendar_client, busy_cache))
reservation_guard = ReservationGuard(availability_service, calendar_client)


def get_availability_service() -> AvailabilityService:
    return availability_service


def get_reservation_guard() -> ReservationGuard:
    return reservation_guard


def get_calendar_client() -> CalendarProvider | None:
    return calendar_client
