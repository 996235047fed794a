"""Shared fixtures and utilities for tests."""

import os
import tempfile
from pathlib import Path

# The engine is created at import time, so the database must be chosen
# before any application module is imported.
_DB_DIR = tempfile.mkdtemp(prefix="vms-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{Path(_DB_DIR) / 'test.db'}"
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("JSON_LOGS", "false")
os.environ.pop("NOTIFICATION_WEBHOOK_URL", None)

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import patch

import pytest

import database.models  # noqa: F401  registers every table
from database.engine import Base, db_engine

TENANT = "tenant-a"
OTHER_TENANT = "tenant-b"


@pytest.fixture(autouse=True)
async def reset_database():
    """Fresh schema for every test."""
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield


@pytest.fixture(autouse=True)
def sent_tasks():
    """Capture alert hand-offs instead of contacting a broker."""
    with patch("api.services.notifications.celery_app.send_task") as send_task:
        yield send_task


@pytest.fixture
def tenant_id() -> str:
    return TENANT


@pytest.fixture
def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def days_ago(days: int, hour: int = 0) -> datetime:
    """Midnight UTC ``days`` days before today, plus ``hour`` hours."""
    today = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    return today - timedelta(days=days) + timedelta(hours=hour)


def period(days_back: int = 30, days_forward: int = 335) -> tuple[date, date]:
    today = datetime.now(timezone.utc).date()
    return today - timedelta(days=days_back), today + timedelta(days=days_forward)


def money(value) -> Decimal:
    return Decimal(str(value))


async def make_agency(name: str = "Northwind Recruitment", tenant_id: str = TENANT, **kwargs) -> dict:
    """Agency with an IT/SENIOR specialization."""
    from api.services import agencies
    from database.models.agencies import JobCategory, SeniorityLevel

    agency = await agencies.create_agency(tenant_id, name, kwargs.pop("contact_email", None))
    await agencies.add_specialization(
        tenant_id,
        agency["id"],
        kwargs.pop("category", JobCategory.IT),
        kwargs.pop("seniority_levels", [SeniorityLevel.SENIOR]),
        years_experience=kwargs.pop("years_experience", 5),
        match_priority=kwargs.pop("match_priority", 5),
    )
    return agency


async def make_job(tenant_id: str = TENANT, **kwargs) -> dict:
    """Open remote IT/SENIOR job paying 80,000 a year."""
    from api.services import jobs
    from database.models.agencies import JobCategory, SeniorityLevel
    from database.models.jobs import LocationType

    return await jobs.create_job(
        tenant_id,
        kwargs.pop("title", "Senior Backend Engineer"),
        kwargs.pop("category", JobCategory.IT),
        kwargs.pop("seniority", SeniorityLevel.SENIOR),
        location_type=kwargs.pop("location_type", LocationType.REMOTE),
        salary_annual=kwargs.pop("salary_annual", Decimal("80000")),
        **kwargs,
    )
