"""
Tests for the cron entry points.
"""

import pytest
from datetime import timedelta
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tripshare.app.core.clock import utcnow
from tripshare.app.jobs.expiry_sweep import run_expiry_sweep
from tripshare.app.models.trip import Trip
from tripshare.app.models.trip_enums import ManagerApprovalStatus, TripStatus


@pytest.mark.asyncio
async def test_expiry_sweep_job(db_session, trip_factory, employee, redis_client, notifier, test_settings, reload):
    overdue = await trip_factory(
        employee, utcnow() + timedelta(days=1),
        status=TripStatus.PENDING_URGENT,
        manager_approval_expires_at=utcnow() - timedelta(minutes=5),
    )
    current = await trip_factory(
        employee, utcnow() + timedelta(days=4),
        status=TripStatus.PENDING_APPROVAL,
        manager_approval_expires_at=utcnow() + timedelta(days=1),
    )
    session_factory = async_sessionmaker(db_session.bind, class_=AsyncSession, expire_on_commit=False)

    expired_ids = await run_expiry_sweep(session_factory, redis_client, notifier, test_settings)
    rerun_ids = await run_expiry_sweep(session_factory, redis_client, notifier, test_settings)

    assert expired_ids == [overdue.id]
    assert rerun_ids == []
    expired = await reload(Trip, overdue.id)
    assert expired.status == TripStatus.EXPIRED
    assert expired.manager_approval_status == ManagerApprovalStatus.EXPIRED
    assert expired.expired_notification_sent is True
    assert (await reload(Trip, current.id)).status == TripStatus.PENDING_APPROVAL
    assert notifier.sent_to(employee.email)
    assert notifier.sent_to("ops@tripshare.test")
