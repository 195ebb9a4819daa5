"""
Trip store.

The single persistence port for trips, optimization groups and join
requests. Every multi-step change runs inside ``atomic()``; paths that
check capacity or group membership read rows through the ``*_for_update``
helpers so the check and the write happen under the same row lock.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import select, delete, func
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from tripshare.app.core.exceptions import ConflictError, TransientInfrastructureError
from tripshare.app.models.enums import UserRole
from tripshare.app.models.join_request import JoinRequest, JoinRequestStatus, TERMINAL_JOIN_STATUSES
from tripshare.app.models.optimization_group import OptimizationGroup, GroupStatus
from tripshare.app.models.trip import Trip
from tripshare.app.models.trip_enums import TripStatus, TripDataType
from tripshare.app.models.user import User

logger = logging.getLogger(__name__)

LOGICAL_DATA_TYPES = (TripDataType.RAW, TripDataType.FINAL)
PENDING_STATUSES = (TripStatus.PENDING_APPROVAL, TripStatus.PENDING_URGENT)
CONSOLIDATION_STATUSES = (TripStatus.APPROVED, TripStatus.AUTO_APPROVED)
BOOKED_STATUSES = (
    TripStatus.APPROVED,
    TripStatus.APPROVED_SOLO,
    TripStatus.AUTO_APPROVED,
    TripStatus.OPTIMIZED,
)


class TripStore:
    """Data access for one request, bound to one ``AsyncSession``."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # Transactions

    @asynccontextmanager
    async def atomic(self):
        """
        Run the enclosed statements as one transaction.

        Commits on success and rolls back everything on any exception. A
        transaction the session already started implicitly (for example by
        an earlier read) is adopted rather than nested.

        Raises:
            ConflictError: A unique constraint rejected the write
            TransientInfrastructureError: The database connection failed
        """
        try:
            if not self.db.in_transaction():
                async with self.db.begin():
                    yield self
            else:
                try:
                    yield self
                except BaseException:
                    await self.db.rollback()
                    raise
                await self.db.commit()
        except IntegrityError as exc:
            logger.warning("Write rejected by constraint: %s", exc.orig)
            raise ConflictError("The change conflicts with an existing record") from exc
        except (OperationalError, InterfaceError) as exc:
            logger.error("Database unavailable: %s", exc)
            raise TransientInfrastructureError("Database is temporarily unavailable") from exc

    async def add(self, obj):
        self.db.add(obj)
        await self.db.flush()
        return obj

    async def delete(self, obj) -> None:
        await self.db.delete(obj)
        await self.db.flush()

    # Users

    async def get_user(self, user_id: int) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def admin_emails(self) -> List[str]:
        result = await self.db.execute(
            select(User.email).where(User.role == UserRole.ADMIN, User.is_active == True)
        )
        return list(result.scalars().all())

    # Trips

    async def get_trip(self, trip_id: int) -> Optional[Trip]:
        """Fetch a logical (raw or final) trip; temp records are never returned."""
        result = await self.db.execute(
            select(Trip).where(Trip.id == trip_id, Trip.data_type.in_(LOGICAL_DATA_TYPES))
        )
        return result.scalar_one_or_none()

    async def get_trip_for_update(self, trip_id: int) -> Optional[Trip]:
        """Fetch a logical trip and hold its row lock until the transaction ends."""
        result = await self.db.execute(
            select(Trip)
            .where(Trip.id == trip_id, Trip.data_type.in_(LOGICAL_DATA_TYPES))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def lock_trips(self, trip_ids: Iterable[int]) -> Dict[int, Trip]:
        """Lock several logical trips, always in id order to avoid lock cycles."""
        ids = sorted(set(trip_ids))
        if not ids:
            return {}
        result = await self.db.execute(
            select(Trip)
            .where(Trip.id.in_(ids), Trip.data_type.in_(LOGICAL_DATA_TYPES))
            .order_by(Trip.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return {trip.id: trip for trip in result.scalars().all()}

    async def list_trips(
        self,
        requester_id: Optional[int] = None,
        statuses: Optional[Sequence[TripStatus]] = None,
        limit: int = 100,
    ) -> List[Trip]:
        query = select(Trip).where(Trip.data_type.in_(LOGICAL_DATA_TYPES))
        if requester_id is not None:
            query = query.where(Trip.requester_id == requester_id)
        if statuses:
            query = query.where(Trip.status.in_(statuses))
        query = query.order_by(Trip.departure_at.desc()).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def list_consolidation_candidates(self) -> List[Trip]:
        """Approved trips that are not part of any group yet."""
        result = await self.db.execute(
            select(Trip)
            .where(
                Trip.data_type.in_(LOGICAL_DATA_TYPES),
                Trip.status.in_(CONSOLIDATION_STATUSES),
                Trip.optimized_group_id.is_(None),
            )
            .order_by(Trip.departure_at, Trip.id)
        )
        return list(result.scalars().all())

    async def list_overdue_approvals(self, now: datetime) -> List[Trip]:
        result = await self.db.execute(
            select(Trip)
            .where(
                Trip.data_type.in_(LOGICAL_DATA_TYPES),
                Trip.status.in_(PENDING_STATUSES),
                Trip.manager_approval_expires_at.is_not(None),
                Trip.manager_approval_expires_at <= now,
            )
            .order_by(Trip.manager_approval_expires_at, Trip.id)
        )
        return list(result.scalars().all())

    async def requester_has_booked_trip_on(self, requester_id: int, day: datetime) -> bool:
        start = day.replace(hour=0, minute=0, second=0, microsecond=0)
        end = start + timedelta(days=1)
        result = await self.db.execute(
            select(func.count(Trip.id)).where(
                Trip.requester_id == requester_id,
                Trip.data_type.in_(LOGICAL_DATA_TYPES),
                Trip.status.in_(BOOKED_STATUSES),
                Trip.departure_at >= start,
                Trip.departure_at < end,
            )
        )
        return result.scalar() > 0

    async def temp_records_for_group(self, group_id: int) -> List[Trip]:
        result = await self.db.execute(
            select(Trip)
            .where(Trip.optimized_group_id == group_id, Trip.data_type == TripDataType.TEMP)
            .order_by(Trip.parent_trip_id)
        )
        return list(result.scalars().all())

    async def delete_temp_records(self, group_id: int) -> int:
        result = await self.db.execute(
            delete(Trip)
            .where(Trip.optimized_group_id == group_id, Trip.data_type == TripDataType.TEMP)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount

    async def requester_ids_for_trips(self, trip_ids: Iterable[int]) -> List[int]:
        ids = list(trip_ids)
        if not ids:
            return []
        result = await self.db.execute(select(Trip.requester_id).where(Trip.id.in_(ids)))
        return list(result.scalars().all())

    # Optimization groups

    async def get_group(self, group_id: int) -> Optional[OptimizationGroup]:
        result = await self.db.execute(
            select(OptimizationGroup).where(OptimizationGroup.id == group_id)
        )
        return result.scalar_one_or_none()

    async def get_group_for_update(self, group_id: int) -> Optional[OptimizationGroup]:
        result = await self.db.execute(
            select(OptimizationGroup)
            .where(OptimizationGroup.id == group_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_groups(self, status: Optional[GroupStatus] = None, limit: int = 100) -> List[OptimizationGroup]:
        query = select(OptimizationGroup)
        if status is not None:
            query = query.where(OptimizationGroup.status == status)
        query = query.order_by(OptimizationGroup.created_at.desc(), OptimizationGroup.id.desc()).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    # Join requests

    async def get_join_request(self, request_id: int) -> Optional[JoinRequest]:
        result = await self.db.execute(select(JoinRequest).where(JoinRequest.id == request_id))
        return result.scalar_one_or_none()

    async def get_join_request_for_update(self, request_id: int) -> Optional[JoinRequest]:
        result = await self.db.execute(
            select(JoinRequest)
            .where(JoinRequest.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_active_join_request(self, trip_id: int, requester_id: int) -> Optional[JoinRequest]:
        """A pending or approved request by this requester for this trip."""
        result = await self.db.execute(
            select(JoinRequest).where(
                JoinRequest.trip_id == trip_id,
                JoinRequest.requester_id == requester_id,
                JoinRequest.status.in_((JoinRequestStatus.PENDING, JoinRequestStatus.APPROVED)),
            ).limit(1)
        )
        return result.scalar_one_or_none()

    async def count_approved_joins(self, trip_id: int) -> int:
        result = await self.db.execute(
            select(func.count(JoinRequest.id)).where(
                JoinRequest.trip_id == trip_id,
                JoinRequest.status == JoinRequestStatus.APPROVED,
            )
        )
        return result.scalar()

    async def approved_join_counts(self, trip_ids: Iterable[int]) -> Dict[int, int]:
        """Approved join riders per trip; trips without any are left out."""
        trip_ids = list(trip_ids)
        if not trip_ids:
            return {}
        result = await self.db.execute(
            select(JoinRequest.trip_id, func.count(JoinRequest.id))
            .where(
                JoinRequest.trip_id.in_(trip_ids),
                JoinRequest.status == JoinRequestStatus.APPROVED,
            )
            .group_by(JoinRequest.trip_id)
        )
        return {trip_id: count for trip_id, count in result.all()}

    async def list_join_requests(
        self,
        requester_id: Optional[int] = None,
        status: Optional[JoinRequestStatus] = None,
        trip_id: Optional[int] = None,
    ) -> List[JoinRequest]:
        query = select(JoinRequest)
        if requester_id is not None:
            query = query.where(JoinRequest.requester_id == requester_id)
        if status is not None:
            query = query.where(JoinRequest.status == status)
        if trip_id is not None:
            query = query.where(JoinRequest.trip_id == trip_id)
        result = await self.db.execute(query.order_by(JoinRequest.created_at.desc(), JoinRequest.id.desc()))
        return list(result.scalars().all())

    async def join_request_counts(self) -> Dict[JoinRequestStatus, int]:
        result = await self.db.execute(
            select(JoinRequest.status, func.count(JoinRequest.id)).group_by(JoinRequest.status)
        )
        counts = {status: 0 for status in JoinRequestStatus}
        for status, count in result.all():
            counts[status] = count
        return counts

    async def purge_join_requests(self, cutoff: datetime) -> int:
        """Physically delete decided requests last touched before ``cutoff``."""
        result = await self.db.execute(
            delete(JoinRequest)
            .where(
                JoinRequest.status.in_(TERMINAL_JOIN_STATUSES),
                JoinRequest.updated_at < cutoff,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
