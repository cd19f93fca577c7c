"""
Distributed Lock Service

Keeps the scheduled sweeps single-flight across application replicas using
lease rows in the distributed_locks table. The sweeps stay correct without
the lease (poll transitions are compare-and-set); the lease only stops
replicas from hitting the external adapters for the same polls at once.
"""

import os
import socket
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, AsyncGenerator, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from db.time import utcnow
from models.distributed_lock import DistributedLock

logger = structlog.get_logger(__name__)

# Lock names for the scheduled sweeps
LOCK_CLOSE_POLLS = "close_polls"
LOCK_RECONCILE_OUTCOMES = "reconcile_outcomes"

_instance_id: Optional[str] = None


def get_instance_id() -> str:
    """Identifier of this process, used as the lease holder."""
    global _instance_id
    if _instance_id is None:
        _instance_id = f"{socket.gethostname()}:{os.getpid()}"
    return _instance_id


def _rowcount(result: Any) -> int:
    return getattr(result, "rowcount", 0) or 0


class DistributedLockService:
    """
    Lease acquisition and release.

    Usage:
        async with DistributedLockService.acquire_lock(db, LOCK_CLOSE_POLLS) as acquired:
            if acquired:
                ...
    """

    @staticmethod
    async def _get_or_create(db: AsyncSession, lock_name: str) -> DistributedLock:
        query = (
            select(DistributedLock)
            .where(DistributedLock.lock_name == lock_name)
            .execution_options(populate_existing=True)
        )
        lock = (await db.execute(query)).scalar_one_or_none()
        if lock is not None:
            return lock

        db.add(DistributedLock(lock_name=lock_name, is_locked=False, version=0))
        try:
            await db.commit()
            logger.info(f"Created new lock record: {lock_name}")
        except IntegrityError:
            # Another replica created it first
            await db.rollback()
        return (await db.execute(query)).scalar_one()

    @staticmethod
    async def try_acquire(
        db: AsyncSession,
        lock_name: str,
        timeout_seconds: Optional[int] = None,
    ) -> bool:
        """
        Take the lease if it is free or expired.

        The update is conditioned on the version read, so of two replicas
        seeing the same free lease only one wins.
        """
        instance_id = get_instance_id()
        now = utcnow()
        expires_at = now + timedelta(seconds=timeout_seconds or settings.SWEEP_LOCK_TIMEOUT_SECONDS)

        try:
            lock = await DistributedLockService._get_or_create(db, lock_name)
            if lock.is_locked and not lock.is_expired(now):
                logger.debug(f"Lock '{lock_name}' is held by {lock.locked_by}")
                return False

            version = lock.version
            result = await db.execute(
                update(DistributedLock)
                .where(DistributedLock.lock_name == lock_name, DistributedLock.version == version)
                .values(
                    is_locked=True,
                    locked_by=instance_id,
                    locked_at=now,
                    expires_at=expires_at,
                    version=version + 1,
                )
            )
            if _rowcount(result) != 1:
                await db.rollback()
                logger.debug(f"Lock '{lock_name}' acquisition lost a race")
                return False

            await db.commit()
            logger.info(f"Lock '{lock_name}' acquired by {instance_id}")
            return True

        except SQLAlchemyError as e:
            logger.error(f"Error acquiring lock '{lock_name}': {e}")
            await db.rollback()
            return False

    @staticmethod
    async def release(
        db: AsyncSession,
        lock_name: str,
        success: bool = True,
        result_notes: Optional[str] = None,
    ) -> bool:
        """Give the lease back and record how the run went."""
        instance_id = get_instance_id()

        try:
            result = await db.execute(
                update(DistributedLock)
                .where(DistributedLock.lock_name == lock_name, DistributedLock.locked_by == instance_id)
                .values(
                    is_locked=False,
                    locked_by=None,
                    locked_at=None,
                    expires_at=None,
                    last_run_at=utcnow(),
                    last_run_result=result_notes or ("success" if success else "failed"),
                )
            )
            if _rowcount(result) != 1:
                await db.rollback()
                logger.warning(f"Lock '{lock_name}' release failed - not held by {instance_id}")
                return False

            await db.commit()
            return True

        except SQLAlchemyError as e:
            logger.error(f"Error releasing lock '{lock_name}': {e}")
            await db.rollback()
            return False

    @staticmethod
    @asynccontextmanager
    async def acquire_lock(
        db: AsyncSession,
        lock_name: str,
        timeout_seconds: Optional[int] = None,
    ) -> AsyncGenerator[bool, None]:
        """Hold the lease for the duration of the block, if it could be taken."""
        acquired = await DistributedLockService.try_acquire(db, lock_name, timeout_seconds)
        success = True
        result_notes = None

        try:
            yield acquired
        except Exception as e:
            success = False
            result_notes = str(e)[:500]
            raise
        finally:
            if acquired:
                await DistributedLockService.release(db, lock_name, success, result_notes)
