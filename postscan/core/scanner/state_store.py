"""Durable scan state kept as versioned rows in the scan_options table."""

from datetime import datetime
from typing import Optional

import structlog
from pydantic import ValidationError
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import func

from postscan.core.scanner.exceptions import StateConflictError
from postscan.core.scanner.models import ScanState, StoredState
from postscan.db.database import get_db_session
from postscan.db.models import ScanOption
from postscan.utils.constants import OPTIONS

logger = structlog.get_logger(__name__)


class ScanStateStore:
    """
    Holds two records:

    - the per-scan state (JSON encoded ScanState) under OPTIONS.STATE
    - the last completion timestamp under OPTIONS.LAST_SCAN, which survives
      the reset performed by every new scan

    Writes to the scan state are compare-and-swap on the row version so a
    stale writer fails instead of overwriting newer progress.
    """

    def __init__(self, session_factory=get_db_session):
        self._session_factory = session_factory

    async def load(self) -> StoredState:
        """Read the current state, creating the default record on first access."""
        async with self._session_factory() as db:
            row = await self._get_row(db, OPTIONS.STATE)
            if row is None:
                row = await self._create_default(db)

            state = self._decode(row.value)
            if state.last_scan_completed_at is None:
                state.last_scan_completed_at = await self._read_last_completed(db)

            return StoredState(state=state, version=row.version)

    async def save(self, state: ScanState, expected_version: int) -> int:
        """Write state if the stored version still matches. Returns the new version."""
        async with self._session_factory() as db:
            new_version = await self._compare_and_swap(db, state, expected_version)
            await db.commit()
            return new_version

    async def save_completed(self, state: ScanState, expected_version: int) -> int:
        """Write a finished scan and its durable completion timestamp in one transaction."""
        async with self._session_factory() as db:
            new_version = await self._compare_and_swap(db, state, expected_version)

            completed_at = state.last_scan_completed_at.isoformat() if state.last_scan_completed_at else ""
            row = await self._get_row(db, OPTIONS.LAST_SCAN)
            if row is None:
                db.add(ScanOption(key=OPTIONS.LAST_SCAN, value=completed_at, version=1))
            else:
                row.value = completed_at
                row.version = row.version + 1

            await db.commit()
            return new_version

    async def get_last_completed(self) -> Optional[datetime]:
        """Timestamp of the most recently completed scan, if any."""
        async with self._session_factory() as db:
            return await self._read_last_completed(db)

    async def _compare_and_swap(self, db: AsyncSession, state: ScanState, expected_version: int) -> int:
        result = await db.execute(
            update(ScanOption)
            .where(ScanOption.key == OPTIONS.STATE, ScanOption.version == expected_version)
            .values(
                value=state.model_dump_json(),
                version=expected_version + 1,
                updated_at=func.now(),
            )
        )
        if result.rowcount != 1:
            await db.rollback()
            logger.warning("Scan state write rejected", expected_version=expected_version)
            raise StateConflictError(OPTIONS.STATE, expected_version)
        return expected_version + 1

    async def _create_default(self, db: AsyncSession) -> ScanOption:
        row = ScanOption(key=OPTIONS.STATE, value=ScanState().model_dump_json(), version=0)
        db.add(row)
        try:
            await db.commit()
            logger.info("Scan state initialized")
        except IntegrityError:
            # Another process created it first
            await db.rollback()
            row = await self._get_row(db, OPTIONS.STATE)
        return row

    @staticmethod
    async def _get_row(db: AsyncSession, key: str) -> Optional[ScanOption]:
        return await db.scalar(select(ScanOption).where(ScanOption.key == key))

    async def _read_last_completed(self, db: AsyncSession) -> Optional[datetime]:
        row = await self._get_row(db, OPTIONS.LAST_SCAN)
        if row is None or not row.value:
            return None
        try:
            return datetime.fromisoformat(row.value)
        except ValueError:
            logger.warning("Unreadable last scan timestamp", value=row.value)
            return None

    @staticmethod
    def _decode(value: Optional[str]) -> ScanState:
        if not value:
            return ScanState()
        try:
            return ScanState.model_validate_json(value)
        except ValidationError as e:
            logger.warning("Stored scan state is corrupt, using defaults", error=str(e))
            return ScanState()
