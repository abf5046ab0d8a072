"""
Data Persistence Layer

SQLite (via aiosqlite) with SQLModel tables for generations that were never
minted and for payment tracking. Both tables are keyed by FID with upsert
semantics. Payment tracking is informational: the chain decides whether a
FID can still mint.
"""

import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import Field, SQLModel, col, select

logger = logging.getLogger(__name__)

PAYMENT_STATUSES = ("settled", "minted", "failed", "refunded")


class UnmintedGeoplet(SQLModel, table=True):
    """A generated image held for a user who has not minted yet."""

    __tablename__ = "unminted_geoplets"

    id: Optional[int] = Field(default=None, primary_key=True)
    fid: int = Field(unique=True, index=True, description="Farcaster ID")
    username: Optional[str] = Field(default=None, description="Farcaster username")
    image_data: str = Field(description="data:image/webp;base64 payload")
    cast_sent: bool = Field(default=False, description="Whether outreach was cast")
    created_at: float = Field(default_factory=time.time, description="Unix timestamp of generation")


class PaymentTracking(SQLModel, table=True):
    """Settlement and mint status for a paid FID."""

    __tablename__ = "payment_tracking"

    id: Optional[int] = Field(default=None, primary_key=True)
    fid: int = Field(unique=True, index=True, description="Farcaster ID")
    settlement_tx_hash: str = Field(description="USDC settlement transaction hash")
    status: str = Field(default="settled", description="settled | minted | failed | refunded")
    mint_tx_hash: Optional[str] = Field(default=None)
    refund_tx_hash: Optional[str] = Field(default=None)
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)


class DatabaseManager:
    """Owns the async engine and hands out sessions."""

    def __init__(self, database_url: Optional[str] = None):
        if database_url is None:
            from ..config import settings
            database_url = settings.storage.database_url
        if not database_url.startswith("sqlite"):
            # Bare file path
            database_url = f"sqlite+aiosqlite:///{Path(database_url).resolve()}"
            logger.debug(f"Interpreted database path as SQLite URL: {database_url}")
        self.database_url = database_url
        self.engine = None
        self.session_factory = None
        self._initialized = False

    def _ensure_parent_dir(self) -> None:
        prefix = "sqlite+aiosqlite:///"
        if self.database_url.startswith(prefix):
            path = self.database_url[len(prefix):]
            if path and path != ":memory:":
                Path(path).parent.mkdir(parents=True, exist_ok=True)

    async def initialize(self):
        """Initialize database connection and create tables."""
        if self._initialized:
            return

        self._ensure_parent_dir()
        self.engine = create_async_engine(
            self.database_url,
            echo=False,
            connect_args={"check_same_thread": False} if "sqlite" in self.database_url else {},
        )
        self.session_factory = sessionmaker(
            bind=self.engine, class_=AsyncSession, expire_on_commit=False
        )

        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

        self._initialized = True
        logger.info("Database initialized successfully")

    @asynccontextmanager
    async def get_session(self):
        """Get database session context manager."""
        if not self._initialized:
            await self.initialize()

        async with self.session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    async def cleanup(self):
        """Cleanup database connections."""
        if self.engine:
            await self.engine.dispose()
        self._initialized = False


class GenerationRepository:
    """Access to the unminted_geoplets table."""

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager

    async def save(self, fid: int, image_data: str, username: Optional[str] = None) -> UnmintedGeoplet:
        """Insert or replace the held image for ``fid``."""
        async with self.db_manager.get_session() as session:
            result = await session.execute(select(UnmintedGeoplet).where(UnmintedGeoplet.fid == fid))
            record = result.scalars().first()
            if record is None:
                record = UnmintedGeoplet(fid=fid, image_data=image_data, username=username)
            else:
                record.image_data = image_data
                record.username = username or record.username
                record.created_at = time.time()
                record.cast_sent = False
            session.add(record)
            await session.commit()
            await session.refresh(record)
            logger.info(f"Saved generation for FID {fid} ({len(image_data) / 1024:.2f}KB)")
            return record

    async def get(self, fid: int) -> Optional[UnmintedGeoplet]:
        async with self.db_manager.get_session() as session:
            result = await session.execute(select(UnmintedGeoplet).where(UnmintedGeoplet.fid == fid))
            return result.scalars().first()

    async def get_many(self, fids: List[int]) -> List[UnmintedGeoplet]:
        if not fids:
            return []
        async with self.db_manager.get_session() as session:
            result = await session.execute(
                select(UnmintedGeoplet).where(col(UnmintedGeoplet.fid).in_(fids))
            )
            return list(result.scalars().all())

    async def delete(self, fid: int) -> bool:
        async with self.db_manager.get_session() as session:
            result = await session.execute(select(UnmintedGeoplet).where(UnmintedGeoplet.fid == fid))
            record = result.scalars().first()
            if record is None:
                return False
            await session.delete(record)
            await session.commit()
            logger.info(f"Deleted generation for FID {fid}")
            return True

    async def list_unconverted(self, cast_sent: Optional[bool] = None) -> List[UnmintedGeoplet]:
        """Generations with no payment record, newest first."""
        statement = (
            select(UnmintedGeoplet)
            .outerjoin(PaymentTracking, col(PaymentTracking.fid) == col(UnmintedGeoplet.fid))
            .where(col(PaymentTracking.id).is_(None))
        )
        if cast_sent is not None:
            statement = statement.where(UnmintedGeoplet.cast_sent == cast_sent)
        statement = statement.order_by(col(UnmintedGeoplet.created_at).desc())

        async with self.db_manager.get_session() as session:
            result = await session.execute(statement)
            return list(result.scalars().all())

    async def set_cast_sent(self, fids: List[int], value: bool = True) -> int:
        if not fids:
            return 0
        async with self.db_manager.get_session() as session:
            result = await session.execute(
                update(UnmintedGeoplet)
                .where(col(UnmintedGeoplet.fid).in_(fids))
                .values(cast_sent=value)
            )
            await session.commit()
            return result.rowcount or 0


class PaymentTrackingRepository:
    """Access to the payment_tracking table."""

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager

    async def upsert(self, fid: int, settlement_tx_hash: str, status: str = "settled") -> PaymentTracking:
        if status not in PAYMENT_STATUSES:
            raise ValueError(f"Invalid payment status: {status}")
        async with self.db_manager.get_session() as session:
            result = await session.execute(select(PaymentTracking).where(PaymentTracking.fid == fid))
            record = result.scalars().first()
            if record is None:
                record = PaymentTracking(fid=fid, settlement_tx_hash=settlement_tx_hash, status=status)
            else:
                record.settlement_tx_hash = settlement_tx_hash
                record.status = status
                record.updated_at = time.time()
            session.add(record)
            await session.commit()
            await session.refresh(record)
            logger.info(f"Payment tracking for FID {fid}: {status} ({settlement_tx_hash})")
            return record

    async def get(self, fid: int) -> Optional[PaymentTracking]:
        async with self.db_manager.get_session() as session:
            result = await session.execute(select(PaymentTracking).where(PaymentTracking.fid == fid))
            return result.scalars().first()

    async def fids_for_settlement(self, settlement_tx_hash: str) -> List[int]:
        async with self.db_manager.get_session() as session:
            result = await session.execute(
                select(PaymentTracking.fid).where(PaymentTracking.settlement_tx_hash == settlement_tx_hash)
            )
            return list(result.scalars().all())

    async def update_status(
        self,
        fid: int,
        status: str,
        mint_tx_hash: Optional[str] = None,
        refund_tx_hash: Optional[str] = None,
    ) -> Optional[PaymentTracking]:
        """Update status and hashes; returns None when no record exists for ``fid``."""
        if status not in PAYMENT_STATUSES:
            raise ValueError(f"Invalid payment status: {status}")
        async with self.db_manager.get_session() as session:
            result = await session.execute(select(PaymentTracking).where(PaymentTracking.fid == fid))
            record = result.scalars().first()
            if record is None:
                return None
            record.status = status
            if mint_tx_hash:
                record.mint_tx_hash = mint_tx_hash
            if refund_tx_hash:
                record.refund_tx_hash = refund_tx_hash
            record.updated_at = time.time()
            session.add(record)
            await session.commit()
            await session.refresh(record)
            return record
