from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime

from sqlalchemy import DateTime, Float, Integer, String, UniqueConstraint, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import Mapped, mapped_column

from src.db.connection import Base
from src.models.normalization import (
    CachedMapping,
    NormalizationDomain,
    NormalizationRecord,
    NormalizationSource,
)
from src.pipeline.errors import CacheLookupError, CachePersistError

logger = logging.getLogger(__name__)

LOOKUP_BATCH_SIZE = 200


class NormalizationCacheEntry(Base):
    __tablename__ = "normalization_cache"
    __table_args__ = (
        UniqueConstraint("domain", "original_name", name="uq_normalization_cache_domain_name"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    domain: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    original_name: Mapped[str] = mapped_column(String(255), nullable=False)
    normalized_name: Mapped[str] = mapped_column(String(255), nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    source: Mapped[str] = mapped_column(String(16), nullable=False, default=NormalizationSource.AI.value)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    last_used: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )

    def to_mapping(self) -> CachedMapping:
        return CachedMapping(
            normalized_name=self.normalized_name,
            confidence=self.confidence,
            source=NormalizationSource(self.source),
            usage_count=self.usage_count,
        )


def cache_key(name: str) -> str:
    return name.strip().lower()


class NormalizationCache:
    """Durable original-name -> canonical-name store, one namespace per domain."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def lookup(
        self, domain: NormalizationDomain, names: Iterable[str]
    ) -> dict[str, CachedMapping]:
        keys = sorted({cache_key(name) for name in names if cache_key(name)})
        if not keys:
            return {}

        found: dict[str, CachedMapping] = {}
        try:
            async with self._session_factory() as session:
                for i in range(0, len(keys), LOOKUP_BATCH_SIZE):
                    chunk = keys[i : i + LOOKUP_BATCH_SIZE]
                    result = await session.execute(
                        select(NormalizationCacheEntry)
                        .where(NormalizationCacheEntry.domain == domain.value)
                        .where(NormalizationCacheEntry.original_name.in_(chunk))
                    )
                    for entry in result.scalars().all():
                        found[cache_key(entry.original_name)] = entry.to_mapping()
        except SQLAlchemyError as exc:
            raise CacheLookupError(f"Cache lookup failed for domain={domain.value}: {exc}") from exc
        return found

    async def persist(
        self, domain: NormalizationDomain, records: Sequence[NormalizationRecord]
    ) -> int:
        """Upsert every non-cache record; returns how many rows were written.

        Each record is written under its own savepoint so one bad row does not
        discard the others. Raises CachePersistError naming the rows that failed.
        """
        pending = [record for record in records if record.source != NormalizationSource.CACHE]
        if not pending:
            return 0

        now = datetime.now(UTC)
        written = 0
        failed: list[str] = []
        try:
            async with self._session_factory() as session:
                for record in pending:
                    try:
                        async with session.begin_nested():
                            await self._upsert(session, domain, record, now)
                        written += 1
                    except SQLAlchemyError:
                        logger.warning(
                            "Failed to cache %s mapping for %r",
                            domain.value,
                            record.original_name,
                            exc_info=True,
                        )
                        failed.append(record.original_name)
                await session.commit()
        except SQLAlchemyError as exc:
            raise CachePersistError(f"Cache write failed for domain={domain.value}: {exc}") from exc

        if failed:
            raise CachePersistError(
                f"Cache write failed for {len(failed)} of {len(pending)} {domain.value} mappings: "
                + ", ".join(failed)
            )
        return written

    async def _upsert(
        self,
        session: AsyncSession,
        domain: NormalizationDomain,
        record: NormalizationRecord,
        now: datetime,
    ) -> None:
        result = await session.execute(
            select(NormalizationCacheEntry)
            .where(NormalizationCacheEntry.domain == domain.value)
            .where(NormalizationCacheEntry.original_name == record.original_name)
        )
        existing = result.scalar_one_or_none()
        if existing is None:
            session.add(
                NormalizationCacheEntry(
                    domain=domain.value,
                    original_name=record.original_name,
                    normalized_name=record.normalized_name,
                    confidence=record.confidence,
                    source=record.source.value,
                    usage_count=1,
                    last_used=now,
                )
            )
        else:
            existing.normalized_name = record.normalized_name
            existing.confidence = record.confidence
            existing.source = record.source.value
            existing.usage_count = (existing.usage_count or 0) + 1
            existing.last_used = now
        await session.flush()

    async def increment_usage(self, domain: NormalizationDomain, names: Iterable[str]) -> None:
        keys = sorted({cache_key(name) for name in names if cache_key(name)})
        if not keys:
            return
        try:
            async with self._session_factory() as session:
                await session.execute(
                    update(NormalizationCacheEntry)
                    .where(NormalizationCacheEntry.domain == domain.value)
                    .where(NormalizationCacheEntry.original_name.in_(keys))
                    .values(
                        usage_count=NormalizationCacheEntry.usage_count + 1,
                        last_used=datetime.now(UTC),
                    )
                )
                await session.commit()
        except SQLAlchemyError as exc:
            raise CachePersistError(f"Cache usage update failed for domain={domain.value}: {exc}") from exc

    async def list_entries(self, domain: NormalizationDomain) -> dict[str, CachedMapping]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(NormalizationCacheEntry)
                    .where(NormalizationCacheEntry.domain == domain.value)
                    .order_by(NormalizationCacheEntry.original_name)
                )
                return {entry.original_name: entry.to_mapping() for entry in result.scalars().all()}
        except SQLAlchemyError as exc:
            raise CacheLookupError(f"Cache listing failed for domain={domain.value}: {exc}") from exc
