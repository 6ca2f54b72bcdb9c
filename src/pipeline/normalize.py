"""Cache-first, AI-second normalization of freeform component/substrate names.

Each distinct (lower-cased, trimmed) name resolves to exactly one record:
a CACHE hit, an AI grouping, or a title-cased FALLBACK when the grouping
client left it out or failed. New mappings are written back to the cache so
later runs skip the AI call.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Protocol

from src.models.normalization import (
    CachedMapping,
    NormalizationDomain,
    NormalizationProgress,
    NormalizationRecord,
    NormalizationResult,
    NormalizationSource,
    NormalizationStage,
    ProgressCallback,
)
from src.models.reading import NormalizedReading, RawReading
from src.pipeline.errors import GroupingClientError, NormalizationCacheError
from src.pipeline.prompts import SYSTEM_PROMPTS

logger = logging.getLogger(__name__)

FALLBACK_CONFIDENCE_ON_FAILURE = 0.5
FALLBACK_CONFIDENCE_ON_OMISSION = 1.0

_WORD_SPLIT_RE = re.compile(r"[\s\-_]+")


class NameCache(Protocol):
    async def lookup(
        self, domain: NormalizationDomain, names: Iterable[str]
    ) -> dict[str, CachedMapping]: ...

    async def persist(
        self, domain: NormalizationDomain, records: Sequence[NormalizationRecord]
    ) -> int: ...

    async def increment_usage(self, domain: NormalizationDomain, names: Iterable[str]) -> None: ...


class GroupingClient(Protocol):
    async def group(
        self, system_prompt: str, names: Sequence[str], *, noun: str = "names"
    ) -> NormalizationResult: ...


@dataclass(slots=True)
class NormalizedReadings:
    readings: list[NormalizedReading]
    records: list[NormalizationRecord]
    ai_normalizations_count: int


def name_key(name: str | None) -> str:
    return (name or "").strip().lower()


def dedupe_names(names: Iterable[str | None]) -> list[str]:
    seen: dict[str, None] = {}
    for name in names:
        key = name_key(name)
        if key:
            seen.setdefault(key, None)
    return list(seen)


def to_title_case(value: str) -> str:
    words = [word for word in _WORD_SPLIT_RE.split(value.lower()) if word]
    return " ".join(word[0].upper() + word[1:] for word in words)


def fallback_record(name: str, confidence: float) -> NormalizationRecord:
    return NormalizationRecord(
        original_name=name,
        normalized_name=to_title_case(name),
        confidence=confidence,
        source=NormalizationSource.FALLBACK,
    )


def reconcile_groups(
    result: NormalizationResult, miss_names: Sequence[str]
) -> dict[str, NormalizationRecord]:
    """Map AI groups back onto the exact miss set; first claiming group wins."""
    pending = set(miss_names)
    claimed: dict[str, NormalizationRecord] = {}
    for group in result.normalizations:
        for variant in group.variants:
            key = name_key(variant)
            if key not in pending or key in claimed:
                continue
            claimed[key] = NormalizationRecord(
                original_name=key,
                normalized_name=group.canonical,
                confidence=group.confidence,
                source=NormalizationSource.AI,
            )
    return claimed


def build_lookup(records: Iterable[NormalizationRecord]) -> dict[str, str]:
    return {record.original_name: record.normalized_name for record in records}


def apply_overrides(
    records: Sequence[NormalizationRecord], overrides: Mapping[str, str]
) -> list[NormalizationRecord]:
    """Replace canonicals with reviewer corrections, marking them MANUAL."""
    corrections = {name_key(name): value.strip() for name, value in overrides.items() if value.strip()}
    updated: list[NormalizationRecord] = []
    for record in records:
        corrected = corrections.get(record.original_name)
        if corrected is None:
            updated.append(record)
            continue
        updated.append(
            NormalizationRecord(
                original_name=record.original_name,
                normalized_name=corrected,
                confidence=1.0,
                source=NormalizationSource.MANUAL,
            )
        )
    return updated


class NameNormalizer:
    """Normalizes names of one domain (component or substrate)."""

    def __init__(
        self,
        *,
        domain: NormalizationDomain,
        cache: NameCache,
        grouping_client: GroupingClient,
        system_prompt: str | None = None,
    ) -> None:
        self.domain = domain
        self.cache = cache
        self.grouping_client = grouping_client
        self.system_prompt = system_prompt or SYSTEM_PROMPTS[domain]

    @property
    def _noun(self) -> str:
        return f"{self.domain.value} names"

    def _report(
        self,
        on_progress: ProgressCallback | None,
        stage: NormalizationStage,
        processed: int,
        total: int,
        message: str | None = None,
    ) -> None:
        if on_progress is None:
            return
        on_progress(
            NormalizationProgress(
                stage=stage,
                processed=processed,
                total=total,
                message=message or f"{stage.value}: {processed}/{total}",
            )
        )

    async def _lookup_cache(self, names: list[str]) -> dict[str, CachedMapping]:
        try:
            return await self.cache.lookup(self.domain, names)
        except NormalizationCacheError as exc:
            logger.warning(
                "Normalization cache lookup failed for %s; treating all names as misses: %s",
                self.domain.value,
                exc,
                extra={"event_type": "normalize.cache.lookup_failed", "ops_payload": {"kind": exc.kind}},
            )
            return {}

    async def _resolve_misses(self, miss_names: list[str]) -> list[NormalizationRecord]:
        try:
            result = await self.grouping_client.group(self.system_prompt, miss_names, noun=self._noun)
        except GroupingClientError as exc:
            logger.warning(
                "AI %s normalization failed (%s); using title-case fallback for %d names: %s",
                self.domain.value,
                exc.kind,
                len(miss_names),
                exc,
                extra={
                    "event_type": f"normalize.ai.{exc.kind}",
                    "ops_payload": {"kind": exc.kind, "domain": self.domain.value, "names": len(miss_names)},
                },
            )
            return [fallback_record(name, FALLBACK_CONFIDENCE_ON_FAILURE) for name in miss_names]

        claimed = reconcile_groups(result, miss_names)
        records: list[NormalizationRecord] = []
        for name in miss_names:
            record = claimed.get(name)
            if record is None:
                record = fallback_record(name, FALLBACK_CONFIDENCE_ON_OMISSION)
            records.append(record)
        omitted = len(miss_names) - len(claimed)
        if omitted:
            logger.info(
                "AI grouping omitted %d of %d %s names", omitted, len(miss_names), self.domain.value
            )
        return records

    async def _persist(self, records: Sequence[NormalizationRecord]) -> None:
        try:
            await self.cache.persist(self.domain, records)
        except NormalizationCacheError as exc:
            logger.warning(
                "Failed to save %s normalizations to cache: %s",
                self.domain.value,
                exc,
                extra={"event_type": "normalize.cache.persist_failed", "ops_payload": {"kind": exc.kind}},
            )

    async def normalize(
        self, names: Iterable[str | None], on_progress: ProgressCallback | None = None
    ) -> list[NormalizationRecord]:
        unique_names = dedupe_names(names)
        if not unique_names:
            return []
        total = len(unique_names)

        self._report(on_progress, NormalizationStage.CHECKING_CACHE, 0, total)
        cached = await self._lookup_cache(unique_names)
        resolved: dict[str, NormalizationRecord] = {}
        for name in unique_names:
            hit = cached.get(name)
            if hit is not None:
                resolved[name] = NormalizationRecord(
                    original_name=name,
                    normalized_name=hit.normalized_name,
                    confidence=hit.confidence,
                    source=NormalizationSource.CACHE,
                )
        self._report(
            on_progress,
            NormalizationStage.CHECKING_CACHE,
            len(resolved),
            total,
            f"Found {len(resolved)} cached {self.domain.value} mappings",
        )
        if resolved:
            try:
                await self.cache.increment_usage(self.domain, list(resolved))
            except NormalizationCacheError as exc:
                logger.warning("Failed to bump cache usage for %s: %s", self.domain.value, exc)

        miss_names = [name for name in unique_names if name not in resolved]
        if miss_names:
            self._report(
                on_progress,
                NormalizationStage.CALLING_AI,
                len(resolved),
                total,
                f"Normalizing {len(miss_names)} new {self.domain.value} names...",
            )
            new_records = await self._resolve_misses(miss_names)
            for record in new_records:
                resolved[record.original_name] = record

            self._report(
                on_progress,
                NormalizationStage.SAVING_CACHE,
                len(resolved),
                total,
                f"Caching {len(new_records)} new mappings...",
            )
            await self._persist(new_records)

        self._report(
            on_progress,
            NormalizationStage.COMPLETE,
            total,
            total,
            f"Normalized {total} {self.domain.value} names",
        )
        return [resolved[name] for name in unique_names]

    async def save_overrides(self, records: Sequence[NormalizationRecord]) -> None:
        """Persist reviewed records (anything not read straight from the cache)."""
        await self._persist([record for record in records if record.source != NormalizationSource.CACHE])


def _field_for(domain: NormalizationDomain, reading: RawReading) -> str | None:
    if domain == NormalizationDomain.COMPONENT:
        return reading.component
    return reading.substrate


def apply_normalizations(
    domain: NormalizationDomain,
    readings: Sequence[RawReading],
    records: Iterable[NormalizationRecord],
) -> list[NormalizedReading]:
    """Return fresh readings with the domain's canonical name filled in."""
    lookup = build_lookup(records)
    updated: list[NormalizedReading] = []
    for reading in readings:
        raw_value = _field_for(domain, reading)
        canonical: str | None = None
        if name_key(raw_value):
            canonical = lookup.get(name_key(raw_value)) or (raw_value or "").strip()
        if domain == NormalizationDomain.COMPONENT:
            updated.append(NormalizedReading.from_raw(reading, normalized_component=canonical))
        else:
            updated.append(NormalizedReading.from_raw(reading, normalized_substrate=canonical))
    return updated


async def normalize_readings(
    normalizer: NameNormalizer,
    readings: Sequence[RawReading],
    on_progress: ProgressCallback | None = None,
) -> NormalizedReadings:
    records = await normalizer.normalize(
        (_field_for(normalizer.domain, reading) for reading in readings), on_progress
    )
    ai_count = sum(1 for record in records if record.source == NormalizationSource.AI)
    return NormalizedReadings(
        readings=apply_normalizations(normalizer.domain, readings, records),
        records=records,
        ai_normalizations_count=ai_count,
    )
