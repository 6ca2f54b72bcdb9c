from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from pydantic import TypeAdapter
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import Settings
from src.db.connection import check_db_health
from src.db.normalization_cache import NormalizationCache
from src.models.normalization import (
    NormalizationDomain,
    NormalizationRecord,
    NormalizationSource,
    ProgressCallback,
)
from src.models.reading import NormalizedReading, RawReading
from src.models.summary import JobSummary
from src.ops.events import new_run_id, reset_run_id, set_run_id
from src.pipeline.classify import ReadingClassifier
from src.pipeline.llm import SemanticGroupingClient
from src.pipeline.normalize import NameNormalizer, normalize_readings
from src.pipeline.summarize import SummaryAggregator, calculate_stats

logger = logging.getLogger(__name__)

AREA_TYPES = ("Units", "Common Areas")

_readings_adapter = TypeAdapter(list[RawReading])


@dataclass(slots=True)
class PipelineServices:
    settings: Settings
    component_normalizer: NameNormalizer
    substrate_normalizer: NameNormalizer
    aggregator: SummaryAggregator


@dataclass(slots=True)
class PipelineResult:
    run_id: str
    summary: JobSummary
    readings: list[NormalizedReading] = field(default_factory=list)
    component_records: list[NormalizationRecord] = field(default_factory=list)
    substrate_records: list[NormalizationRecord] = field(default_factory=list)
    ai_normalizations_applied: int = 0


def build_services(
    *,
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    share_grouping_client: bool = False,
) -> PipelineServices:
    """Wire every collaborator once; nothing downstream reaches for globals."""
    cache = NormalizationCache(session_factory)
    component_client = SemanticGroupingClient(settings)
    substrate_client = component_client if share_grouping_client else SemanticGroupingClient(settings)
    classifier = ReadingClassifier.from_settings(settings)
    return PipelineServices(
        settings=settings,
        component_normalizer=NameNormalizer(
            domain=NormalizationDomain.COMPONENT, cache=cache, grouping_client=component_client
        ),
        substrate_normalizer=NameNormalizer(
            domain=NormalizationDomain.SUBSTRATE, cache=cache, grouping_client=substrate_client
        ),
        aggregator=SummaryAggregator(classifier),
    )


async def check_cache_available(session_factory: async_sessionmaker[AsyncSession]) -> bool:
    """Preflight the cache database; a dead cache only costs cache hits and writes."""
    healthy = await check_db_health(session_factory)
    if not healthy:
        logger.warning(
            "Normalization cache database is unreachable; every name will go to AI or fallback",
            extra={"event_type": "runner.cache.unavailable", "ops_payload": {}},
        )
    return healthy


def load_readings(path: Path) -> list[RawReading]:
    payload = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(payload, dict):
        payload = payload.get("readings", [])
    return _readings_adapter.validate_python(payload)


async def run_pipeline(
    *,
    services: PipelineServices,
    readings: Sequence[RawReading],
    job_number: str,
    area_type: str,
    source_file_name: str,
    on_progress: ProgressCallback | None = None,
) -> PipelineResult:
    if area_type not in AREA_TYPES:
        raise ValueError(f"Unknown area type: {area_type}")

    run_id = new_run_id()
    token = set_run_id(run_id)
    try:
        components = await normalize_readings(services.component_normalizer, readings, on_progress)
        substrates = await normalize_readings(
            services.substrate_normalizer, components.readings, on_progress
        )
        normalized = substrates.readings
        ai_count = components.ai_normalizations_count

        summary = services.aggregator.generate_job_summary(
            job_number=job_number,
            source_file_name=source_file_name,
            common_area_readings=normalized if area_type == "Common Areas" else None,
            unit_readings=normalized if area_type == "Units" else None,
            ai_normalizations_applied=ai_count,
        )

        dataset = summary.units_summary if area_type == "Units" else summary.common_area_summary
        stats = calculate_stats(dataset)
        fallback_count = sum(
            1
            for record in components.records + substrates.records
            if record.source == NormalizationSource.FALLBACK
        )
        logger.info(
            "Processed job %s (%s): %d readings, %d groups, %d positive",
            job_number,
            area_type,
            stats.total_readings,
            stats.unique_components,
            stats.total_positive,
            extra={
                "event_type": "runner.pipeline.completed",
                "ops_payload": {
                    **stats.model_dump(),
                    "ai_normalizations": ai_count,
                    "fallback_normalizations": fallback_count,
                },
            },
        )
        return PipelineResult(
            run_id=run_id,
            summary=summary,
            readings=normalized,
            component_records=components.records,
            substrate_records=substrates.records,
            ai_normalizations_applied=ai_count,
        )
    finally:
        reset_run_id(token)
