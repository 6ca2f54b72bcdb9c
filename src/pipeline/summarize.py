from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, date, datetime

from src.models.reading import NormalizedReading
from src.models.summary import (
    ClassificationCategory,
    ClassificationCounts,
    ClassificationOutcome,
    ClassificationResult,
    DatasetSummary,
    DatasetType,
    JobSummary,
    SummaryStats,
)
from src.pipeline.classify import ReadingClassifier, percent

AREA_TYPE_SLUGS = {"Units": "units", "Common Areas": "common-areas"}


def _sort_key(result: ClassificationResult) -> tuple[str, str, str, str]:
    substrate = result.substrate or ""
    return (result.component.casefold(), substrate.casefold(), result.component, substrate)


def order_results(results: Sequence[ClassificationResult]) -> list[ClassificationResult]:
    """Stable report order: component, then substrate (missing substrate first)."""
    return sorted(results, key=_sort_key)


class SummaryAggregator:
    def __init__(self, classifier: ReadingClassifier | None = None) -> None:
        self.classifier = classifier or ReadingClassifier()

    def aggregate(self, results: Sequence[ClassificationResult]) -> list[ClassificationResult]:
        return order_results(results)

    def summarize_dataset(
        self, readings: Sequence[NormalizedReading], dataset_type: DatasetType
    ) -> DatasetSummary:
        ordered = self.aggregate(self.classifier.classify(readings))
        total_positive = sum(1 for reading in readings if self.classifier.is_positive(reading))
        return DatasetSummary(
            dataset_type=dataset_type,
            total_readings=len(readings),
            total_positive=total_positive,
            total_negative=len(readings) - total_positive,
            unique_components=len(ordered),
            average_components=[r for r in ordered if r.category == ClassificationCategory.AVERAGE],
            uniform_components=[r for r in ordered if r.category == ClassificationCategory.UNIFORM],
            non_uniform_components=[r for r in ordered if r.category == ClassificationCategory.NON_UNIFORM],
        )

    def generate_job_summary(
        self,
        *,
        job_number: str,
        source_file_name: str,
        common_area_readings: Sequence[NormalizedReading] | None = None,
        unit_readings: Sequence[NormalizedReading] | None = None,
        ai_normalizations_applied: int = 0,
        processed_date: datetime | None = None,
    ) -> JobSummary:
        return JobSummary(
            job_number=job_number,
            processed_date=processed_date or datetime.now(UTC),
            source_file_name=source_file_name,
            ai_normalizations_applied=ai_normalizations_applied,
            common_area_summary=self.summarize_dataset(common_area_readings or [], DatasetType.COMMON_AREA),
            units_summary=self.summarize_dataset(unit_readings or [], DatasetType.UNITS),
        )


def calculate_stats(summary: DatasetSummary) -> SummaryStats:
    return SummaryStats(
        total_readings=summary.total_readings,
        total_positive=summary.total_positive,
        total_negative=summary.total_negative,
        positive_percent=percent(summary.total_positive, summary.total_readings),
        unique_components=summary.unique_components,
        average_component_count=len(summary.average_components),
        uniform_component_count=len(summary.uniform_components),
        non_uniform_component_count=len(summary.non_uniform_components),
    )


def classification_counts(summary: DatasetSummary) -> ClassificationCounts:
    def _count(results: list[ClassificationResult], outcome: ClassificationOutcome) -> int:
        return sum(1 for r in results if r.result == outcome)

    return ClassificationCounts(
        average_positive=_count(summary.average_components, ClassificationOutcome.POSITIVE),
        average_negative=_count(summary.average_components, ClassificationOutcome.NEGATIVE),
        uniform_positive=_count(summary.uniform_components, ClassificationOutcome.POSITIVE),
        uniform_negative=_count(summary.uniform_components, ClassificationOutcome.NEGATIVE),
        non_uniform_count=len(summary.non_uniform_components),
    )


def positive_components(summary: DatasetSummary) -> list[str]:
    """Labels of every component+substrate with lead findings, sorted."""
    labels = [
        r.label
        for r in summary.average_components + summary.uniform_components
        if r.result == ClassificationOutcome.POSITIVE
    ]
    labels.extend(r.label for r in summary.non_uniform_components if r.positive_count > 0)
    return sorted(labels)


def to_json(summary: JobSummary) -> str:
    return summary.model_dump_json(indent=2)


def from_json(payload: str) -> JobSummary:
    return JobSummary.model_validate_json(payload)


def summary_file_name(job_number: str, area_type: str, on: date | None = None) -> str:
    if area_type not in AREA_TYPE_SLUGS:
        raise ValueError(f"Unknown area type: {area_type}")
    day = (on or datetime.now(UTC).date()).isoformat()
    return f"{job_number}-{AREA_TYPE_SLUGS[area_type]}-summary-{day}.json"


def combined_summary_file_name(job_number: str, on: date | None = None) -> str:
    day = (on or datetime.now(UTC).date()).isoformat()
    return f"{job_number}-summary-{day}.json"
