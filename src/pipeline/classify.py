from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from fractions import Fraction

from src.config import Settings
from src.models.reading import LEAD_POSITIVE_THRESHOLD, NormalizedReading
from src.models.summary import (
    POSITIVE_PERCENT_THRESHOLD,
    STATISTICAL_SAMPLE_SIZE,
    ClassificationCategory,
    ClassificationOutcome,
    ClassificationResult,
)
from src.pipeline.errors import MalformedReadingError

GroupKey = tuple[str, str | None]


@dataclass(slots=True)
class ReadingGroup:
    component: str
    substrate: str | None
    readings: list[NormalizedReading]


def group_readings(readings: Iterable[NormalizedReading]) -> list[ReadingGroup]:
    """Partition readings by (component, substrate); blank components are dropped."""
    groups: dict[GroupKey, ReadingGroup] = {}
    for reading in readings:
        component = reading.group_component()
        if not component:
            continue
        substrate = reading.group_substrate()
        key = (component, substrate)
        if key not in groups:
            groups[key] = ReadingGroup(component=component, substrate=substrate, readings=[])
        groups[key].readings.append(reading)
    return list(groups.values())


def percent(part: int, total: int) -> float:
    return round(part / total * 100, 1) if total else 0.0


class ReadingClassifier:
    """HUD/EPA component classification.

    - at least ``sample_size`` readings: AVERAGE, positive when the positive
      share is strictly above ``positive_percent_threshold``
    - fewer readings, all alike: UNIFORM
    - fewer readings, mixed: NON_UNIFORM, every reading kept for review
    """

    def __init__(
        self,
        *,
        lead_threshold: float = LEAD_POSITIVE_THRESHOLD,
        sample_size: int = STATISTICAL_SAMPLE_SIZE,
        positive_percent_threshold: float = POSITIVE_PERCENT_THRESHOLD,
    ) -> None:
        self.lead_threshold = lead_threshold
        self.sample_size = sample_size
        self._positive_share = Fraction(str(positive_percent_threshold)) / 100

    @classmethod
    def from_settings(cls, settings: Settings) -> ReadingClassifier:
        return cls(
            lead_threshold=settings.lead_positive_threshold,
            sample_size=settings.statistical_sample_size,
            positive_percent_threshold=settings.positive_percent_threshold,
        )

    def is_positive(self, reading: NormalizedReading) -> bool:
        lead = reading.lead_content
        if not isinstance(lead, int | float) or not math.isfinite(lead) or lead < 0:
            raise MalformedReadingError(
                f"Reading {reading.reading_id!r} has invalid lead content {lead!r}"
            )
        return lead >= self.lead_threshold

    def classify_group(self, group: ReadingGroup) -> ClassificationResult:
        total = len(group.readings)
        flags = [self.is_positive(reading) for reading in group.readings]
        positive = sum(flags)
        negative = total - positive
        base = {
            "component": group.component,
            "substrate": group.substrate,
            "total_count": total,
            "positive_count": positive,
            "negative_count": negative,
            "percent_positive": percent(positive, total),
        }

        if total >= self.sample_size:
            above = Fraction(positive, total) > self._positive_share
            return ClassificationResult(
                **base,
                category=ClassificationCategory.AVERAGE,
                result=ClassificationOutcome.POSITIVE if above else ClassificationOutcome.NEGATIVE,
            )

        if positive == 0 or negative == 0:
            return ClassificationResult(
                **base,
                category=ClassificationCategory.UNIFORM,
                result=ClassificationOutcome.POSITIVE if positive == total else ClassificationOutcome.NEGATIVE,
            )

        return ClassificationResult(
            **base,
            category=ClassificationCategory.NON_UNIFORM,
            result=None,
            readings=[
                reading.model_copy(update={"is_positive": flag})
                for reading, flag in zip(group.readings, flags, strict=True)
            ],
        )

    def classify(self, readings: Sequence[NormalizedReading]) -> list[ClassificationResult]:
        return [self.classify_group(group) for group in group_readings(readings)]
