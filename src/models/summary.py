from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field

from src.models.reading import NormalizedReading

# Readings needed before a component is judged by statistical sampling.
STATISTICAL_SAMPLE_SIZE = 40
# Percent of positive shots above which an averaged component is positive.
POSITIVE_PERCENT_THRESHOLD = 2.5


class ClassificationCategory(StrEnum):
    AVERAGE = "AVERAGE"
    UNIFORM = "UNIFORM"
    NON_UNIFORM = "NON_UNIFORM"


class ClassificationOutcome(StrEnum):
    POSITIVE = "POSITIVE"
    NEGATIVE = "NEGATIVE"


class DatasetType(StrEnum):
    COMMON_AREA = "COMMON_AREA"
    UNITS = "UNITS"


class ClassificationResult(BaseModel):
    component: str
    substrate: str | None = None
    category: ClassificationCategory
    result: ClassificationOutcome | None = None
    total_count: int = Field(ge=1)
    positive_count: int = Field(ge=0)
    negative_count: int = Field(ge=0)
    percent_positive: float
    readings: list[NormalizedReading] = Field(default_factory=list)

    @property
    def label(self) -> str:
        return f"{self.component} ({self.substrate})" if self.substrate else self.component

    @property
    def reading_ids(self) -> list[str]:
        return [reading.reading_id for reading in self.readings]


class DatasetSummary(BaseModel):
    dataset_type: DatasetType
    total_readings: int = 0
    total_positive: int = 0
    total_negative: int = 0
    unique_components: int = 0
    average_components: list[ClassificationResult] = Field(default_factory=list)
    uniform_components: list[ClassificationResult] = Field(default_factory=list)
    non_uniform_components: list[ClassificationResult] = Field(default_factory=list)


class JobSummary(BaseModel):
    job_number: str
    processed_date: datetime
    source_file_name: str
    ai_normalizations_applied: int = 0
    common_area_summary: DatasetSummary
    units_summary: DatasetSummary


class SummaryStats(BaseModel):
    total_readings: int
    total_positive: int
    total_negative: int
    positive_percent: float
    unique_components: int
    average_component_count: int
    uniform_component_count: int
    non_uniform_component_count: int


class ClassificationCounts(BaseModel):
    average_positive: int
    average_negative: int
    uniform_positive: int
    uniform_negative: int
    non_uniform_count: int
