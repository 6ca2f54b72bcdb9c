from src.models.normalization import (
    CachedMapping,
    NormalizationDomain,
    NormalizationGroup,
    NormalizationProgress,
    NormalizationRecord,
    NormalizationResult,
    NormalizationSource,
    NormalizationStage,
)
from src.models.reading import NormalizedReading, RawReading
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

__all__ = [
    "RawReading",
    "NormalizedReading",
    "CachedMapping",
    "NormalizationDomain",
    "NormalizationGroup",
    "NormalizationProgress",
    "NormalizationRecord",
    "NormalizationResult",
    "NormalizationSource",
    "NormalizationStage",
    "ClassificationCategory",
    "ClassificationCounts",
    "ClassificationOutcome",
    "ClassificationResult",
    "DatasetSummary",
    "DatasetType",
    "JobSummary",
    "SummaryStats",
]
