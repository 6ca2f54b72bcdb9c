from __future__ import annotations

from collections.abc import Callable
from enum import StrEnum

from pydantic import BaseModel, Field, field_validator


class NormalizationDomain(StrEnum):
    COMPONENT = "component"
    SUBSTRATE = "substrate"


class NormalizationSource(StrEnum):
    CACHE = "CACHE"
    AI = "AI"
    FALLBACK = "FALLBACK"
    MANUAL = "MANUAL"


class NormalizationStage(StrEnum):
    CHECKING_CACHE = "checking-cache"
    CALLING_AI = "calling-ai"
    SAVING_CACHE = "saving-cache"
    COMPLETE = "complete"


class NormalizationGroup(BaseModel):
    canonical: str
    variants: list[str] = Field(default_factory=list)
    confidence: float = Field(default=0.9, ge=0.0, le=1.0)


class NormalizationResult(BaseModel):
    normalizations: list[NormalizationGroup] = Field(default_factory=list)


class NormalizationRecord(BaseModel):
    original_name: str = Field(min_length=1)
    normalized_name: str
    confidence: float = Field(ge=0.0, le=1.0)
    source: NormalizationSource

    @field_validator("original_name")
    @classmethod
    def validate_original_name(cls, value: str) -> str:
        cleaned = value.strip().lower()
        if not cleaned:
            raise ValueError("original_name must not be blank")
        return cleaned


class CachedMapping(BaseModel):
    normalized_name: str
    confidence: float
    source: NormalizationSource = NormalizationSource.AI
    usage_count: int = 0


class NormalizationProgress(BaseModel):
    stage: NormalizationStage
    processed: int
    total: int
    message: str


ProgressCallback = Callable[[NormalizationProgress], None]
