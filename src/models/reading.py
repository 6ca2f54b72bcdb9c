from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

LEAD_POSITIVE_THRESHOLD = 1.0


class RawReading(BaseModel):
    """One XRF shot as mapped from the inspection export.

    Only ``component``, ``substrate`` and ``lead_content`` drive normalization
    and classification; the remaining fields are carried through untouched.
    """

    reading_id: str
    component: str
    substrate: str | None = None
    lead_content: float = Field(ge=0, allow_inf_nan=False)

    color: str = ""
    location: str = ""
    unit_number: str | None = None
    room_type: str | None = None
    room_number: str | None = None
    side: str | None = None
    condition: str | None = None
    timestamp: datetime | None = None
    raw_row: dict[str, Any] | None = None


class NormalizedReading(RawReading):
    normalized_component: str | None = None
    normalized_substrate: str | None = None
    # Set by the classifier with the threshold it applied; None until classified.
    is_positive: bool | None = None

    @classmethod
    def from_raw(
        cls,
        reading: RawReading,
        *,
        normalized_component: str | None = None,
        normalized_substrate: str | None = None,
    ) -> NormalizedReading:
        fields = reading.model_dump(exclude={"normalized_component", "normalized_substrate", "is_positive"})
        if isinstance(reading, NormalizedReading):
            normalized_component = normalized_component or reading.normalized_component
            normalized_substrate = normalized_substrate or reading.normalized_substrate
        return cls(
            **fields,
            normalized_component=normalized_component,
            normalized_substrate=normalized_substrate,
        )

    def group_component(self) -> str:
        return (self.normalized_component or self.component or "").strip()

    def group_substrate(self) -> str | None:
        value = (self.normalized_substrate or self.substrate or "").strip()
        return value or None
