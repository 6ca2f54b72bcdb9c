"""Error kinds raised by the grouping client and the normalization cache.

Every error carries a ``kind`` tag so callers that deliberately degrade (the
name normalizer turns any grouping failure into fallback records) can still
log what actually went wrong.
"""

from __future__ import annotations


class GroupingClientError(Exception):
    kind = "grouping"


class ConfigurationError(GroupingClientError):
    kind = "configuration"


class TransientAPIError(GroupingClientError):
    kind = "transient"

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PermanentAPIError(GroupingClientError):
    kind = "permanent"

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ParseError(GroupingClientError):
    kind = "parse"


class NormalizationCacheError(Exception):
    kind = "cache"


class CacheLookupError(NormalizationCacheError):
    kind = "cache_lookup"


class CachePersistError(NormalizationCacheError):
    kind = "cache_persist"


class MalformedReadingError(ValueError):
    kind = "malformed_reading"
