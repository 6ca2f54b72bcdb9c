from src.db.connection import Base, check_db_health, create_engine_from_settings, create_sessionmaker
from src.db.normalization_cache import NormalizationCache, NormalizationCacheEntry

__all__ = [
    "Base",
    "create_engine_from_settings",
    "create_sessionmaker",
    "check_db_health",
    "NormalizationCache",
    "NormalizationCacheEntry",
]
