"""Global database backend instance."""

from functools import lru_cache

from .backends import DatabaseBackend, create_backend


@lru_cache
def get_database() -> DatabaseBackend:
    """Get cached database backend from settings.

    Returns a singleton DatabaseBackend configured from the
    ``database_url`` setting.
    """
    from automation_engine.config import get_settings

    return create_backend(get_settings().database_url)


def reset_database() -> None:
    """Reset cached database connection. Useful for testing."""
    get_database.cache_clear()
