"""
FastAPI Dependencies
===================

Dependencies for injecting the lending engine into API endpoints.
"""

from functools import lru_cache
from typing import Optional

from ..domain.services import LendingEngine
from ..infrastructure.config import get_config


# Global service instance
_lending_engine: Optional[LendingEngine] = None


@lru_cache()
def get_lending_engine() -> LendingEngine:
    """Get the shared LendingEngine instance"""
    global _lending_engine

    if _lending_engine is None:
        _lending_engine = LendingEngine.from_config(get_config())

    return _lending_engine


def reset_dependencies():
    """Reset dependencies (for testing)"""
    global _lending_engine

    if _lending_engine is not None:
        _lending_engine.store.dispose()
    _lending_engine = None

    get_lending_engine.cache_clear()
