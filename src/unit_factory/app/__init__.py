"""Unit factory application."""

from .main import UnitFactory, build_supabase_dependencies, create_factory
from .settings import FactorySettings

__all__ = [
    "FactorySettings",
    "UnitFactory",
    "build_supabase_dependencies",
    "create_factory",
]
