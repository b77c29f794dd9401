"""
Declarative base shared by the ORM models.

Constraint names follow one convention so the partial unique index and the
check constraints on the versioned table are stable across SQLite and Postgres.
"""

from __future__ import annotations

import importlib
import pkgutil
from typing import List

from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase

__all__ = ["Base", "import_all_models"]

MODELS_PACKAGE = "versioned_policy.models"

_NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=_NAMING_CONVENTION)


def import_all_models() -> List[str]:
    """Import every module of the models package so its tables land on Base.metadata."""
    package = importlib.import_module(MODELS_PACKAGE)
    modules = [info.name for info in pkgutil.iter_modules(package.__path__, MODELS_PACKAGE + ".")]
    for name in modules:
        importlib.import_module(name)
    return modules
