# backend/courier/models/base_enum.py
"""
Safe enum helpers for SQLAlchemy.

SQLAlchemy's ``Enum`` type persists member NAMES by default ('DELIVERED'),
while the conditional UPDATE statements in the repositories compare against
member VALUES ('delivered'). Columns built with :func:`create_safe_enum`
always store values, so ORM reads and raw comparisons agree.

All Python enums for database storage should inherit from (str, Enum) and
define lowercase values explicitly.
"""

from enum import Enum
from typing import Sequence, Type

from sqlalchemy import Enum as SAEnum


def create_safe_enum(enum_class: Type[Enum], name: str) -> SAEnum:
    """
    Create a SQLAlchemy Enum that stores enum values (not names).

    A non-native enum (VARCHAR) is used so the same schema works on
    PostgreSQL and SQLite without creating database enum types.
    """
    return SAEnum(
        enum_class,
        name=name,
        native_enum=False,
        validate_strings=True,
        length=32,
        values_callable=_get_enum_values,
    )


def _get_enum_values(enum_class: Type[Enum]) -> Sequence[str]:
    return [member.value for member in enum_class]
