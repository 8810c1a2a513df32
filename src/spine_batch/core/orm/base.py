"""Declarative base for spine-batch ORM models.

Uses SQLAlchemy 2.0 ``DeclarativeBase`` with a ``type_annotation_map``
that maps Python built-in types to portable SA column types.
"""

from __future__ import annotations

from sqlalchemy import JSON, Boolean, Float, Integer, Text
from sqlalchemy.orm import DeclarativeBase


class BatchBase(DeclarativeBase):
    """Shared declarative base for every spine-batch table.

    * ``str``   → ``Text``
    * ``int``   → ``Integer``
    * ``float`` → ``Float``   (epoch seconds)
    * ``bool``  → ``Boolean``
    * ``dict`` / ``list`` → ``JSON``
    """

    type_annotation_map = {
        str: Text,
        int: Integer,
        float: Float,
        bool: Boolean,
        dict: JSON,
        list: JSON,
    }
