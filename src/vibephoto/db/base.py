"""
Declarative base and primary key helper
"""
import uuid

from sqlalchemy.orm import declarative_base

Base = declarative_base()


def generate_id() -> str:
    """Opaque string primary key used by every table"""
    return uuid.uuid4().hex
