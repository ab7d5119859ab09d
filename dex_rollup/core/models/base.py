"""Declarative base shared by the rollup tables.

Entities (tokens, pairs), hourly volume and price snapshots, the
transaction log and indexer progress all hang off one MetaData, whose
naming convention yields the same constraint names the Alembic migration
declares by hand (``pk_pairs``, ``fk_pairs_token0_tokens`` ...).
"""

from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase

NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=NAMING_CONVENTION)
