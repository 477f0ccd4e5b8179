"""Database-agnostic type definitions for SQLAlchemy models.

Every table in this service must run on PostgreSQL in production and on
SQLite in the test suite, so models import their column types from here.
"""
from sqlalchemy import JSON, Numeric, Uuid

# JSON instead of JSONB: JSONB is PostgreSQL-specific
JSONType = JSON

# Native UUID on PostgreSQL, CHAR(32) on SQLite
UUIDType = Uuid

# Money and quantity columns
MoneyType = Numeric(14, 2)
RateType = Numeric(5, 2)
QuantityType = Numeric(12, 2)
