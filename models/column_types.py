# models/column_types.py
from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests/local dev)
JSONType = JSON().with_variant(JSONB(), "postgresql")
