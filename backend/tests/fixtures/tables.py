"""Tables acted on by retention strategies and partition exports in tests.

They live outside ``Base.metadata`` like the real application tables the
engine governs.
"""

from sqlalchemy import Column, DateTime, Integer, MetaData, Table, Text

target_metadata = MetaData()

unit_records = Table(
    "unit_records",
    target_metadata,
    Column("id", Integer, primary_key=True),
    Column("label", Text, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("deleted_at", DateTime(timezone=True), nullable=True),
)

events = Table(
    "events",
    target_metadata,
    Column("id", Integer, primary_key=True),
    Column("payload", Text, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
)
