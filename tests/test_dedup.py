from pathlib import Path
import sys

import pytest
from sqlalchemy import func, select

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from database.models import Customer
from processor.dedup import bulk_insert_ignore, insert_ignore
from processor.errors import ConfigError


def test_insert_ignore_compiles_on_conflict_for_supported_dialects():
    from sqlalchemy.dialects import postgresql, sqlite

    table = Customer.__table__
    assert "ON CONFLICT DO NOTHING" in str(insert_ignore(table, "sqlite").compile(dialect=sqlite.dialect()))
    assert "ON CONFLICT DO NOTHING" in str(
        insert_ignore(table, "postgresql").compile(dialect=postgresql.dialect())
    )


def test_insert_ignore_rejects_other_dialects():
    with pytest.raises(ConfigError):
        insert_ignore(Customer.__table__, "mysql")


@pytest.mark.asyncio
async def test_bulk_insert_ignore_skips_existing_keys_across_chunks(db):
    rows = [{"customer_id": f"U{i % 3}", "gender": "F", "age": "20-29", "total_watch_time": 1.0} for i in range(7)]

    async with db.session() as session:
        submitted = await bulk_insert_ignore(session, Customer.__table__, rows, db.dialect, chunk_size=2)
        await session.commit()
        count = (await session.execute(select(func.count(Customer.id)))).scalar_one()

    assert submitted == 7
    assert count == 3
