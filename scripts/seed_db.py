"""
Database Seed Script

Creates the tables and fills the lookup tables (intros and saying types)
so the create form has something to offer on a fresh database.

Usage:
    python scripts/seed_db.py

Rows are only inserted into empty tables, so running the script twice
does nothing the second time.
"""

import asyncio
import os
import sys

# Add parent directory to Python path so we can import the package
# This allows running the script from any directory
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import func, select

from twokinds.database import AsyncSessionLocal, create_tables
from twokinds.models import Intro, SayingType


INTROS = [
    "There are two kinds of people in the world...",
    "In life, you'll meet two types of people...",
    "People can be divided into two categories...",
    "The world has exactly two types of people...",
    "Humanity consists of two distinct groups...",
]

TYPES = ["people", "drivers", "cooks", "travelers", "coworkers"]


async def _seed_table(session, model, rows) -> int:
    count = await session.scalar(select(func.count()).select_from(model))
    if count:
        print(f"{model.__tablename__}: {count} rows already present, skipping")
        return 0
    session.add_all(rows)
    return len(rows)


async def seed():
    await create_tables()

    async with AsyncSessionLocal() as session:
        added = await _seed_table(session, Intro, [Intro(intro_text=text) for text in INTROS])
        added += await _seed_table(session, SayingType, [SayingType(name=name) for name in TYPES])
        await session.commit()

    print(f"Seeded {added} rows")


if __name__ == "__main__":
    asyncio.run(seed())
