"""
create_tables.py — idempotent table creation script.
Run this before starting the API or the worker for the first time.
Safe to run multiple times (create_all skips tables that already exist).

Usage:
    python scripts/create_tables.py
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

# Ensure the project root is on the path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dish_ratings.config import get_settings
from dish_ratings.database import build_engine
from dish_ratings.models import Base  # noqa: F401 — triggers model registration


async def main() -> None:
    """Create restaurants, dishes, orders, order_items and reviews."""
    engine = build_engine(get_settings())

    print("Creating tables...")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    print("  ✓ All tables created")

    print("\nDone. Start the API with `uvicorn dish_ratings.main:app` "
          "and the worker with `python -m dish_ratings.worker`.")
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
