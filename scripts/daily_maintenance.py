"""
Daily sweep: mark past-due installments overdue and expire stale UPI requests.
Run: python -m scripts.daily_maintenance (from the project root, e.g. from cron).
"""
import asyncio
import os
import sys

# Add parent so we can import from the project root
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import AsyncSessionLocal, init_db
from services.collections import expire_stale_collections
from services.schedule import mark_overdue


async def run():
    await init_db()
    async with AsyncSessionLocal() as session:
        overdue = await mark_overdue(session)
        expired = await expire_stale_collections(session)
        await session.commit()
    print(f"Marked {overdue} installment(s) overdue, expired {expired} collection request(s).")


if __name__ == "__main__":
    asyncio.run(run())
