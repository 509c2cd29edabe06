#!/usr/bin/env python3
"""Seed a database with synthetic events for demos and load testing.

Usage:
    python scripts/seed_events.py --count 100000 --days 14

Uses ANALYTICS_DATABASE_URL (or the default from settings) unless
--database-url is given. Tables are created if missing.
"""

import argparse
import asyncio
import random
import uuid
from datetime import timedelta

from sqlalchemy.ext.asyncio import create_async_engine

from analytics.core.config import get_settings
from analytics.core.database import init_db
from analytics.models.base import utcnow
from analytics.models.event import Event

EVENT_TYPES = ["page_view", "click", "signup", "login", "purchase", "logout"]
SOURCES = ["web", "ios", "android", "api"]

# Deterministic owners so repeated runs land on the same accounts
OWNER_IDS = [uuid.UUID(f"00000000-0000-0000-0000-0000000000{i:02d}") for i in range(1, 11)]

BATCH_SIZE = 1000


def synthetic_events(count: int, days: int, rng: random.Random) -> list[Event]:
    now = utcnow()
    span = timedelta(days=days).total_seconds()
    # Skewed so aggregations by type have a clear ordering.
    weights = [50, 25, 8, 10, 5, 2]
    events = [
        Event(
            owner_id=rng.choice(OWNER_IDS),
            type=rng.choices(EVENT_TYPES, weights=weights)[0],
            source=rng.choice(SOURCES),
            payload={"seq": n, "value": rng.randint(1, 500)},
            occurred_at=now - timedelta(seconds=rng.uniform(0, span)),
        )
        for n in range(count)
    ]
    # Ids follow ingestion order, which is roughly time order in production.
    events.sort(key=lambda event: event.occurred_at)
    return events


async def seed(database_url: str, count: int, days: int, seed_value: int):
    engine = create_async_engine(database_url)
    await init_db(engine)

    rng = random.Random(seed_value)
    events = synthetic_events(count, days, rng)

    async with engine.begin() as conn:
        for offset in range(0, len(events), BATCH_SIZE):
            batch = events[offset:offset + BATCH_SIZE]
            await conn.execute(
                Event.__table__.insert(),
                [event.model_dump(exclude={"id"}) for event in batch],
            )
            print(f"Inserted {offset + len(batch)}/{count} events")

    await engine.dispose()
    print(f"Seeded {count} events over the last {days} days for {len(OWNER_IDS)} owners.")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Insert synthetic analytics events.")
    parser.add_argument("--count", type=int, default=10_000, help="Number of events to insert")
    parser.add_argument("--days", type=int, default=7, help="Spread events over this many past days")
    parser.add_argument("--seed", type=int, default=42, help="Random seed for reproducible data")
    parser.add_argument("--database-url", default=None, help="Override ANALYTICS_DATABASE_URL")

    args = parser.parse_args()
    url = args.database_url or get_settings().database_url

    asyncio.run(seed(url, args.count, args.days, args.seed))
