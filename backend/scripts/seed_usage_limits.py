"""Seed the built-in plans (basic, premium, enterprise) into usage_limits.

Plans that already exist (by active name) are left untouched, so the script
can be re-run safely.

Run from the backend directory:
    python -m scripts.seed_usage_limits
"""

import asyncio

from entitlements.config import get_settings
from entitlements.database import create_schema
from entitlements.services.container import build_container


async def seed() -> None:
    settings = get_settings()
    services = build_container(settings)
    try:
        if settings.is_sqlite:
            await create_schema(services.engine)

        print("🌱 Seeding default usage limits...")
        created = await services.usage_limits.initialize_default_usage_limits()
        stats = await services.usage_limits.get_usage_limits_stats()
    finally:
        await services.dispose()

    if created:
        print(f"✅ Created plans: {', '.join(created)}")
    else:
        print("⚠️  All default plans already exist — nothing to do.")
    print(f"   Active plans:   {stats.active_usage_limits}")
    print(f"   Inactive plans: {stats.inactive_usage_limits}")


if __name__ == "__main__":
    asyncio.run(seed())
