"""
Initialize the link store.

Run this script once to set up the database, or again to repair it:
    python init_db.py
"""

import asyncio

from shortlinks.config import settings
from shortlinks.context import create_context
from shortlinks.logger import setup_logging


async def init_database():
    """Create tables, check storage integrity and report what is stored"""
    print("Creating database tables...")
    context = await create_context()
    print("Database tables created successfully!")

    try:
        stats = await context.service.get_storage_stats()
        storage_settings = await context.service.get_storage_settings()

        print("\n" + "="*50)
        print(f"Database: {settings.DATABASE_URL}")
        print(f"Links: {stats.total_urls} ({stats.active_urls} active, {stats.expired_urls} expired)")
        print(f"Clicks: {stats.total_clicks}")
        print(f"Default expiration: {storage_settings.default_expiration_days} days")
        print(f"Auto cleanup: {'on' if storage_settings.auto_cleanup else 'off'}")
        print("="*50)
    finally:
        await context.close()


if __name__ == "__main__":
    setup_logging(settings.LOG_LEVEL, settings.LOG_FILE)

    print("="*50)
    print("Short Links - Database Initialization")
    print("="*50)

    asyncio.run(init_database())

    print("\n✅ Database initialization complete!")
