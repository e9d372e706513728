import asyncio
import os
import sys

# Add the project root to the Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from dotenv import load_dotenv

load_dotenv()

from telecare.core.config import settings
from telecare.core.db import Database
from telecare.core.logging import setup_logging
from telecare.modules.reminders.service import ReminderScanner

async def main():
    """
    Runs a single reminder sweep, for deployments that trigger it from cron
    instead of the in-process loop.
    """
    setup_logging()
    db = Database(settings.POSTGRES_DSN)
    await db.init()
    try:
        async with db.session() as session:
            results = await ReminderScanner(session).scan()
    finally:
        await db.close()

    print(f"Reminder sweep finished: {len(results)} candidate(s)")
    for c in results:
        print(f"  - {c.appointment_id} at {c.start_time.isoformat()} -> {c.recipient or '-'}: {c.outcome}")

if __name__ == "__main__":
    asyncio.run(main())
