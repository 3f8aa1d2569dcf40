"""
Database seeding script for sample tablets.

Registers two vehicle groups for local development: MAT-001 with both
slots filled and MAT-002 with a single tablet.
Run this script after database is set up but before first use.
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from telemetry_backend.app.db.session import AsyncSessionLocal, engine, Base
from telemetry_backend.app.models.registered_device import RegisteredDevice
from sqlalchemy import select

SAMPLE_DEVICES = [
    ("TABLET-001A", "MAT-001", "CG-001", 1),
    ("TABLET-001B", "MAT-001", "CG-001", 2),
    ("TABLET-002A", "MAT-002", "CG-002", 1),
]


async def seed_devices():
    """
    Seed the device registry with sample tablets.

    Existing device IDs are left as they are.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        print("🌱 Starting device seeding...")

        created = 0
        for device_id, material_id, car_group_id, slot_number in SAMPLE_DEVICES:
            result = await db.execute(
                select(RegisteredDevice).where(RegisteredDevice.device_id == device_id)
            )
            if result.scalar_one_or_none():
                print(f"ℹ️  {device_id} already registered, skipping")
                continue

            db.add(RegisteredDevice(
                device_id=device_id,
                material_id=material_id,
                car_group_id=car_group_id,
                slot_number=slot_number,
                is_active=True
            ))
            created += 1
            print(f"✅ Registered {device_id} -> {material_id} slot {slot_number}")

        await db.commit()

        print(f"\n🎉 Device seeding completed, {created} new device(s)")


if __name__ == "__main__":
    asyncio.run(seed_devices())
