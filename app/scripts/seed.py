# app/scripts/seed.py
import asyncio
import os
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from app.models.user_models import User
from app.models.service_models import Service
from app.core.db import AsyncSessionLocal, init_models
from app.core.security import hash_password

DEFAULT_SERVICES = [
    {
        "title": "Criminal Record Check",
        "price": Decimal("500.00"),
        "required_documents": [
            {"document_id": "id_card", "document_name": "National ID card", "required": True,
             "file_types": ["pdf", "jpg", "png"], "max_size": 5 * 1024 * 1024},
        ],
    },
    {
        "title": "Education Verification",
        "price": Decimal("300.00"),
        "required_documents": [
            {"document_id": "degree", "document_name": "Degree certificate", "required": True,
             "file_types": ["pdf"], "max_size": 10 * 1024 * 1024},
        ],
    },
    {"title": "Employment History Check", "price": Decimal("400.00"), "required_documents": []},
]


async def seed_defaults(session: AsyncSession, username: str, password: str) -> dict:
    """Create the admin account and the service catalog if they are missing."""
    created = {"admin": False, "services": 0}

    existing = await session.execute(select(User).where(User.username == username))
    if not existing.scalars().first():
        session.add(User(username=username, password_hash=hash_password(password), role="admin", is_active=True))
        created["admin"] = True

    titles = set((await session.execute(select(Service.title))).scalars().all())
    for service in DEFAULT_SERVICES:
        if service["title"] not in titles:
            session.add(Service(**service))
            created["services"] += 1

    await session.commit()
    return created


async def main():
    await init_models()
    async with AsyncSessionLocal() as session:
        created = await seed_defaults(
            session,
            os.getenv("ADMIN_USERNAME", "admin"),
            os.getenv("ADMIN_PASSWORD", "admin123"),
        )
    print(f"Admin created: {created['admin']}, services created: {created['services']}")


if __name__ == "__main__":
    asyncio.run(main())
