import uuid

import pytest
import pytest_asyncio
from mongomock_motor import AsyncMongoMockClient

from loan_channel.core.config import settings
from loan_channel.core.security import create_access_token
from loan_channel.database.connection import init_db
from loan_channel.database.models.target_model import Target
from loan_channel.database.models.user_model import Role
from loan_channel.services.directory_service import directory_service


@pytest_asyncio.fixture
async def db(monkeypatch):
    # Fresh in-memory database per test
    monkeypatch.setattr(settings, "MONGODB_DB_NAME", f"loan_channel_test_{uuid.uuid4().hex}")
    database = await init_db(client=AsyncMongoMockClient())
    yield database


class HierarchyFactory:
    """Builds users through the directory service with unique contact details."""

    def __init__(self):
        self._seq = 0

    def profile(self, label: str) -> dict:
        self._seq += 1
        return {
            "first_name": label.title(),
            "last_name": f"User{self._seq}",
            "email": f"{label.lower()}{self._seq}@example.com",
            "phone": f"9{self._seq:09d}",
            "region": "West",
        }

    async def admin(self):
        return await directory_service.create_admin(self.profile("admin"))

    async def member(self, role: Role, parent):
        return await directory_service.create_member(role, parent.id, self.profile(role.value))

    async def members(self, role: Role, parent, count: int):
        return [await self.member(role, parent) for _ in range(count)]


@pytest.fixture
def factory(db):
    return HierarchyFactory()


def auth_headers(user) -> dict:
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user.id)})}"}


async def target_value(user, month: int, year: int):
    target = await Target.find_one({"assigned_to": user.id, "month": month, "year": year})
    return target.target_value if target else None
