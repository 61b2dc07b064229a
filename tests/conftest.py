import asyncio
import os
import tempfile
from datetime import datetime, timedelta, timezone

from cryptography.fernet import Fernet

# Settings are read at import time; point them at throwaway locations first
_TMP = tempfile.mkdtemp(prefix="votechain-tests-")
os.environ["STORAGE_BACKEND"] = "memory"
os.environ["UPLOAD_DIR"] = os.path.join(_TMP, "uploads")
os.environ["FACE_ENCRYPTION_KEY"] = Fernet.generate_key().decode()
os.environ["SUPER_ADMIN_ADDRESS"] = "0x742d35Cc6634C0532925a3b844Bc454e4438f44e"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from votechain.deps import get_clock  # noqa: E402
from votechain.main import create_app  # noqa: E402
from votechain.security import create_access_token  # noqa: E402
from votechain.storage import MemoryStorage  # noqa: E402

SUPER_ADMIN = "0x742d35Cc6634C0532925a3b844Bc454e4438f44e"
NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def run(coro):
    return asyncio.run(coro)


class FakeClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def client(storage, clock):
    app = create_app(storage=storage)
    app.dependency_overrides[get_clock] = lambda: clock
    with TestClient(app) as c:
        yield c


def seed_session(storage, wallet_address):
    """Give wallet_address a profile and a live session directly in storage. Returns the bearer token."""

    async def _seed():
        profile = await storage.get_profile_by_wallet(wallet_address)
        if profile is None:
            profile = await storage.insert_profile({
                "wallet_address": wallet_address,
                "is_admin": False,
                "is_super_admin": False,
                "college_email": None,
                "college_verified": False,
                "session_id": None,
                "created_at": NOW,
                "updated_at": NOW,
            })
        await storage.update_profile(profile["id"], {"session_id": "seeded-session"})
        return create_access_token({"sub": profile["id"], "sid": "seeded-session", "wallet": wallet_address})

    return run(_seed())


def connect(client, wallet_address=None):
    """Connect a fresh wallet, or reconnect wallet_address through a seeded session."""
    if wallet_address:
        token = seed_session(client.app.state.storage, wallet_address)
        resp = client.post(
            "/auth/connect",
            json={"wallet_address": wallet_address},
            headers={"Authorization": f"Bearer {token}"},
        )
    else:
        resp = client.post("/auth/connect")
    assert resp.status_code == 200, resp.text
    data = resp.json()
    return {"Authorization": f"Bearer {data['access_token']}"}, data["profile"]


def seed_election(storage, names=("Alice", "Bob"), end_time=None, votes=None, creator="creator-1", is_election=True):
    """Insert an election and its candidates directly. Returns (election, {name: candidate})."""
    end_time = end_time or NOW + timedelta(days=1)
    votes = votes or {}

    async def _seed():
        election = await storage.insert_election({
            "question": "Student Council President",
            "description": None,
            "creator": creator,
            "created_at": NOW - timedelta(days=1),
            "end_time": end_time,
            "is_election": is_election,
        })
        rows = await storage.insert_candidates([
            {
                "election_id": election["id"],
                "name": name,
                "position": None,
                "bio": None,
                "wallet_address": None,
                "photo_url": None,
                "verified": False,
                "votes_count": votes.get(name, 0),
            }
            for name in names
        ])
        return election, {row["name"]: row for row in rows}

    return run(_seed())
