# votechain/storage.py
# In-memory storage for local development and tests, optionally persisted to a JSON file.
# Exposes the same coroutine interface as storage_mongo.MongoStorage.
import json
import logging
import os
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from votechain.errors import CandidateNotFound, DuplicateKey, DuplicateVote

logger = logging.getLogger(__name__)

TABLES = ("profiles", "polls", "candidates", "votes", "admin_requests")
_DATETIME_FIELDS = ("created_at", "updated_at", "end_time")


def new_id() -> str:
    return uuid.uuid4().hex


def _empty() -> Dict[str, Dict[str, Any]]:
    return {table: {} for table in TABLES}


def _encode(doc: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(doc)
    for field in _DATETIME_FIELDS:
        if isinstance(out.get(field), datetime):
            out[field] = out[field].isoformat()
    return out


def _decode(doc: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(doc)
    for field in _DATETIME_FIELDS:
        if isinstance(out.get(field), str):
            out[field] = datetime.fromisoformat(out[field])
    return out


class MemoryStorage:
    def __init__(self, path: str = "", transactional: bool = False):
        self.path = path
        self.supports_transactions = transactional
        self._data = self._read_db() if path else _empty()

    # --- Persistence ---

    def _read_db(self) -> Dict[str, Dict[str, Any]]:
        """
        Read the JSON db file.
        If the file is missing, empty or corrupted, start over with empty tables.
        """
        try:
            with open(self.path, "r") as f:
                raw = json.load(f)
        except (json.JSONDecodeError, FileNotFoundError):
            logger.warning(f"Resetting dummy DB at {self.path}")
            return _empty()
        data = _empty()
        for table in TABLES:
            data[table] = {key: _decode(doc) for key, doc in raw.get(table, {}).items()}
        return data

    def _write_db(self) -> None:
        if not self.path:
            return
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        raw = {table: {key: _encode(doc) for key, doc in rows.items()} for table, rows in self._data.items()}
        with open(self.path, "w") as f:
            json.dump(raw, f, indent=2)

    async def connect(self) -> None:
        logger.info(f"Using in-memory storage (path={self.path or 'none'})")

    async def close(self) -> None:
        self._write_db()

    def _insert(self, table: str, doc: Dict[str, Any]) -> Dict[str, Any]:
        row = dict(doc)
        row.setdefault("id", new_id())
        self._data[table][row["id"]] = row
        return dict(row)

    def _get(self, table: str, key: str) -> Optional[Dict[str, Any]]:
        row = self._data[table].get(key)
        return dict(row) if row is not None else None

    def _update(self, table: str, key: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        row = self._data[table].get(key)
        if row is None:
            return None
        row.update(fields)
        self._write_db()
        return dict(row)

    # --- Profiles ---

    async def get_profile(self, profile_id: str) -> Optional[Dict[str, Any]]:
        return self._get("profiles", profile_id)

    async def get_profile_by_wallet(self, wallet_address: str) -> Optional[Dict[str, Any]]:
        for row in self._data["profiles"].values():
            if row.get("wallet_address") == wallet_address:
                return dict(row)
        return None

    async def insert_profile(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        if any(p.get("wallet_address") == doc.get("wallet_address") for p in self._data["profiles"].values()):
            raise DuplicateKey(f"wallet {doc.get('wallet_address')} already has a profile")
        row = self._insert("profiles", doc)
        self._write_db()
        return row

    async def update_profile(self, profile_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self._update("profiles", profile_id, fields)

    # --- Elections (polls) ---

    async def insert_election(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        row = self._insert("polls", doc)
        self._write_db()
        return row

    async def get_election(self, election_id: str) -> Optional[Dict[str, Any]]:
        return self._get("polls", election_id)

    async def list_elections(self, is_election: Optional[bool] = None, creator: Optional[str] = None) -> List[Dict[str, Any]]:
        rows = [
            dict(row)
            for row in self._data["polls"].values()
            if (is_election is None or row.get("is_election") == is_election)
            and (creator is None or row.get("creator") == creator)
        ]
        rows.sort(key=lambda r: r["created_at"], reverse=True)
        return rows

    async def set_election_end_time(self, election_id: str, end_time: datetime) -> bool:
        return self._update("polls", election_id, {"end_time": end_time}) is not None

    async def delete_election(self, election_id: str) -> bool:
        if self._data["polls"].pop(election_id, None) is None:
            return False
        for table in ("candidates", "votes"):
            rows = self._data[table]
            for key in [k for k, row in rows.items() if row["election_id"] == election_id]:
                del rows[key]
        self._write_db()
        return True

    # --- Candidates ---

    async def insert_candidates(self, docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        rows = [self._insert("candidates", doc) for doc in docs]
        self._write_db()
        return rows

    async def get_candidate(self, candidate_id: str) -> Optional[Dict[str, Any]]:
        return self._get("candidates", candidate_id)

    async def list_candidates(self, election_id: str, order_by: str = "name") -> List[Dict[str, Any]]:
        rows = [dict(row) for row in self._data["candidates"].values() if row["election_id"] == election_id]
        rows.sort(key=lambda r: r["name"])
        if order_by == "votes":
            rows.sort(key=lambda r: r.get("votes_count", 0), reverse=True)
        return rows

    async def update_candidate(self, candidate_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self._update("candidates", candidate_id, fields)

    async def delete_candidate(self, candidate_id: str) -> bool:
        if self._data["candidates"].pop(candidate_id, None) is None:
            return False
        self._write_db()
        return True

    async def increment_candidate_votes(self, candidate_id: str) -> bool:
        row = self._data["candidates"].get(candidate_id)
        if row is None:
            return False
        row["votes_count"] = row.get("votes_count", 0) + 1
        self._write_db()
        return True

    async def set_candidate_votes(self, candidate_id: str, votes_count: int) -> bool:
        return self._update("candidates", candidate_id, {"votes_count": votes_count}) is not None

    # --- Votes ---

    async def get_vote_for_user(self, election_id: str, voter: str) -> Optional[Dict[str, Any]]:
        for row in self._data["votes"].values():
            if row["election_id"] == election_id and row["voter"] == voter:
                return dict(row)
        return None

    def _insert_vote(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        for row in self._data["votes"].values():
            if row["election_id"] == doc["election_id"] and row["voter"] == doc["voter"]:
                raise DuplicateVote(f"voter {doc['voter']} already voted in {doc['election_id']}")
        return self._insert("votes", doc)

    async def insert_vote(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        row = self._insert_vote(doc)
        self._write_db()
        return row

    async def cast_vote(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        """Insert the ballot and bump the tally as one step (transactional mode)."""
        if doc["candidate_id"] not in self._data["candidates"]:
            raise CandidateNotFound(doc["candidate_id"])
        row = self._insert_vote(doc)
        self._data["candidates"][doc["candidate_id"]]["votes_count"] += 1
        self._write_db()
        return row

    async def list_votes(self, election_id: str) -> List[Dict[str, Any]]:
        rows = [dict(row) for row in self._data["votes"].values() if row["election_id"] == election_id]
        rows.sort(key=lambda r: r["created_at"])
        return rows

    async def count_votes_by_candidate(self, election_id: str) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for row in self._data["votes"].values():
            if row["election_id"] == election_id:
                counts[row["candidate_id"]] = counts.get(row["candidate_id"], 0) + 1
        return counts

    async def count_votes_by_voter(self, voter: str) -> int:
        return sum(1 for row in self._data["votes"].values() if row["voter"] == voter)

    # --- Admin requests ---

    async def insert_admin_request(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        row = self._insert("admin_requests", doc)
        self._write_db()
        return row

    async def get_admin_request(self, request_id: str) -> Optional[Dict[str, Any]]:
        return self._get("admin_requests", request_id)

    async def find_admin_requests(self, user_id: Optional[str] = None, status: Optional[str] = None) -> List[Dict[str, Any]]:
        rows = [
            dict(row)
            for row in self._data["admin_requests"].values()
            if (user_id is None or row["user_id"] == user_id) and (status is None or row["status"] == status)
        ]
        rows.sort(key=lambda r: r["created_at"], reverse=True)
        return rows

    async def update_admin_request_status(self, request_id: str, status: str, updated_at: datetime) -> Optional[Dict[str, Any]]:
        row = self._data["admin_requests"].get(request_id)
        if row is None or row["status"] != "pending":
            return None
        return self._update("admin_requests", request_id, {"status": status, "updated_at": updated_at})


def build_storage():
    """Storage selected by STORAGE_BACKEND."""
    from votechain import config

    if config.STORAGE_BACKEND == "memory":
        return MemoryStorage(path=config.DUMMY_DB_PATH)
    if config.STORAGE_BACKEND == "mongo":
        from votechain.storage_mongo import MongoStorage
        return MongoStorage()
    raise ValueError(f"Unknown STORAGE_BACKEND {config.STORAGE_BACKEND!r}")
