# storage_mongo.py
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from votechain.config import (
    ADMIN_REQUESTS_COLLECTION_NAME,
    CANDIDATES_COLLECTION_NAME,
    ELECTIONS_COLLECTION_NAME,
    MONGO_DB,
    MONGO_TRANSACTIONS,
    MONGO_URI,
    PROFILES_COLLECTION_NAME,
    VOTES_COLLECTION_NAME,
)
from votechain.database.connection import ensure_indexes, get_client, get_database
from votechain.errors import BackendUnavailable, CandidateNotFound, DuplicateKey, DuplicateVote
from votechain.storage import new_id

logger = logging.getLogger(__name__)


def _in(doc: Dict[str, Any]) -> Dict[str, Any]:
    row = dict(doc)
    row["_id"] = row.pop("id", None) or new_id()
    return row


def _out(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if doc is None:
        return None
    row = dict(doc)
    row["id"] = row.pop("_id")
    return row


@contextmanager
def _backend_errors(action: str):
    try:
        yield
    except PyMongoError as e:
        logger.error(f"Error {action}: {e}")
        raise BackendUnavailable(f"Error {action}") from e


class MongoStorage:
    def __init__(
        self, uri: str = MONGO_URI, db_name: str = MONGO_DB, transactional: bool = MONGO_TRANSACTIONS, client=None
    ):
        """Build the Motor client. Nothing touches the network until connect()."""
        self.uri = uri
        self.supports_transactions = transactional
        self.client = client if client is not None else get_client(uri)
        self.db = get_database(self.client, db_name)
        self.profiles = self.db[PROFILES_COLLECTION_NAME]
        self.polls = self.db[ELECTIONS_COLLECTION_NAME]
        self.candidates = self.db[CANDIDATES_COLLECTION_NAME]
        self.votes = self.db[VOTES_COLLECTION_NAME]
        self.admin_requests = self.db[ADMIN_REQUESTS_COLLECTION_NAME]

    async def connect(self) -> None:
        with _backend_errors("connecting to MongoDB"):
            await self.client.server_info()
            await ensure_indexes(self.db)
        logger.info(f"Connected to MongoDB: {self.db.name}")

    async def close(self) -> None:
        self.client.close()
        logger.info("MongoDB connection closed")

    # --- Profiles ---

    async def get_profile(self, profile_id: str) -> Optional[Dict[str, Any]]:
        with _backend_errors(f"fetching profile {profile_id}"):
            return _out(await self.profiles.find_one({"_id": profile_id}))

    async def get_profile_by_wallet(self, wallet_address: str) -> Optional[Dict[str, Any]]:
        with _backend_errors(f"fetching profile for wallet {wallet_address}"):
            return _out(await self.profiles.find_one({"wallet_address": wallet_address}))

    async def insert_profile(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        row = _in(doc)
        with _backend_errors("creating profile"):
            try:
                await self.profiles.insert_one(row)
            except DuplicateKeyError as e:
                raise DuplicateKey(f"wallet {doc.get('wallet_address')} already has a profile") from e
        return _out(row)

    async def update_profile(self, profile_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        with _backend_errors(f"updating profile {profile_id}"):
            return _out(await self.profiles.find_one_and_update(
                {"_id": profile_id}, {"$set": fields}, return_document=ReturnDocument.AFTER
            ))

    # --- Elections (polls) ---

    async def insert_election(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        row = _in(doc)
        with _backend_errors("creating election"):
            await self.polls.insert_one(row)
        return _out(row)

    async def get_election(self, election_id: str) -> Optional[Dict[str, Any]]:
        with _backend_errors(f"fetching election {election_id}"):
            return _out(await self.polls.find_one({"_id": election_id}))

    async def list_elections(self, is_election: Optional[bool] = None, creator: Optional[str] = None) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {}
        if is_election is not None:
            query["is_election"] = is_election
        if creator is not None:
            query["creator"] = creator
        with _backend_errors("listing elections"):
            cursor = self.polls.find(query).sort("created_at", DESCENDING)
            return [_out(doc) async for doc in cursor]

    async def set_election_end_time(self, election_id: str, end_time: datetime) -> bool:
        with _backend_errors(f"ending election {election_id}"):
            result = await self.polls.update_one({"_id": election_id}, {"$set": {"end_time": end_time}})
        return result.matched_count > 0

    async def delete_election(self, election_id: str) -> bool:
        with _backend_errors(f"deleting election {election_id}"):
            result = await self.polls.delete_one({"_id": election_id})
            if result.deleted_count == 0:
                return False
            await self.candidates.delete_many({"election_id": election_id})
            await self.votes.delete_many({"election_id": election_id})
        return True

    # --- Candidates ---

    async def insert_candidates(self, docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        rows = [_in(doc) for doc in docs]
        with _backend_errors("adding candidates"):
            await self.candidates.insert_many(rows)
        return [_out(row) for row in rows]

    async def get_candidate(self, candidate_id: str) -> Optional[Dict[str, Any]]:
        with _backend_errors(f"fetching candidate {candidate_id}"):
            return _out(await self.candidates.find_one({"_id": candidate_id}))

    async def list_candidates(self, election_id: str, order_by: str = "name") -> List[Dict[str, Any]]:
        if order_by == "votes":
            sort = [("votes_count", DESCENDING), ("name", ASCENDING)]
        else:
            sort = [("name", ASCENDING)]
        with _backend_errors(f"listing candidates of {election_id}"):
            cursor = self.candidates.find({"election_id": election_id}).sort(sort)
            return [_out(doc) async for doc in cursor]

    async def update_candidate(self, candidate_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        with _backend_errors(f"updating candidate {candidate_id}"):
            return _out(await self.candidates.find_one_and_update(
                {"_id": candidate_id}, {"$set": fields}, return_document=ReturnDocument.AFTER
            ))

    async def delete_candidate(self, candidate_id: str) -> bool:
        with _backend_errors(f"deleting candidate {candidate_id}"):
            result = await self.candidates.delete_one({"_id": candidate_id})
        return result.deleted_count > 0

    async def increment_candidate_votes(self, candidate_id: str) -> bool:
        # Server-side $inc; never read-modify-write the tally
        with _backend_errors(f"incrementing votes of {candidate_id}"):
            result = await self.candidates.update_one({"_id": candidate_id}, {"$inc": {"votes_count": 1}})
        return result.matched_count > 0

    async def set_candidate_votes(self, candidate_id: str, votes_count: int) -> bool:
        with _backend_errors(f"resetting votes of {candidate_id}"):
            result = await self.candidates.update_one({"_id": candidate_id}, {"$set": {"votes_count": votes_count}})
        return result.matched_count > 0

    # --- Votes ---

    async def get_vote_for_user(self, election_id: str, voter: str) -> Optional[Dict[str, Any]]:
        with _backend_errors(f"checking vote of {voter} in {election_id}"):
            return _out(await self.votes.find_one({"election_id": election_id, "voter": voter}))

    async def insert_vote(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        row = _in(doc)
        with _backend_errors("recording vote"):
            try:
                await self.votes.insert_one(row)
            except DuplicateKeyError as e:
                raise DuplicateVote(f"voter {doc['voter']} already voted in {doc['election_id']}") from e
        return _out(row)

    async def cast_vote(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        """
        Insert the ballot and $inc the tally in one transaction (replica set required).

        with_transaction retries on TransientTransactionError, so the loser of a
        concurrent insert on the same ballot key retries and hits DuplicateKeyError.
        """
        row = _in(doc)

        async def _insert_and_count(session):
            try:
                await self.votes.insert_one(row, session=session)
            except DuplicateKeyError as e:
                raise DuplicateVote(f"voter {doc['voter']} already voted in {doc['election_id']}") from e
            result = await self.candidates.update_one(
                {"_id": doc["candidate_id"]}, {"$inc": {"votes_count": 1}}, session=session
            )
            if result.matched_count == 0:
                raise CandidateNotFound(doc["candidate_id"])

        with _backend_errors("casting vote"):
            async with await self.client.start_session() as session:
                await session.with_transaction(_insert_and_count)
        return _out(row)

    async def list_votes(self, election_id: str) -> List[Dict[str, Any]]:
        with _backend_errors(f"listing votes of {election_id}"):
            cursor = self.votes.find({"election_id": election_id}).sort("created_at", ASCENDING)
            return [_out(doc) async for doc in cursor]

    async def count_votes_by_candidate(self, election_id: str) -> Dict[str, int]:
        pipeline = [
            {"$match": {"election_id": election_id}},
            {"$group": {"_id": "$candidate_id", "count": {"$sum": 1}}},
        ]
        with _backend_errors(f"counting votes of {election_id}"):
            return {doc["_id"]: doc["count"] async for doc in self.votes.aggregate(pipeline)}

    async def count_votes_by_voter(self, voter: str) -> int:
        with _backend_errors(f"counting votes by {voter}"):
            return await self.votes.count_documents({"voter": voter})

    # --- Admin requests ---

    async def insert_admin_request(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        row = _in(doc)
        with _backend_errors("creating admin request"):
            await self.admin_requests.insert_one(row)
        return _out(row)

    async def get_admin_request(self, request_id: str) -> Optional[Dict[str, Any]]:
        with _backend_errors(f"fetching admin request {request_id}"):
            return _out(await self.admin_requests.find_one({"_id": request_id}))

    async def find_admin_requests(self, user_id: Optional[str] = None, status: Optional[str] = None) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {}
        if user_id is not None:
            query["user_id"] = user_id
        if status is not None:
            query["status"] = status
        with _backend_errors("listing admin requests"):
            cursor = self.admin_requests.find(query).sort("created_at", DESCENDING)
            return [_out(doc) async for doc in cursor]

    async def update_admin_request_status(self, request_id: str, status: str, updated_at: datetime) -> Optional[Dict[str, Any]]:
        with _backend_errors(f"updating admin request {request_id}"):
            return _out(await self.admin_requests.find_one_and_update(
                {"_id": request_id, "status": "pending"},
                {"$set": {"status": status, "updated_at": updated_at}},
                return_document=ReturnDocument.AFTER,
            ))
