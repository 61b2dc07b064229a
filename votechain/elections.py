import logging
from typing import Any, Dict, List, Optional

from votechain.config import MAX_CANDIDATES, MIN_CANDIDATES
from votechain.errors import BackendUnavailable, CandidateNotFound, PermissionDenied
from votechain.media import save_base64_image
from votechain.models.election_model import CandidateIn, CandidateUpdate, ElectionCreate, PollCreate
from votechain.voting import CLOSED, Clock, VoteService, as_utc, can_manage, election_status, utcnow

logger = logging.getLogger(__name__)

POLL_KINDS = ("all", "poll", "election")


def _candidate_doc(candidate: CandidateIn) -> Dict[str, Any]:
    return {
        "name": candidate.name,
        "position": candidate.position or None,
        "bio": candidate.bio or None,
        "wallet_address": candidate.wallet_address or None,
        "photo_url": candidate.photo_url or None,
        "verified": candidate.verified,
        "votes_count": 0,
    }


class ElectionManager:
    def __init__(self, storage, clock: Clock = utcnow):
        self.storage = storage
        self.clock = clock
        self.votes = VoteService(storage, clock)

    async def _create(self, question, description, end_time, creator, is_election, candidates: List[Dict[str, Any]]):
        now = self.clock()
        end_time = as_utc(end_time)
        if end_time <= now:
            raise ValueError("End time must be in the future")

        election = await self.storage.insert_election({
            "question": question,
            "description": description or None,
            "creator": creator,
            "created_at": now,
            "end_time": end_time,
            "is_election": is_election,
        })
        for doc in candidates:
            doc["election_id"] = election["id"]
        try:
            rows = await self.storage.insert_candidates(candidates)
        except BackendUnavailable:
            # No transaction spans both inserts; drop the election so no empty one is left behind
            logger.error(f"Failed to add candidates to {election['id']}; removing the election")
            await self.storage.delete_election(election["id"])
            raise
        logger.info(f"{'Election' if is_election else 'Poll'} {election['id']} created by {creator} with {len(rows)} options")
        return election, rows

    async def create_election(self, data: ElectionCreate, creator: Dict[str, Any]):
        if not (creator.get("is_admin") or creator.get("is_super_admin")):
            raise PermissionDenied("Only admins can create elections")
        return await self._create(
            data.question, data.description, data.end_time, creator["id"], True,
            [_candidate_doc(c) for c in data.candidates],
        )

    async def create_poll(self, data: PollCreate, creator: Dict[str, Any]):
        return await self._create(
            data.question, data.description, data.end_time, creator["id"], False,
            [_candidate_doc(CandidateIn(name=option)) for option in data.options],
        )

    async def list_polls(self, kind: str = "all", creator: Optional[str] = None) -> List[Dict[str, Any]]:
        if kind not in POLL_KINDS:
            raise ValueError(f"kind must be one of {', '.join(POLL_KINDS)}")
        is_election = None if kind == "all" else kind == "election"
        return await self.storage.list_elections(is_election=is_election, creator=creator)

    async def detail(self, election_id: str) -> Dict[str, Any]:
        election = await self.votes.get_election(election_id)
        candidates = await self.storage.list_candidates(election_id, order_by="name")
        return {"election": election, "candidates": candidates}

    async def delete_election(self, election_id: str, actor: Dict[str, Any]) -> None:
        election = await self.votes.get_election(election_id)
        if not can_manage(election, actor):
            raise PermissionDenied("Only the creator or an admin can delete this election")
        await self.storage.delete_election(election_id)
        logger.info(f"Election {election_id} deleted by {actor['id']}")

    # --- Candidates ---

    async def _managed_candidate(self, candidate_id: str, actor: Dict[str, Any]):
        candidate = await self.storage.get_candidate(candidate_id)
        if candidate is None:
            raise CandidateNotFound(candidate_id)
        election = await self.votes.get_election(candidate["election_id"])
        if not can_manage(election, actor):
            raise PermissionDenied("You don't have permission to manage candidates of this election")
        return election, candidate

    async def add_candidate(self, election_id: str, data: CandidateIn, actor: Dict[str, Any]) -> Dict[str, Any]:
        election = await self.votes.get_election(election_id)
        if not can_manage(election, actor):
            raise PermissionDenied("You don't have permission to manage candidates of this election")
        if election_status(election, self.clock()) == CLOSED:
            raise ValueError("Cannot add candidates to an election that has ended")
        existing = await self.storage.list_candidates(election_id)
        if len(existing) >= MAX_CANDIDATES:
            raise ValueError(f"Maximum {MAX_CANDIDATES} candidates allowed")
        if data.name in {c["name"] for c in existing}:
            raise ValueError("Candidate names must be unique")
        doc = _candidate_doc(data)
        doc["election_id"] = election_id
        (row,) = await self.storage.insert_candidates([doc])
        logger.info(f"Candidate {row['id']} added to {election_id}")
        return row

    async def update_candidate(self, candidate_id: str, data: CandidateUpdate, actor: Dict[str, Any]) -> Dict[str, Any]:
        _, candidate = await self._managed_candidate(candidate_id, actor)
        fields = data.model_dump(exclude_unset=True, exclude={"photo_base64"})
        if "verified" in fields and fields["verified"] is None:
            del fields["verified"]
        if "name" in fields:
            if fields["name"] is None or not fields["name"].strip():
                raise ValueError("Candidate name must not be blank")
            fields["name"] = fields["name"].strip()
            siblings = await self.storage.list_candidates(candidate["election_id"])
            if any(c["name"] == fields["name"] and c["id"] != candidate_id for c in siblings):
                raise ValueError("Candidate names must be unique")
        if data.photo_base64:
            _, fields["photo_url"] = save_base64_image(data.photo_base64, prefix=f"cand_{candidate_id}")
        if not fields:
            return candidate
        updated = await self.storage.update_candidate(candidate_id, fields)
        if updated is None:
            raise CandidateNotFound(candidate_id)
        return updated

    async def set_verified(self, candidate_id: str, verified: bool, actor: Dict[str, Any]) -> Dict[str, Any]:
        await self._managed_candidate(candidate_id, actor)
        updated = await self.storage.update_candidate(candidate_id, {"verified": verified})
        if updated is None:
            raise CandidateNotFound(candidate_id)
        logger.info(f"Candidate {candidate_id} {'verified' if verified else 'unverified'} by {actor['id']}")
        return updated

    async def delete_candidate(self, candidate_id: str, actor: Dict[str, Any]) -> None:
        election, candidate = await self._managed_candidate(candidate_id, actor)
        # Deleting a candidate with ballots would break sum(votes_count) == ballot count
        ballots = await self.storage.count_votes_by_candidate(election["id"])
        if candidate.get("votes_count", 0) > 0 or ballots.get(candidate_id, 0) > 0:
            raise ValueError("Cannot delete a candidate that has received votes")
        siblings = await self.storage.list_candidates(election["id"])
        if len(siblings) <= MIN_CANDIDATES:
            raise ValueError(f"Minimum {MIN_CANDIDATES} candidates required")
        await self.storage.delete_candidate(candidate_id)
        logger.info(f"Candidate {candidate_id} removed from {election['id']}")
