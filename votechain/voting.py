"""
Vote flow: election queries, vote-state resolution, ballot submission, results
and the open/closed lifecycle gate.

The unique (election_id, voter) key in storage is the source of truth for
double-vote prevention. The vote-state pre-check in BallotSession.confirm()
only gives earlier feedback and can race with a concurrent submission.
"""
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from votechain.errors import (
    BackendUnavailable,
    CandidateNotFound,
    DuplicateVote,
    ElectionAlreadyClosed,
    ElectionNotFound,
    PermissionDenied,
    RejectReason,
    SubmissionInProgress,
)
from votechain.models.vote_model import ElectionResults, SubmissionResult, TallyCorrection, VoteState
from votechain.results import compute_results

logger = logging.getLogger(__name__)

OPEN = "open"
CLOSED = "closed"
CANDIDATE_ORDERINGS = ("name", "votes")

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def election_status(election: Dict[str, Any], now: datetime) -> str:
    # Recomputed on every call; there is no stored status field
    return OPEN if as_utc(now) <= as_utc(election["end_time"]) else CLOSED


def time_remaining(end_time: datetime, now: datetime) -> str:
    seconds = int((as_utc(end_time) - as_utc(now)).total_seconds())
    if seconds <= 0:
        return "Ended"
    days, rest = divmod(seconds, 86400)
    hours, rest = divmod(rest, 3600)
    minutes = rest // 60
    if days > 0:
        return f"{days}d {hours}h remaining"
    if hours > 0:
        return f"{hours}h {minutes}m remaining"
    return f"{minutes}m remaining"


def can_manage(election: Dict[str, Any], profile: Optional[Dict[str, Any]]) -> bool:
    if not profile:
        return False
    return bool(profile.get("is_admin") or profile.get("is_super_admin") or election.get("creator") == profile["id"])


class BallotState(str, Enum):
    IDLE = "idle"
    SELECTING = "selecting"
    SUBMITTING = "submitting"
    RECORDED = "recorded"
    REJECTED = "rejected"


class BallotSession:
    """
    One voter's attempt at voting in one election.

    idle -> selecting -> submitting -> recorded | rejected. Both end states are
    final for the attempt; reset() goes back to idle for a manual retry.
    """

    def __init__(self, service: "VoteService", election_id: str, voter_id: Optional[str]):
        self.service = service
        self.election_id = election_id
        self.voter_id = voter_id
        self.candidate_id: Optional[str] = None
        self.state = BallotState.IDLE
        self.result: Optional[SubmissionResult] = None

    def select(self, candidate_id: str) -> None:
        if self.state not in (BallotState.IDLE, BallotState.SELECTING):
            raise RuntimeError(f"cannot change selection while {self.state.value}")
        self.candidate_id = candidate_id
        self.state = BallotState.SELECTING

    async def confirm(self) -> SubmissionResult:
        if self.state == BallotState.SUBMITTING:
            raise SubmissionInProgress(f"ballot for {self.election_id} is already being submitted")
        if self.state in (BallotState.RECORDED, BallotState.REJECTED):
            raise RuntimeError("ballot session is finished; call reset() before retrying")

        self.state = BallotState.SUBMITTING
        try:
            result = await self.service._submit(self.voter_id, self.election_id, self.candidate_id)
        except Exception:
            self.state = BallotState.REJECTED
            raise
        self.result = result
        self.state = BallotState.RECORDED if result.recorded else BallotState.REJECTED
        return result

    def reset(self) -> None:
        if self.state == BallotState.SUBMITTING:
            raise SubmissionInProgress(f"ballot for {self.election_id} is already being submitted")
        self.candidate_id = None
        self.result = None
        self.state = BallotState.IDLE


def _rejected(reason: RejectReason, **kwargs) -> SubmissionResult:
    return SubmissionResult(recorded=False, reason=reason, **kwargs)


class VoteService:
    def __init__(self, storage, clock: Clock = utcnow):
        self.storage = storage
        self.clock = clock

    # --- Query layer ---

    async def get_election(self, election_id: str) -> Dict[str, Any]:
        election = await self.storage.get_election(election_id)
        if election is None:
            raise ElectionNotFound(election_id)
        return election

    async def list_candidates(self, election_id: str, order_by: str = "name") -> List[Dict[str, Any]]:
        if order_by not in CANDIDATE_ORDERINGS:
            raise ValueError(f"order_by must be one of {', '.join(CANDIDATE_ORDERINGS)}")
        return await self.storage.list_candidates(election_id, order_by=order_by)

    async def status(self, election_id: str) -> str:
        return election_status(await self.get_election(election_id), self.clock())

    # --- Vote-state resolver ---

    async def resolve_vote_state(self, election_id: str, voter_id: Optional[str]) -> VoteState:
        if not voter_id:
            return VoteState()
        vote = await self.storage.get_vote_for_user(election_id, voter_id)
        if vote is None:
            return VoteState()
        return VoteState(voted=True, candidate_id=vote["candidate_id"])

    # --- Submission ---

    def ballot(self, election_id: str, voter_id: Optional[str]) -> BallotSession:
        return BallotSession(self, election_id, voter_id)

    async def submit_vote(self, voter_id: Optional[str], election_id: str, candidate_id: Optional[str]) -> SubmissionResult:
        session = self.ballot(election_id, voter_id)
        if candidate_id:
            session.select(candidate_id)
        return await session.confirm()

    async def _submit(self, voter_id: Optional[str], election_id: str, candidate_id: Optional[str]) -> SubmissionResult:
        result = await self._check_and_record(voter_id, election_id, candidate_id)
        if result.recorded:
            logger.info(f"Vote recorded: election={election_id} voter={voter_id} candidate={candidate_id}")
        elif result.reason == RejectReason.TALLY_UPDATE_FAILED:
            logger.error(
                f"Vote {result.vote_id} recorded but tally of candidate {candidate_id} not updated "
                f"(election={election_id}); reconcile tallies"
            )
        else:
            logger.warning(f"Vote rejected: election={election_id} voter={voter_id} reason={result.reason.value}")
        return result

    async def _check_and_record(self, voter_id, election_id, candidate_id) -> SubmissionResult:
        if not voter_id:
            return _rejected(RejectReason.NOT_AUTHENTICATED)
        if not candidate_id:
            return _rejected(RejectReason.NO_SELECTION)

        now = self.clock()
        try:
            election = await self.storage.get_election(election_id)
            if election is None:
                return _rejected(RejectReason.ELECTION_NOT_FOUND)
            if election_status(election, now) == CLOSED:
                return _rejected(RejectReason.ELECTION_CLOSED)
            candidate = await self.storage.get_candidate(candidate_id)
            if candidate is None or candidate["election_id"] != election_id:
                return _rejected(RejectReason.UNKNOWN_CANDIDATE)
            if (await self.resolve_vote_state(election_id, voter_id)).voted:
                return _rejected(RejectReason.ALREADY_VOTED)
        except BackendUnavailable:
            return _rejected(RejectReason.BACKEND_UNAVAILABLE)

        ballot = {"election_id": election_id, "voter": voter_id, "candidate_id": candidate_id, "created_at": now}

        if self.storage.supports_transactions:
            try:
                vote = await self.storage.cast_vote(ballot)
            except DuplicateVote:
                return _rejected(RejectReason.ALREADY_VOTED)
            except CandidateNotFound:
                return _rejected(RejectReason.UNKNOWN_CANDIDATE)
            except BackendUnavailable:
                return _rejected(RejectReason.BACKEND_UNAVAILABLE)
            return SubmissionResult(recorded=True, ballot_recorded=True, vote_id=vote["id"])

        # Sequential fallback: insert, then $inc. A failure between the two leaves
        # the tally one short until reconcile_tallies runs.
        try:
            vote = await self.storage.insert_vote(ballot)
        except DuplicateVote:
            return _rejected(RejectReason.ALREADY_VOTED)
        except BackendUnavailable:
            return _rejected(RejectReason.BACKEND_UNAVAILABLE)

        try:
            incremented = await self.storage.increment_candidate_votes(candidate_id)
        except BackendUnavailable:
            incremented = False
        if not incremented:
            return _rejected(RejectReason.TALLY_UPDATE_FAILED, ballot_recorded=True, vote_id=vote["id"])
        return SubmissionResult(recorded=True, ballot_recorded=True, vote_id=vote["id"])

    # --- Results ---

    async def get_results(self, election_id: str) -> ElectionResults:
        await self.get_election(election_id)
        return compute_results(await self.storage.list_candidates(election_id, order_by="name"))

    async def list_ballots(self, election_id: str, actor: Dict[str, Any]) -> List[Dict[str, Any]]:
        election = await self.get_election(election_id)
        if not can_manage(election, actor):
            raise PermissionDenied("You don't have permission to view vote records")
        return await self.storage.list_votes(election_id)

    # --- Lifecycle ---

    async def end_election(self, election_id: str, actor: Dict[str, Any]) -> Dict[str, Any]:
        """Close an election now by moving end_time to the current time. There is no reopen."""
        election = await self.get_election(election_id)
        if not can_manage(election, actor):
            raise PermissionDenied("Only the creator or an admin can end this election")
        now = self.clock()
        if election_status(election, now) == CLOSED:
            raise ElectionAlreadyClosed(election_id)
        if not await self.storage.set_election_end_time(election_id, now):
            raise ElectionNotFound(election_id)
        logger.info(f"Election {election_id} ended early by {actor['id']}")
        election["end_time"] = now
        return election

    async def reconcile_tallies(self, election_id: str, force: bool = False) -> List[TallyCorrection]:
        """
        Rewrite each candidate's votes_count from the ballot count.

        Only closed elections are reconciled unless force is set, since a vote
        landing between the count and the rewrite would be lost.
        """
        election = await self.get_election(election_id)
        if not force and election_status(election, self.clock()) == OPEN:
            raise ValueError("Election is still open; end it first or pass force")
        counts = await self.storage.count_votes_by_candidate(election_id)
        corrections = []
        for candidate in await self.storage.list_candidates(election_id):
            actual = counts.get(candidate["id"], 0)
            stored = candidate.get("votes_count", 0)
            if stored != actual:
                await self.storage.set_candidate_votes(candidate["id"], actual)
                logger.warning(f"Tally of candidate {candidate['id']} corrected from {stored} to {actual}")
                corrections.append(TallyCorrection(candidate_id=candidate["id"], old=stored, new=actual))
        return corrections
