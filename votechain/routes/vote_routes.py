from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from votechain.deps import get_current_profile, get_optional_profile, get_vote_service, require_super_admin
from votechain.errors import REJECT_MESSAGES, RejectReason
from votechain.models.vote_model import ElectionResults, TallyCorrection, Vote, VoteIn, VoteState
from votechain.voting import VoteService

vote_router = APIRouter(prefix="/vote", tags=["Vote"])

REJECT_STATUS = {
    RejectReason.NOT_AUTHENTICATED: 401,
    RejectReason.NO_SELECTION: 400,
    RejectReason.ELECTION_NOT_FOUND: 404,
    RejectReason.ELECTION_CLOSED: 403,
    RejectReason.UNKNOWN_CANDIDATE: 404,
    RejectReason.ALREADY_VOTED: 409,
    RejectReason.TALLY_UPDATE_FAILED: 500,
    RejectReason.BACKEND_UNAVAILABLE: 503,
}


@vote_router.post("/cast")
async def cast_vote(
    vote: VoteIn,
    profile: Optional[Dict[str, Any]] = Depends(get_optional_profile),
    service: VoteService = Depends(get_vote_service),
):
    """
    Casts a vote for the signed-in wallet.
    Rejections carry a machine-readable reason so clients can tell
    "already voted" apart from "try again".
    """
    voter_id = profile["id"] if profile else None
    result = await service.submit_vote(voter_id, vote.election_id, vote.candidate_id)
    if not result.recorded:
        raise HTTPException(
            status_code=REJECT_STATUS[result.reason],
            detail={
                "reason": result.reason.value,
                "message": REJECT_MESSAGES[result.reason],
                "ballot_recorded": result.ballot_recorded,
            },
        )
    return {
        "message": "Your vote has been recorded",
        "vote_id": result.vote_id,
        "candidate_id": vote.candidate_id,
    }


@vote_router.get("/check/{election_id}", response_model=VoteState)
async def check_vote(
    election_id: str,
    profile: Optional[Dict[str, Any]] = Depends(get_optional_profile),
    service: VoteService = Depends(get_vote_service),
):
    await service.get_election(election_id)
    return await service.resolve_vote_state(election_id, profile["id"] if profile else None)


@vote_router.get("/results/{election_id}", response_model=ElectionResults)
async def get_results(election_id: str, service: VoteService = Depends(get_vote_service)):
    return await service.get_results(election_id)


@vote_router.get("/records/{election_id}", response_model=List[Vote])
async def list_vote_records(
    election_id: str,
    profile: Dict[str, Any] = Depends(get_current_profile),
    service: VoteService = Depends(get_vote_service),
):
    return [Vote(**v) for v in await service.list_ballots(election_id, profile)]


@vote_router.post("/reconcile/{election_id}", response_model=List[TallyCorrection])
async def reconcile(
    election_id: str,
    force: bool = Query(False),
    profile: Dict[str, Any] = Depends(require_super_admin),
    service: VoteService = Depends(get_vote_service),
):
    try:
        return await service.reconcile_tallies(election_id, force=force)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
