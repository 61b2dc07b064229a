from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from votechain.deps import get_clock, get_current_profile, get_election_manager, get_optional_profile, require_admin
from votechain.elections import ElectionManager
from votechain.models.election_model import (
    Candidate,
    CandidateIn,
    CandidateUpdate,
    Election,
    ElectionCreate,
    ElectionDetail,
    PollCreate,
    VerifyRequest,
)
from votechain.voting import Clock, election_status, time_remaining

router = APIRouter(prefix="/election", tags=["Election"])
poll_router = APIRouter(prefix="/polls", tags=["Polls"])


def _created(election: Dict[str, Any], candidates: List[Dict[str, Any]], label: str) -> dict:
    return {
        "message": f"{label} created successfully!",
        "election_id": election["id"],
        "election": Election(**election),
        "candidates": [Candidate(**c) for c in candidates],
    }


@poll_router.get("", response_model=List[Election])
async def list_polls(
    kind: str = Query("all", pattern="^(all|poll|election)$"),
    creator: Optional[str] = Query(None, description="Profile id, or 'me' for the signed-in user"),
    profile: Optional[Dict[str, Any]] = Depends(get_optional_profile),
    manager: ElectionManager = Depends(get_election_manager),
):
    if creator == "me":
        if profile is None:
            raise HTTPException(status_code=401, detail="Please connect your wallet")
        creator = profile["id"]
    return [Election(**e) for e in await manager.list_polls(kind=kind, creator=creator)]


@poll_router.post("", status_code=201)
async def create_poll(
    poll: PollCreate,
    profile: Dict[str, Any] = Depends(get_current_profile),
    manager: ElectionManager = Depends(get_election_manager),
):
    try:
        election, candidates = await manager.create_poll(poll, profile)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _created(election, candidates, "Poll")


@router.post("/create", status_code=201)
async def create_election(
    election: ElectionCreate,
    profile: Dict[str, Any] = Depends(require_admin),
    manager: ElectionManager = Depends(get_election_manager),
):
    try:
        created, candidates = await manager.create_election(election, profile)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _created(created, candidates, "Election")


@router.get("/{election_id}", response_model=ElectionDetail)
async def get_election(
    election_id: str,
    manager: ElectionManager = Depends(get_election_manager),
    clock: Clock = Depends(get_clock),
):
    detail = await manager.detail(election_id)
    election, candidates = detail["election"], detail["candidates"]
    now = clock()
    return ElectionDetail(
        **election,
        status=election_status(election, now),
        time_remaining=time_remaining(election["end_time"], now),
        total_votes=sum(c.get("votes_count", 0) for c in candidates),
        candidates=[Candidate(**c) for c in candidates],
    )


@router.get("/{election_id}/candidates", response_model=List[Candidate])
async def list_candidates(
    election_id: str,
    order_by: str = Query("name", pattern="^(name|votes)$"),
    manager: ElectionManager = Depends(get_election_manager),
):
    await manager.votes.get_election(election_id)
    return [Candidate(**c) for c in await manager.votes.list_candidates(election_id, order_by=order_by)]


@router.delete("/{election_id}")
async def delete_election(
    election_id: str,
    profile: Dict[str, Any] = Depends(get_current_profile),
    manager: ElectionManager = Depends(get_election_manager),
):
    await manager.delete_election(election_id, profile)
    return {"message": "Election deleted successfully"}


@router.post("/{election_id}/end", response_model=Election)
async def end_election(
    election_id: str,
    profile: Dict[str, Any] = Depends(get_current_profile),
    manager: ElectionManager = Depends(get_election_manager),
):
    return Election(**await manager.votes.end_election(election_id, profile))


@router.post("/{election_id}/candidates", response_model=Candidate, status_code=201)
async def add_candidate(
    election_id: str,
    candidate: CandidateIn,
    profile: Dict[str, Any] = Depends(get_current_profile),
    manager: ElectionManager = Depends(get_election_manager),
):
    try:
        return Candidate(**await manager.add_candidate(election_id, candidate, profile))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.patch("/candidates/{candidate_id}", response_model=Candidate)
async def update_candidate(
    candidate_id: str,
    update: CandidateUpdate,
    profile: Dict[str, Any] = Depends(get_current_profile),
    manager: ElectionManager = Depends(get_election_manager),
):
    try:
        return Candidate(**await manager.update_candidate(candidate_id, update, profile))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/candidates/{candidate_id}/verify", response_model=Candidate)
async def verify_candidate(
    candidate_id: str,
    body: VerifyRequest,
    profile: Dict[str, Any] = Depends(get_current_profile),
    manager: ElectionManager = Depends(get_election_manager),
):
    return Candidate(**await manager.set_verified(candidate_id, body.verified, profile))


@router.delete("/candidates/{candidate_id}")
async def delete_candidate(
    candidate_id: str,
    profile: Dict[str, Any] = Depends(get_current_profile),
    manager: ElectionManager = Depends(get_election_manager),
):
    try:
        await manager.delete_candidate(candidate_id, profile)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"message": "Candidate deleted successfully"}
