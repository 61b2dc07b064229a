from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from votechain.errors import RejectReason


class VoteIn(BaseModel):
    election_id: str
    candidate_id: Optional[str] = None


class Vote(BaseModel):
    id: str
    election_id: str
    voter: str
    candidate_id: str
    created_at: datetime


class VoteState(BaseModel):
    voted: bool = False
    candidate_id: Optional[str] = None


class SubmissionResult(BaseModel):
    recorded: bool
    reason: Optional[RejectReason] = None
    # True when a ballot row exists even though the submission was rejected (tally failure)
    ballot_recorded: bool = False
    vote_id: Optional[str] = None


class CandidateResult(BaseModel):
    id: str
    name: str
    votes: int
    percentage: int


class ElectionResults(BaseModel):
    total_votes: int
    per_candidate: List[CandidateResult]
    ranking: List[str]


class TallyCorrection(BaseModel):
    candidate_id: str
    old: int
    new: int
