from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from votechain.config import MAX_CANDIDATES, MIN_CANDIDATES


class CandidateIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    position: Optional[str] = None
    bio: Optional[str] = None
    wallet_address: Optional[str] = None
    photo_url: Optional[str] = None
    verified: bool = False

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("candidate name must not be blank")
        return v


class CandidateUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    position: Optional[str] = None
    bio: Optional[str] = None
    wallet_address: Optional[str] = None
    photo_url: Optional[str] = None
    photo_base64: Optional[str] = None  # data URL or raw base64, saved to the uploads dir
    verified: Optional[bool] = None


class VerifyRequest(BaseModel):
    verified: bool


def _unique_names(names: List[str], what: str) -> None:
    if len(names) < MIN_CANDIDATES:
        raise ValueError(f"Minimum {MIN_CANDIDATES} {what} required")
    if len(names) > MAX_CANDIDATES:
        raise ValueError(f"Maximum {MAX_CANDIDATES} {what} allowed")
    if len(set(names)) != len(names):
        raise ValueError(f"{what.capitalize()} must be unique")


class ElectionCreate(BaseModel):
    question: str = Field(..., min_length=1, max_length=100, examples=["Student Council President Election"])
    description: Optional[str] = None
    end_time: datetime
    candidates: List[CandidateIn]

    @field_validator("question")
    @classmethod
    def strip_question(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Please enter a title")
        return v

    @field_validator("candidates")
    @classmethod
    def check_candidates(cls, v: List[CandidateIn]) -> List[CandidateIn]:
        _unique_names([c.name for c in v], "candidates")
        return v


class PollCreate(BaseModel):
    question: str = Field(..., min_length=1, max_length=100, examples=["Favourite study spot?"])
    description: Optional[str] = None
    end_time: datetime
    options: List[str]

    @field_validator("question")
    @classmethod
    def strip_question(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Please enter a title")
        return v

    @field_validator("options")
    @classmethod
    def check_options(cls, v: List[str]) -> List[str]:
        v = [o.strip() for o in v]
        if any(not o for o in v):
            raise ValueError("Please fill all options")
        _unique_names(v, "options")
        return v


class Candidate(BaseModel):
    id: str
    election_id: str
    name: str
    position: Optional[str] = None
    bio: Optional[str] = None
    wallet_address: Optional[str] = None
    photo_url: Optional[str] = None
    verified: bool = False
    votes_count: int = 0


class Election(BaseModel):
    id: str
    question: str
    description: Optional[str] = None
    creator: str
    created_at: datetime
    end_time: datetime
    is_election: bool = True


class ElectionDetail(Election):
    status: str
    time_remaining: str
    total_votes: int
    candidates: List[Candidate]
