from enum import Enum


class VoteChainError(Exception):
    """Base class for all VoteChain errors."""


class BackendUnavailable(VoteChainError):
    """The storage backend could not be reached or failed the request."""


class DuplicateKey(VoteChainError):
    """A unique key (wallet address, ballot key) was violated on insert."""


class DuplicateVote(DuplicateKey):
    """A ballot already exists for this (election, voter) pair."""


class ElectionNotFound(VoteChainError):
    pass


class CandidateNotFound(VoteChainError):
    pass


class ElectionAlreadyClosed(VoteChainError):
    pass


class PermissionDenied(VoteChainError):
    pass


class SubmissionInProgress(VoteChainError):
    """confirm() was called while the same ballot session was still submitting."""


class RejectReason(str, Enum):
    NOT_AUTHENTICATED = "not_authenticated"
    NO_SELECTION = "no_selection"
    ELECTION_NOT_FOUND = "election_not_found"
    ELECTION_CLOSED = "election_closed"
    UNKNOWN_CANDIDATE = "unknown_candidate"
    ALREADY_VOTED = "already_voted"
    # The ballot row exists but the candidate tally was not incremented
    TALLY_UPDATE_FAILED = "tally_update_failed"
    BACKEND_UNAVAILABLE = "backend_unavailable"


REJECT_MESSAGES = {
    RejectReason.NOT_AUTHENTICATED: "Please connect your wallet to vote.",
    RejectReason.NO_SELECTION: "Please select a candidate.",
    RejectReason.ELECTION_NOT_FOUND: "Election not found.",
    RejectReason.ELECTION_CLOSED: "This election has ended.",
    RejectReason.UNKNOWN_CANDIDATE: "Candidate not found in election.",
    RejectReason.ALREADY_VOTED: "You have already voted in this election.",
    RejectReason.TALLY_UPDATE_FAILED: "Your vote was recorded but the tally could not be updated.",
    RejectReason.BACKEND_UNAVAILABLE: "Failed to record your vote. Please try again.",
}
