import asyncio

import pytest

from conftest import run, seed_election
from votechain.errors import RejectReason, SubmissionInProgress
from votechain.storage import MemoryStorage
from votechain.voting import BallotState, VoteService


class GatedStorage(MemoryStorage):
    """Holds insert_vote until the test releases it."""

    def __init__(self):
        super().__init__()
        self.gate = None

    async def insert_vote(self, doc):
        await self.gate.wait()
        return await super().insert_vote(doc)


def test_states_through_a_recorded_ballot(storage, clock):
    election, cands = seed_election(storage)
    session = VoteService(storage, clock).ballot(election["id"], "voter-1")

    assert session.state == BallotState.IDLE
    session.select(cands["Alice"]["id"])
    assert session.state == BallotState.SELECTING
    session.select(cands["Bob"]["id"])
    assert session.candidate_id == cands["Bob"]["id"]

    result = run(session.confirm())
    assert result.recorded
    assert session.state == BallotState.RECORDED


def test_confirm_without_selection_is_rejected(storage, clock):
    election, _ = seed_election(storage)
    session = VoteService(storage, clock).ballot(election["id"], "voter-1")

    result = run(session.confirm())
    assert result.reason == RejectReason.NO_SELECTION
    assert session.state == BallotState.REJECTED


def test_finished_session_needs_reset_before_retry(storage, clock):
    election, cands = seed_election(storage)
    session = VoteService(storage, clock).ballot(election["id"], "voter-1")
    run(session.confirm())

    with pytest.raises(RuntimeError):
        run(session.confirm())
    with pytest.raises(RuntimeError):
        session.select(cands["Alice"]["id"])

    session.reset()
    assert session.state == BallotState.IDLE
    session.select(cands["Alice"]["id"])
    assert run(session.confirm()).recorded


def test_retry_after_recorded_requeries_resolver(storage, clock):
    election, cands = seed_election(storage)
    session = VoteService(storage, clock).ballot(election["id"], "voter-1")
    session.select(cands["Alice"]["id"])
    assert run(session.confirm()).recorded

    session.reset()
    session.select(cands["Bob"]["id"])
    assert run(session.confirm()).reason == RejectReason.ALREADY_VOTED


def test_second_confirm_while_submitting_is_refused(clock):
    storage = GatedStorage()
    election, cands = seed_election(storage)
    session = VoteService(storage, clock).ballot(election["id"], "voter-1")
    session.select(cands["Alice"]["id"])

    async def scenario():
        storage.gate = asyncio.Event()
        first = asyncio.ensure_future(session.confirm())
        await asyncio.sleep(0)
        assert session.state == BallotState.SUBMITTING
        with pytest.raises(SubmissionInProgress):
            await session.confirm()
        with pytest.raises(SubmissionInProgress):
            session.reset()
        storage.gate.set()
        return await first

    assert run(scenario()).recorded
    assert session.state == BallotState.RECORDED
