import asyncio
from datetime import timedelta

import pytest

from conftest import NOW, run, seed_election
from votechain.errors import (
    BackendUnavailable,
    ElectionAlreadyClosed,
    ElectionNotFound,
    PermissionDenied,
    RejectReason,
)
from votechain.storage import MemoryStorage
from votechain.voting import CLOSED, OPEN, VoteService, election_status, time_remaining


class FlakyTallyStorage(MemoryStorage):
    async def increment_candidate_votes(self, candidate_id):
        raise BackendUnavailable("rpc timed out")


class SlowLookupStorage(MemoryStorage):
    """Yields after every ballot lookup so both submissions pass the pre-check before either inserts."""

    async def get_vote_for_user(self, election_id, voter):
        vote = await super().get_vote_for_user(election_id, voter)
        await asyncio.sleep(0)
        return vote


class DownStorage(MemoryStorage):
    async def get_election(self, election_id):
        raise BackendUnavailable("connection refused")


def _tallies(storage, election_id):
    return {c["name"]: c["votes_count"] for c in run(storage.list_candidates(election_id))}


class TestSubmitVote:
    def test_vote_then_retry_for_other_candidate_is_already_voted(self, storage, clock):
        election, cands = seed_election(storage)
        service = VoteService(storage, clock)

        first = run(service.submit_vote("voter-1", election["id"], cands["Alice"]["id"]))
        assert first.recorded
        assert first.vote_id

        results = run(service.get_results(election["id"]))
        assert results.total_votes == 1
        by_name = {c.name: (c.votes, c.percentage) for c in results.per_candidate}
        assert by_name == {"Alice": (1, 100), "Bob": (0, 0)}

        second = run(service.submit_vote("voter-1", election["id"], cands["Bob"]["id"]))
        assert not second.recorded
        assert second.reason == RejectReason.ALREADY_VOTED
        assert _tallies(storage, election["id"]) == {"Alice": 1, "Bob": 0}
        assert len(run(storage.list_votes(election["id"]))) == 1

    def test_closed_election_rejects_every_submission(self, storage, clock):
        election, cands = seed_election(storage, end_time=NOW - timedelta(hours=1), votes={"Alice": 3, "Bob": 7})
        service = VoteService(storage, clock)

        for voter in ("voter-1", "voter-2"):
            result = run(service.submit_vote(voter, election["id"], cands["Alice"]["id"]))
            assert result.reason == RejectReason.ELECTION_CLOSED

        results = run(service.get_results(election["id"]))
        assert results.total_votes == 10
        assert [c.percentage for c in results.per_candidate] == [30, 70]
        assert results.ranking == [cands["Bob"]["id"], cands["Alice"]["id"]]

    def test_closed_check_wins_over_existing_ballot(self, storage, clock):
        election, cands = seed_election(storage)
        service = VoteService(storage, clock)
        assert run(service.submit_vote("voter-1", election["id"], cands["Alice"]["id"])).recorded

        clock.advance(days=2)
        result = run(service.submit_vote("voter-1", election["id"], cands["Bob"]["id"]))
        assert result.reason == RejectReason.ELECTION_CLOSED

    def test_vote_at_exact_end_time_is_accepted(self, storage, clock):
        election, cands = seed_election(storage, end_time=NOW)
        result = run(VoteService(storage, clock).submit_vote("voter-1", election["id"], cands["Bob"]["id"]))
        assert result.recorded

    def test_unauthenticated_and_missing_selection_write_nothing(self, storage, clock):
        election, cands = seed_election(storage)
        service = VoteService(storage, clock)

        assert run(service.submit_vote(None, election["id"], cands["Alice"]["id"])).reason == RejectReason.NOT_AUTHENTICATED
        assert run(service.submit_vote("voter-1", election["id"], None)).reason == RejectReason.NO_SELECTION
        assert run(storage.list_votes(election["id"])) == []

    def test_missing_election_and_foreign_candidate(self, storage, clock):
        election, cands = seed_election(storage)
        other, other_cands = seed_election(storage, names=("Carol", "Dan"))
        service = VoteService(storage, clock)

        assert run(service.submit_vote("voter-1", "nope", cands["Alice"]["id"])).reason == RejectReason.ELECTION_NOT_FOUND
        result = run(service.submit_vote("voter-1", election["id"], other_cands["Carol"]["id"]))
        assert result.reason == RejectReason.UNKNOWN_CANDIDATE
        assert _tallies(storage, other["id"]) == {"Carol": 0, "Dan": 0}

    def test_tally_failure_is_reported_separately(self, clock):
        storage = FlakyTallyStorage()
        election, cands = seed_election(storage)

        result = run(VoteService(storage, clock).submit_vote("voter-1", election["id"], cands["Alice"]["id"]))

        assert not result.recorded
        assert result.reason == RejectReason.TALLY_UPDATE_FAILED
        assert result.ballot_recorded
        assert len(run(storage.list_votes(election["id"]))) == 1
        assert _tallies(storage, election["id"]) == {"Alice": 0, "Bob": 0}

    def test_backend_down_is_backend_unavailable(self, clock):
        storage = DownStorage()
        result = run(VoteService(storage, clock).submit_vote("voter-1", "e1", "c1"))
        assert result.reason == RejectReason.BACKEND_UNAVAILABLE

    @pytest.mark.parametrize("transactional", [False, True])
    def test_concurrent_double_submission_records_exactly_once(self, clock, transactional):
        storage = SlowLookupStorage(transactional=transactional)
        election, cands = seed_election(storage)
        service = VoteService(storage, clock)

        async def both():
            return await asyncio.gather(
                service.submit_vote("voter-1", election["id"], cands["Alice"]["id"]),
                service.submit_vote("voter-1", election["id"], cands["Bob"]["id"]),
            )

        results = run(both())

        assert sorted(r.recorded for r in results) == [False, True]
        rejected = next(r for r in results if not r.recorded)
        assert rejected.reason == RejectReason.ALREADY_VOTED
        assert len(run(storage.list_votes(election["id"]))) == 1
        assert sum(_tallies(storage, election["id"]).values()) == 1

    def test_transactional_storage_records_ballot_and_tally_together(self, clock):
        storage = MemoryStorage(transactional=True)
        election, cands = seed_election(storage)
        service = VoteService(storage, clock)

        assert run(service.submit_vote("voter-1", election["id"], cands["Bob"]["id"])).recorded
        assert run(service.submit_vote("voter-1", election["id"], cands["Bob"]["id"])).reason == RejectReason.ALREADY_VOTED
        assert _tallies(storage, election["id"]) == {"Alice": 0, "Bob": 1}

    def test_tally_sum_matches_ballots_after_many_voters(self, storage, clock):
        election, cands = seed_election(storage, names=("Alice", "Bob", "Carol"))
        service = VoteService(storage, clock)
        picks = ["Alice", "Bob", "Bob", "Carol", "Bob", "Alice"]
        for i, name in enumerate(picks):
            assert run(service.submit_vote(f"voter-{i}", election["id"], cands[name]["id"])).recorded

        assert sum(_tallies(storage, election["id"]).values()) == len(run(storage.list_votes(election["id"])))
        assert run(service.get_results(election["id"])).ranking[0] == cands["Bob"]["id"]


class TestResolver:
    def test_resolver_reports_candidate(self, storage, clock):
        election, cands = seed_election(storage)
        service = VoteService(storage, clock)

        assert not run(service.resolve_vote_state(election["id"], "voter-1")).voted
        run(service.submit_vote("voter-1", election["id"], cands["Bob"]["id"]))
        state = run(service.resolve_vote_state(election["id"], "voter-1"))
        assert state.voted
        assert state.candidate_id == cands["Bob"]["id"]

    def test_no_user_is_not_voted(self, storage, clock):
        election, _ = seed_election(storage)
        assert run(VoteService(storage, clock).resolve_vote_state(election["id"], None)).voted is False


class TestQueries:
    def test_candidate_orderings(self, storage, clock):
        election, _ = seed_election(storage, names=("Carol", "Alice", "Bob"), votes={"Carol": 1, "Bob": 5, "Alice": 1})
        service = VoteService(storage, clock)

        by_name = [c["name"] for c in run(service.list_candidates(election["id"], order_by="name"))]
        by_votes = [c["name"] for c in run(service.list_candidates(election["id"], order_by="votes"))]
        assert by_name == ["Alice", "Bob", "Carol"]
        assert by_votes == ["Bob", "Alice", "Carol"]

        with pytest.raises(ValueError):
            run(service.list_candidates(election["id"], order_by="random"))

    def test_missing_election_raises(self, storage, clock):
        with pytest.raises(ElectionNotFound):
            run(VoteService(storage, clock).get_election("missing"))
        with pytest.raises(ElectionNotFound):
            run(VoteService(storage, clock).get_results("missing"))


class TestLifecycle:
    def test_status_is_recomputed_from_clock(self, storage, clock):
        election, _ = seed_election(storage, end_time=NOW + timedelta(minutes=5))
        service = VoteService(storage, clock)

        assert run(service.status(election["id"])) == OPEN
        clock.advance(minutes=6)
        assert run(service.status(election["id"])) == CLOSED

    def test_end_election_closes_and_cannot_be_repeated(self, storage, clock):
        election, cands = seed_election(storage, creator="creator-1")
        service = VoteService(storage, clock)

        ended = run(service.end_election(election["id"], {"id": "creator-1"}))
        assert ended["end_time"] == NOW
        clock.advance(seconds=1)
        assert run(service.submit_vote("voter-1", election["id"], cands["Alice"]["id"])).reason == RejectReason.ELECTION_CLOSED
        with pytest.raises(ElectionAlreadyClosed):
            run(service.end_election(election["id"], {"id": "creator-1"}))

    def test_only_creator_or_admin_may_end(self, storage, clock):
        election, _ = seed_election(storage, creator="creator-1")
        service = VoteService(storage, clock)

        with pytest.raises(PermissionDenied):
            run(service.end_election(election["id"], {"id": "someone-else"}))
        run(service.end_election(election["id"], {"id": "admin-1", "is_admin": True}))

    def test_time_remaining_formats(self):
        assert time_remaining(NOW, NOW) == "Ended"
        assert time_remaining(NOW + timedelta(days=2, hours=3, minutes=9), NOW) == "2d 3h remaining"
        assert time_remaining(NOW + timedelta(hours=5, minutes=42), NOW) == "5h 42m remaining"
        assert time_remaining(NOW + timedelta(minutes=7, seconds=30), NOW) == "7m remaining"

    def test_naive_end_time_is_treated_as_utc(self):
        election = {"end_time": NOW.replace(tzinfo=None)}
        assert election_status(election, NOW) == OPEN
        assert election_status(election, NOW + timedelta(seconds=1)) == CLOSED


class TestReconcile:
    def test_reconcile_rewrites_drifted_tallies(self, clock):
        storage = FlakyTallyStorage()
        election, cands = seed_election(storage)
        service = VoteService(storage, clock)
        run(service.submit_vote("voter-1", election["id"], cands["Alice"]["id"]))
        run(service.submit_vote("voter-2", election["id"], cands["Alice"]["id"]))

        with pytest.raises(ValueError):
            run(service.reconcile_tallies(election["id"]))

        clock.advance(days=2)
        corrections = run(service.reconcile_tallies(election["id"]))
        assert [(c.candidate_id, c.old, c.new) for c in corrections] == [(cands["Alice"]["id"], 0, 2)]
        assert _tallies(storage, election["id"]) == {"Alice": 2, "Bob": 0}
        assert run(service.reconcile_tallies(election["id"])) == []
