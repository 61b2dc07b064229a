from datetime import datetime, timezone

from conftest import NOW, run, seed_election
from votechain.reconcile_tallies import reconcile

FAR_FUTURE = datetime(2100, 1, 1, tzinfo=timezone.utc)


def _ballot(storage, election_id, candidate_id, voter):
    run(storage.insert_vote({"election_id": election_id, "candidate_id": candidate_id, "voter": voter, "created_at": NOW}))


def test_reconcile_fixes_closed_elections_and_skips_open_ones(storage, capsys):
    closed, closed_cands = seed_election(storage, votes={"Alice": 3})
    still_open, open_cands = seed_election(storage, end_time=FAR_FUTURE, votes={"Bob": 9})
    _ballot(storage, closed["id"], closed_cands["Bob"]["id"], "voter-1")

    corrected = run(reconcile(storage))

    assert list(corrected) == [closed["id"]]
    assert {(c.candidate_id, c.old, c.new) for c in corrected[closed["id"]]} == {
        (closed_cands["Alice"]["id"], 3, 0),
        (closed_cands["Bob"]["id"], 0, 1),
    }
    assert run(storage.get_candidate(open_cands["Bob"]["id"]))["votes_count"] == 9
    assert f"{closed['id']}: candidate {closed_cands['Alice']['id']} 3 -> 0" in capsys.readouterr().out


def test_force_includes_open_elections(storage):
    still_open, cands = seed_election(storage, end_time=FAR_FUTURE, votes={"Bob": 9})

    corrected = run(reconcile(storage, [still_open["id"]], force=True))

    assert [c.new for c in corrected[still_open["id"]]] == [0]
    assert run(storage.get_candidate(cands["Bob"]["id"]))["votes_count"] == 0
