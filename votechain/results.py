from typing import Any, Dict, List

from votechain.models.vote_model import CandidateResult, ElectionResults


def percentage(votes: int, total: int) -> int:
    """round(votes / total * 100), halves rounded up; 0 when there are no votes."""
    if total <= 0:
        return 0
    # floor(100 * votes / total + 1/2) in integer arithmetic
    return (200 * votes + total) // (2 * total)


def compute_results(candidates: List[Dict[str, Any]]) -> ElectionResults:
    """
    Project candidate tallies into totals, percentages and a ranking.

    The ranking orders candidate ids by votes, highest first. Ties keep the
    order in which the candidates were passed in.
    """
    counts = [(c["id"], c.get("name", ""), max(int(c.get("votes_count") or 0), 0)) for c in candidates]
    total = sum(votes for _, _, votes in counts)
    per_candidate = [
        CandidateResult(id=cid, name=name, votes=votes, percentage=percentage(votes, total))
        for cid, name, votes in counts
    ]
    ranking = [cid for cid, _, _ in sorted(counts, key=lambda item: item[2], reverse=True)]
    return ElectionResults(total_votes=total, per_candidate=per_candidate, ranking=ranking)
