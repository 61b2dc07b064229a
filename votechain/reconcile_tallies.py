import argparse
import asyncio
import logging

from votechain.config import LOG_LEVEL
from votechain.storage import build_storage
from votechain.voting import VoteService

logger = logging.getLogger(__name__)


async def reconcile(storage, election_ids=None, force=False):
    """Recompute candidate tallies from ballots for the given (or all) elections."""
    service = VoteService(storage)
    if not election_ids:
        election_ids = [e["id"] for e in await storage.list_elections()]
    corrected = {}
    for election_id in election_ids:
        try:
            corrections = await service.reconcile_tallies(election_id, force=force)
        except ValueError as e:
            logger.info(f"Skipping {election_id}: {e}")
            continue
        if corrections:
            corrected[election_id] = corrections
            for c in corrections:
                print(f"{election_id}: candidate {c.candidate_id} {c.old} -> {c.new}")
    return corrected


async def main(argv=None):
    parser = argparse.ArgumentParser(description="Recompute candidate tallies from recorded ballots.")
    parser.add_argument("election_ids", nargs="*", help="elections to reconcile (default: all)")
    parser.add_argument("--force", action="store_true", help="also reconcile elections that are still open")
    args = parser.parse_args(argv)
    logging.basicConfig(level=LOG_LEVEL)

    storage = build_storage()
    await storage.connect()
    try:
        corrected = await reconcile(storage, args.election_ids, force=args.force)
    finally:
        await storage.close()
    print(f"Reconciled {len(corrected)} election(s)")


if __name__ == "__main__":
    asyncio.run(main())
