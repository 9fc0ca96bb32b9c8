"""
Operator entry point for the league rating engine.

Usage:
    python -m league.main reconcile [--teams] [--dry-run]
    python -m league.main audit [--teams]

Exits with status 1 when the run found engine defects (rating changes that
disagree with the outcome), skipped matches or failed writes.
"""

import argparse
import asyncio
import sys
from typing import List, Optional

from league.config import Config
from league.data_models.rating import ParticipantKind
from league.database.database import Database
from league.services.reconciliation_runner import ReconciliationRunner, RunSummary
from league.utils.exceptions import LeagueError
from league.utils.logger import setup_logger

logger = setup_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='league', description='League rating reconciliation')
    subparsers = parser.add_subparsers(dest='command', required=True)

    # Shared by every subcommand so the option can follow the command name
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument('--database-url', default=None, help=f'Defaults to {Config.DATABASE_URL}')

    reconcile = subparsers.add_parser('reconcile', parents=[common],
                                      help='Replay match history and rebuild ratings')
    reconcile.add_argument('--teams', action='store_true', help='Reconcile team ratings instead of players')
    reconcile.add_argument('--dry-run', action='store_true', help='Report without writing')

    audit = subparsers.add_parser('audit', parents=[common],
                                  help='Report drift between stored and replayed ratings')
    audit.add_argument('--teams', action='store_true', help='Audit team ratings instead of players')
    return parser


def print_summary(summary: RunSummary) -> None:
    mode = "audit" if summary.dry_run else "reconcile"
    print(f"{summary.kind.value} {mode}")
    print("=" * 40)
    for key, value in summary.to_dict().items():
        print(f"{key:>24}: {value}")

    for failed in summary.failed_matches:
        print(f"  skipped match {failed.match_id}: {failed.reason}")
    for divergence in summary.divergences:
        print(f"  match {divergence.match_id}: declared {divergence.declared_winner.value.upper()}, "
              f"score says {divergence.expected_winner.value.upper()}")
    for divergence in summary.computation_divergences:
        print(f"  ENGINE DEFECT match {divergence.match_id}: {divergence.participant_id} "
              f"{'won' if divergence.won else 'lost'} with delta {divergence.delta}")
    for drift in summary.result.rating_drift:
        print(f"  {summary.kind.value} {drift.participant_id}: stored {drift.stored_rating}, "
              f"replayed {drift.expected_rating} ({drift.difference:+d})")
    for drift in summary.consistency_drift:
        print(f"  {summary.kind.value} {drift.participant_id}: rating {drift.stored_rating}, "
              f"newest history {drift.expected_rating}")
    for recommendation in summary.result.skill_recommendations:
        print(f"  player {recommendation.participant_id} ({recommendation.rating}): "
              f"{recommendation.current_tier.value} -> {recommendation.recommended_tier.value}")
    for error in summary.errors:
        print(f"  write error: {error}")


async def run_command(args) -> int:
    kind = ParticipantKind.TEAM if args.teams else ParticipantKind.PLAYER
    db = Database(args.database_url)
    await db.initialize()
    try:
        runner = ReconciliationRunner(db, kind)
        if args.command == 'audit':
            summary = await runner.audit()
        else:
            summary = await runner.run(dry_run=args.dry_run)
    except LeagueError as e:
        logger.error(str(e))
        print(e.user_message)
        return 1
    finally:
        await db.close()

    print_summary(summary)
    return 1 if summary.has_failures else 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    Config.validate()
    return asyncio.run(run_command(args))


if __name__ == "__main__":
    sys.exit(main())
