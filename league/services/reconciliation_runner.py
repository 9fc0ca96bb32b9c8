"""
Reconciliation runner.

Loads the full match history from the record store, replays it through the
SequentialReconciler and writes the results back:
- history rows are inserted only when their (participant, match) key is new
- participant ratings and statistics are overwritten with the replayed values

Every write is retried on its own. A write that still fails is recorded in
the run summary and the run carries on with the remaining writes.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from league.data_models.rating import (
    ComputationDivergence, Divergence, FailedMatch, ParticipantKind, RatingDrift
)
from league.operations.reconciler import (
    ReconciliationResult, SequentialReconciler, check_ledger_consistency
)
from league.services.base import BaseService
from league.utils.elo import RatingModel
from league.utils.exceptions import PersistenceError, ReconciliationInProgressError
from league.utils.locks import DistributedLock, KeyedLocks, create_redis_client

logger = logging.getLogger(__name__)

# At most one run per dataset within this process
_run_locks = KeyedLocks()


@dataclass
class RunSummary:
    """Outcome of a reconciliation run, for the caller to log or render"""
    kind: ParticipantKind
    dry_run: bool
    result: ReconciliationResult
    history_inserted: int = 0
    history_existing: int = 0
    participants_updated: int = 0
    errors: List[str] = field(default_factory=list)
    consistency_drift: List[RatingDrift] = field(default_factory=list)

    @property
    def matches_processed(self) -> int:
        return self.result.matches_processed

    @property
    def matches_failed(self) -> int:
        return self.result.matches_failed

    @property
    def failed_matches(self) -> List[FailedMatch]:
        return self.result.failed_matches

    @property
    def divergences(self) -> List[Divergence]:
        return self.result.divergences

    @property
    def computation_divergences(self) -> List[ComputationDivergence]:
        return self.result.computation_divergences

    @property
    def has_failures(self) -> bool:
        """Failures that need an operator: engine defects, skipped matches or lost writes"""
        return bool(self.errors or self.result.failed_matches or self.result.has_computation_divergences)

    def to_dict(self) -> Dict[str, int]:
        summary = self.result.summary()
        summary.update({
            'history_inserted': self.history_inserted,
            'history_existing': self.history_existing,
            'participants_updated': self.participants_updated,
            'write_errors': len(self.errors),
            'consistency_drift': len(self.consistency_drift),
        })
        return summary


class ReconciliationRunner(BaseService):
    """Rebuilds the rating ledger for one dataset (players or teams)"""

    def __init__(self, store, kind: ParticipantKind = ParticipantKind.PLAYER,
                 model: RatingModel = None, locks: KeyedLocks = None, redis_client=None):
        super().__init__(store)
        self.kind = kind
        self.reconciler = SequentialReconciler(model or RatingModel.for_kind(kind), kind)
        self.locks = locks or _run_locks
        self.redis_client = redis_client

    @property
    def lock_key(self) -> str:
        return f"league:reconcile:{self.kind.value}"

    async def run(self, dry_run: bool = False) -> RunSummary:
        """
        Replay the full history and persist the results.

        Args:
            dry_run: Replay and report without writing anything

        Raises:
            ReconciliationInProgressError: If a run for the same dataset is active
            PersistenceError: If the history cannot be loaded
        """
        async with self._exclusive():
            return await self._run(dry_run)

    async def audit(self) -> RunSummary:
        """Dry run plus a check that stored ratings match the newest ledger rows"""
        async with self._exclusive():
            summary = await self._run(dry_run=True)
            participants = await self.execute_with_retry(
                lambda: self.store.get_participants(self.kind), operation="load participants"
            )
            history = await self.execute_with_retry(
                lambda: self.store.get_history_records(self.kind), operation="load history"
            )

        summary.consistency_drift = check_ledger_consistency(participants, history)
        if summary.consistency_drift:
            logger.warning(
                f"{len(summary.consistency_drift)} {self.kind.value} ratings differ from their newest history row"
            )
        return summary

    @asynccontextmanager
    async def _exclusive(self):
        """Hold the dataset's run lock, plus the Redis lock when Redis is configured"""
        if self.locks.is_locked(self.lock_key):
            raise ReconciliationInProgressError(self.kind.value)

        async with self.locks.hold(self.lock_key):
            client = self.redis_client or await create_redis_client()
            try:
                distributed_lock = await self._acquire_distributed_lock(client)
                try:
                    yield
                finally:
                    if distributed_lock is not None:
                        await distributed_lock.release()
            finally:
                # Clients passed in by the caller stay open
                if client is not None and client is not self.redis_client:
                    await client.aclose()

    async def _run(self, dry_run: bool) -> RunSummary:
        kind = self.kind
        participants = await self.execute_with_retry(
            lambda: self.store.get_participants(kind), operation="load participants"
        )
        matches = await self.execute_with_retry(
            lambda: self.store.get_completed_matches(kind), operation="load matches"
        )
        existing_history = await self.execute_with_retry(
            lambda: self.store.get_history_records(kind), operation="load history"
        )

        logger.info(
            f"Reconciling {len(matches)} matches for {len(participants)} {kind.value}s"
            f"{' (dry run)' if dry_run else ''}"
        )

        result = self.reconciler.replay(matches, participants, existing_history)
        summary = RunSummary(kind=kind, dry_run=dry_run, result=result)

        for divergence in result.divergences:
            logger.warning(
                f"Match {divergence.match_id}: declared winner {divergence.declared_winner.value.upper()}, "
                f"score winner {divergence.expected_winner.value.upper()}"
            )
        for divergence in result.computation_divergences:
            logger.error(
                f"Match {divergence.match_id}: {kind.value} {divergence.participant_id} "
                f"{'won' if divergence.won else 'lost'} but rating moved by {divergence.delta}"
            )

        if dry_run:
            return summary

        for record in result.history_records:
            try:
                inserted = await self.execute_with_retry(
                    lambda record=record: self.store.insert_history_record(record),
                    operation=f"history {kind.value} {record.participant_id} match {record.match_id}"
                )
            except PersistenceError as e:
                logger.error(str(e))
                summary.errors.append(str(e))
                continue
            if inserted:
                summary.history_inserted += 1
            else:
                summary.history_existing += 1

        for update in result.participants.values():
            try:
                updated = await self.execute_with_retry(
                    lambda update=update: self.store.update_participant(update),
                    operation=f"update {kind.value} {update.participant_id}"
                )
            except PersistenceError as e:
                logger.error(str(e))
                summary.errors.append(str(e))
                continue
            if updated is False:
                summary.errors.append(f"{kind.value} {update.participant_id} no longer exists")
            else:
                summary.participants_updated += 1

        logger.info(f"Reconciliation finished: {summary.to_dict()}")
        return summary

    async def _acquire_distributed_lock(self, client) -> Optional[DistributedLock]:
        if client is None:
            return None

        lock = DistributedLock(client, self.lock_key)
        if not await lock.acquire():
            raise ReconciliationInProgressError(self.kind.value)
        return lock
