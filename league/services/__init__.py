"""
Services package for the league engine.

Services own the record store handle, retries and locking around the
operations layer.
"""

from .base import BaseService
from .reconciliation_runner import ReconciliationRunner, RunSummary
from .tournament_service import TournamentService

__all__ = ['BaseService', 'ReconciliationRunner', 'RunSummary', 'TournamentService']
