"""
Exceptions for the rating and bracket engines with caller-friendly messages.

Data-quality problems found during a replay (divergences, drift) are reported
as records on the result objects, not raised. Only the errors below cross
the boundary as exceptions.
"""

class LeagueError(Exception):
    """Base exception for league engine errors."""
    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or message

class DataIntegrityError(LeagueError):
    """Raised when a match cannot be resolved into two valid rosters."""
    def __init__(self, match_id, reason: str):
        super().__init__(
            f"Match {match_id} failed integrity check: {reason}",
            f"Match {match_id} was skipped: {reason}"
        )
        self.match_id = match_id
        self.reason = reason

class PersistenceError(LeagueError):
    """Raised when a single store write fails after all retry attempts."""
    def __init__(self, operation: str, attempts: int, details: str = None):
        super().__init__(
            f"Write failed for {operation} after {attempts} attempts: {details}",
            "Failed to save results. Please try again."
        )
        self.operation = operation
        self.attempts = attempts

class InvalidStateError(LeagueError):
    """Raised when a bracket result is submitted for a match that is not pending."""
    def __init__(self, match_id: str, status):
        status_value = getattr(status, 'value', status)
        super().__init__(
            f"Bracket match {match_id} is {status_value}, expected pending",
            f"Results cannot be recorded for a {status_value} match."
        )
        self.match_id = match_id
        self.status = status

class InvalidResultError(LeagueError, ValueError):
    """Raised when submitted scores cannot produce a winner."""
    def __init__(self, score1, score2, reason: str):
        super().__init__(
            f"Invalid result {score1}-{score2}: {reason}",
            reason
        )

class ReconciliationInProgressError(LeagueError):
    """Raised when a reconciliation run is already active for the same dataset."""
    def __init__(self, dataset: str):
        super().__init__(
            f"Reconciliation for '{dataset}' is already in progress",
            "A rating recalculation is already running. Please wait for it to finish."
        )
        self.dataset = dataset

class TournamentNotFoundError(LeagueError):
    """Raised when a bracket operation targets an unknown tournament."""
    def __init__(self, tournament_id: int):
        super().__init__(
            f"Tournament {tournament_id} not found",
            f"Tournament {tournament_id} does not exist."
        )
        self.tournament_id = tournament_id
