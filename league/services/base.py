"""
Base service class for the league engine.

Provides access to the record store and retry logic for the individual
writes services make against it.
"""

import asyncio
import logging
from typing import Any, Callable

from league.config import Config
from league.utils.exceptions import PersistenceError

logger = logging.getLogger(__name__)

class BaseService:
    """Base class for all services that talk to the record store."""

    def __init__(self, store):
        """
        Initialize base service with a record store.

        Args:
            store: Database instance (or any object with the same methods)
        """
        self.store = store

    async def execute_with_retry(self, func: Callable, max_retries: int = None,
                                 operation: str = None) -> Any:
        """
        Execute a coroutine function with retry and exponential backoff.

        Raises:
            PersistenceError: When the last attempt still fails
        """
        max_retries = max_retries or Config.PERSISTENCE_MAX_RETRIES
        operation = operation or getattr(func, '__name__', 'write')
        for attempt in range(max_retries):
            try:
                return await func()
            except Exception as e:
                if attempt == max_retries - 1:
                    raise PersistenceError(operation, max_retries, str(e)) from e
                logger.warning(f"Retry attempt {attempt + 1} for {operation}: {e}")
                await asyncio.sleep(Config.PERSISTENCE_RETRY_BASE_DELAY * (2 ** attempt))  # Exponential backoff
