"""
Retry of store operations that lose a SQLite write-lock race.
"""

import functools
import sqlite3
import time
from typing import Callable

from loguru import logger

from .errors import StoreUnavailableError


def is_lock_error(error: sqlite3.OperationalError) -> bool:
    message = str(error).lower()
    return "locked" in message or "busy" in message


def retry_on_locked(func: Callable) -> Callable:
    """
    Retry a store method when SQLite reports the database as locked.

    The wrapped method must belong to an object with a ``db`` attribute
    (a ``Database``); its ``retry_attempts`` and ``retry_delay`` control the
    retries, with the delay doubling after each attempt. Each attempt runs a
    whole transaction, so a failed attempt leaves nothing behind.

    Raises:
        StoreUnavailableError: When every attempt hit a lock
    """
    @functools.wraps(func)
    def wrapper(self, *args, **kwargs):
        attempts = self.db.retry_attempts
        delay = self.db.retry_delay

        for attempt in range(attempts + 1):
            try:
                return func(self, *args, **kwargs)
            except sqlite3.OperationalError as e:
                if not is_lock_error(e):
                    raise
                if attempt == attempts:
                    logger.error(f"{func.__name__} gave up after {attempts + 1} attempts: {e}")
                    raise StoreUnavailableError(func.__name__) from e

                logger.warning(
                    f"Attempt {attempt + 1}/{attempts + 1} of {func.__name__} hit a lock. "
                    f"Retrying in {delay:.2f} seconds..."
                )
                time.sleep(delay)
                delay *= 2

    return wrapper
