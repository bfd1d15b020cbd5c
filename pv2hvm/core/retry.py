# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
"""
Retry utilities with jittered waits.

Unlike a classic exponential backoff, control-plane throttling is retried
with a uniformly random wait inside a fixed window, and by default without
any attempt cap: a call that is throttled forever blocks forever. Callers
that run unattended should pass max_retries.
"""

from __future__ import annotations

import logging
import random
import time
from typing import Callable, Optional, TypeVar

T = TypeVar("T")


def jitter_wait(min_wait_s: float, max_wait_s: float) -> float:
    """Uniformly distributed wait inside [min_wait_s, max_wait_s]."""
    lo, hi = sorted((float(min_wait_s), float(max_wait_s)))
    return random.uniform(lo, hi)


def retry_while(
    operation: Callable[[], T],
    *,
    should_retry: Callable[[Exception], bool],
    min_wait_s: float = 5.0,
    max_wait_s: float = 15.0,
    max_retries: Optional[int] = None,
    operation_name: str = "operation",
    logger: Optional[logging.Logger] = None,
    log_level: int = logging.WARNING,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call operation() until it returns or raises an error should_retry rejects.

    Errors for which should_retry() is False propagate unmodified on the first
    occurrence. When max_retries is set and exhausted, the last retryable
    error is re-raised.

    Example:
        result = retry_while(
            lambda: client.describe_volumes(VolumeIds=[vid]),
            should_retry=is_throttled,
            operation_name="describe_volumes",
            logger=log,
        )
    """
    retries = 0
    while True:
        try:
            return operation()
        except Exception as e:
            if not should_retry(e):
                raise
            if max_retries is not None and retries >= max_retries:
                if logger:
                    logger.log(
                        logging.ERROR,
                        "%s still rate limited after %d retries: %s",
                        operation_name,
                        retries,
                        e,
                    )
                raise

            retries += 1
            wait = jitter_wait(min_wait_s, max_wait_s)
            if logger:
                logger.log(
                    log_level,
                    "%s has been rate limited (retry %d), waiting %.1fs to try again",
                    operation_name,
                    retries,
                    wait,
                )
            sleep(wait)
