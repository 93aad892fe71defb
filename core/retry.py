import logging
import time
from functools import wraps

from django.conf import settings
from django.db import InterfaceError, OperationalError

logger = logging.getLogger(__name__)


class TransientStoreFailure(Exception):
    """Raised when the datastore keeps failing after the configured retries."""


def with_store_retry(func=None, *, attempts=None, backoff=None, sleep=time.sleep):
    """
    Retry an idempotent store operation on connection/lock failures.

    Only wrap reads, natural-key upserts and idempotency-guarded writes.
    Plain reserve/deduct calls must not be wrapped.
    """

    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            max_attempts = attempts or getattr(settings, "STORE_RETRY_ATTEMPTS", 3)
            base_delay = backoff if backoff is not None else getattr(settings, "STORE_RETRY_BACKOFF", 0.2)
            for attempt in range(1, max_attempts + 1):
                try:
                    return fn(*args, **kwargs)
                except (OperationalError, InterfaceError) as exc:
                    if attempt == max_attempts:
                        logger.error("Store operation %s failed after %s attempts: %s", fn.__name__, attempt, exc)
                        raise TransientStoreFailure(str(exc)) from exc
                    delay = base_delay * (2 ** (attempt - 1))
                    logger.warning(
                        "Transient store failure in %s (attempt %s/%s), retrying in %.2fs: %s",
                        fn.__name__, attempt, max_attempts, delay, exc,
                    )
                    sleep(delay)

        return wrapper

    if func is not None:
        return decorator(func)
    return decorator
