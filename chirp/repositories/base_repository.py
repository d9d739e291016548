import functools
import logging

from pymongo.errors import PyMongoError

from chirp.utils.errors import StorageError

logger = logging.getLogger(__name__)

STORAGE_UNAVAILABLE = "Storage unavailable"


def storage_errors(func):
    """Turn driver failures of a repository coroutine into a logged StorageError."""
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except PyMongoError as exc:
            logger.exception("storage: %s failed", func.__qualname__)
            raise StorageError(STORAGE_UNAVAILABLE) from exc
    return wrapper
