#!/usr/bin/env python3



from typing import Callable
import functools
import logging


def log_exceptions(func: Callable) -> Callable:
    """
    Decorator that logs exceptions with full traceback and re-raises them.

    Example:
    >>> from picolink.tools import log_exceptions
    >>>
    >>> @log_exceptions
    ... def parse_args(argv):
    ...     ...

    What happens:
    - Exception is caught
    - Logged with traceback
    - Re-raised (program flow continues normally)
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except Exception as e:
            # Get logger - uses the module where the function is defined
            logger = logging.getLogger(func.__module__)
            logger.error(
                f"Exception in {func.__name__}: {e}",
                exc_info=True
            )
            raise

    return wrapper


def log_async_exceptions(func: Callable) -> Callable:
    """
    Coroutine version of :func:`log_exceptions`.

    Meant for background tasks, whose exceptions otherwise sit unseen
    on the task object until someone awaits it.
    """
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            logger = logging.getLogger(func.__module__)
            logger.error(
                f"Exception in {func.__name__}: {e}",
                exc_info=True
            )
            raise

    return wrapper
