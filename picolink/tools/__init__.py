from .utilities import log_exceptions, log_async_exceptions

__all__ = ["log_exceptions", "log_async_exceptions"]
