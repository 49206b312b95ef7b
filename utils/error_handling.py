import functools
import logging
from utils.exceptions import IRFLoopException

def handle_engine_errors(operation_name: str, wrap_as=IRFLoopException):
    """Decorator for consistent error handling in engines.

    Project exceptions pass through untouched; anything else is logged and
    re-raised as ``wrap_as`` with the original chained.
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except IRFLoopException:
                # Re-raise our custom exceptions
                raise
            except Exception as e:
                # Wrap unexpected errors
                logger = args[0].logger if args and hasattr(args[0], 'logger') else logging.getLogger()
                logger.error(f"{operation_name} failed: {e}", exc_info=True)
                raise wrap_as(f"{operation_name} failed: {str(e)}") from e
        return wrapper
    return decorator
