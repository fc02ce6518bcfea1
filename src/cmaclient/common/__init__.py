from .logging import Logging, get_logger

__all__ = ("Logging", "get_logger")
