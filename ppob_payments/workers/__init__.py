"""Background workers."""
from .scheduler import PeriodicTask

__all__ = ["PeriodicTask"]
