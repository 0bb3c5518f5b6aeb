"""Router package for API endpoints."""

from . import functions as functions
from . import remote_functions as remote_functions

__all__ = [
    "functions",
    "remote_functions",
]
