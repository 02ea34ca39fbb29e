"""Generic REST service over arbitrary tables."""

from pmsy.rest.service import ListResult, RestService

__all__ = [
    "ListResult",
    "RestService",
]
