"""Typed failures raised by the relationship services."""

from __future__ import annotations

from http import HTTPStatus


class RelationshipError(Exception):
    """Base class for service-level failures.

    ``status_code`` lets a transport layer map the failure to a response
    without inspecting the message.
    """

    status_code: HTTPStatus = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class NotFound(RelationshipError):
    status_code = HTTPStatus.NOT_FOUND


class InvalidArgument(RelationshipError):
    status_code = HTTPStatus.BAD_REQUEST


class Conflict(RelationshipError):
    status_code = HTTPStatus.CONFLICT


class Forbidden(RelationshipError):
    status_code = HTTPStatus.FORBIDDEN


class TooManyRequests(RelationshipError):
    status_code = HTTPStatus.TOO_MANY_REQUESTS


__all__ = [
    "RelationshipError",
    "NotFound",
    "InvalidArgument",
    "Conflict",
    "Forbidden",
    "TooManyRequests",
]
