"""Connection requests and the connection state machine.

An edge is created ``pending`` by its sender. The receiver may accept it
(``accepted``) or decline it; the sender may cancel it while pending; either
endpoint may remove an accepted edge. Declined, cancelled and removed edges
are deleted, so at most one edge ever exists for a pair of users.
"""

from __future__ import annotations

import logging

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from db.errors import is_unique_violation
from models import (
    Connection,
    ConnectionPrivacy,
    ConnectionStatus,
    RemovedConnection,
    User,
    build_pair_key,
)
from models.base import utcnow

from .errors import Conflict, Forbidden, InvalidArgument, NotFound, TooManyRequests
from .query import (
    Match,
    PaginateOptions,
    PaginateResult,
    Pipeline,
    PopulateOption,
    aggregate_paginate,
)
from .query.common import eq
from .rate_limiter import allow_connection_request
from .relationship_validator import validate_users
from .schemas import ConnectionRead, ConnectionStatusRead

logger = logging.getLogger(__name__)

PEER_SUMMARY_FIELDS = "username display_name avatar_url"
DEFAULT_CONNECTION_SORT = "-updated_at"


async def get_accepted_peer_ids(session: AsyncSession, user_id: str) -> set[str]:
    result = await session.execute(
        select(Connection.sent_by, Connection.received_by).where(
            eq(Connection.status, ConnectionStatus.ACCEPTED.value),
            or_(eq(Connection.sent_by, user_id), eq(Connection.received_by, user_id)),
        )
    )
    return {
        received_by if sent_by == user_id else sent_by
        for sent_by, received_by in result.all()
    }


async def get_mutual_connections(
    session: AsyncSession,
    user_id: str,
    other_user_id: str,
) -> list[str]:
    """Ids connected to both users, sorted."""
    first = await get_accepted_peer_ids(session, user_id)
    second = await get_accepted_peer_ids(session, other_user_id)
    return sorted(first & second)


async def _get_pair_connection(
    session: AsyncSession,
    user_id: str,
    other_user_id: str,
) -> Connection | None:
    result = await session.execute(
        select(Connection).where(eq(Connection.pair_key, build_pair_key(user_id, other_user_id)))
    )
    return result.scalar_one_or_none()


async def _ensure_receiver_accepts_requests(
    session: AsyncSession,
    sender: User,
    receiver: User,
) -> None:
    privacy = receiver.connection_privacy
    if privacy == ConnectionPrivacy.NOBODY.value:
        raise InvalidArgument("This user is not accepting connection requests")
    if privacy == ConnectionPrivacy.FRIEND_TO_FRIEND.value:
        mutual = await get_mutual_connections(session, sender.id, receiver.id)
        if not mutual:
            raise InvalidArgument(
                "This user only accepts connection requests from friends of friends"
            )


async def add_connection(
    session: AsyncSession,
    sender_id: str,
    receiver_id: str,
) -> ConnectionRead:
    """Send a connection request from ``sender_id`` to ``receiver_id``."""
    sender, receiver = await validate_users(session, sender_id, receiver_id, "Connect")
    await _ensure_receiver_accepts_requests(session, sender, receiver)

    existing = await _get_pair_connection(session, sender.id, receiver.id)
    if existing is not None:
        raise Conflict(f"Connection already exists with status: {existing.status}")

    if not await allow_connection_request(sender.id):
        raise TooManyRequests("Too many connection requests, try again later")

    connection = Connection(
        sent_by=sender.id,
        received_by=receiver.id,
        status=ConnectionStatus.PENDING.value,
        pair_key=build_pair_key(sender.id, receiver.id),
    )
    session.add(connection)
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        if not is_unique_violation(exc):
            raise
        existing = await _get_pair_connection(session, sender.id, receiver.id)
        status = existing.status if existing is not None else ConnectionStatus.PENDING.value
        raise Conflict(f"Connection already exists with status: {status}") from exc

    logger.info(
        "Connection requested",
        extra={"connection_id": connection.id, "sent_by": sender.id, "received_by": receiver.id},
    )
    return ConnectionRead.model_validate(connection)


async def _load_connection(session: AsyncSession, connection_id: str) -> Connection:
    connection = await session.get(Connection, connection_id)
    if connection is None:
        raise NotFound("Connection not found")
    return connection


def _ensure_status(connection: Connection, expected: ConnectionStatus) -> None:
    if connection.status != expected.value:
        raise Conflict(
            f"Connection is {connection.status}, expected {expected.value}"
        )


async def accept_connection(
    session: AsyncSession,
    connection_id: str,
    user_id: str,
) -> ConnectionRead:
    connection = await _load_connection(session, connection_id)
    if connection.received_by != user_id:
        raise Forbidden("Only the receiver can accept a connection request")
    _ensure_status(connection, ConnectionStatus.PENDING)

    connection.status = ConnectionStatus.ACCEPTED.value
    connection.updated_at = utcnow()
    await session.commit()

    logger.info(
        "Connection accepted",
        extra={"connection_id": connection.id, "user_id": user_id},
    )
    return ConnectionRead.model_validate(connection)


async def decline_connection(
    session: AsyncSession,
    connection_id: str,
    user_id: str,
) -> ConnectionRead:
    """Decline a pending request; the edge is deleted and reported as declined."""
    connection = await _load_connection(session, connection_id)
    if connection.received_by != user_id:
        raise Forbidden("Only the receiver can decline a connection request")
    _ensure_status(connection, ConnectionStatus.PENDING)

    declined = ConnectionRead.model_validate(connection).model_copy(
        update={"status": ConnectionStatus.DECLINED.value, "updated_at": utcnow()}
    )
    await session.delete(connection)
    await session.commit()

    logger.info(
        "Connection declined",
        extra={"connection_id": connection_id, "user_id": user_id},
    )
    return declined


async def cancel_connection(
    session: AsyncSession,
    connection_id: str,
    user_id: str,
) -> None:
    connection = await _load_connection(session, connection_id)
    if connection.sent_by != user_id:
        raise Forbidden("Only the sender can cancel a connection request")
    _ensure_status(connection, ConnectionStatus.PENDING)

    await session.delete(connection)
    await session.commit()
    logger.info(
        "Connection request cancelled",
        extra={"connection_id": connection_id, "user_id": user_id},
    )


async def remove_connection(
    session: AsyncSession,
    connection_id: str,
    user_id: str,
) -> None:
    """Remove an accepted connection and remember who removed whom."""
    connection = await _load_connection(session, connection_id)
    if user_id not in (connection.sent_by, connection.received_by):
        raise Forbidden("Only a connected user can remove this connection")
    _ensure_status(connection, ConnectionStatus.ACCEPTED)

    peer_id = connection.received_by if connection.sent_by == user_id else connection.sent_by
    marker = await session.get(RemovedConnection, (user_id, peer_id))
    if marker is None:
        session.add(RemovedConnection(user_id=user_id, removed_user_id=peer_id))
    else:
        marker.removed_at = utcnow()
        marker.updated_at = marker.removed_at
    await session.delete(connection)
    await session.commit()

    logger.info(
        "Connection removed",
        extra={"connection_id": connection_id, "user_id": user_id, "peer_id": peer_id},
    )


async def check_connection_status(
    session: AsyncSession,
    user_id: str,
    other_user_id: str,
) -> ConnectionStatusRead:
    connection = await _get_pair_connection(session, user_id, other_user_id)
    if connection is None:
        return ConnectionStatusRead(status="none")
    return ConnectionStatusRead(
        status=connection.status,
        connection_id=connection.id,
        sent_by=connection.sent_by if connection.status == ConnectionStatus.PENDING.value else None,
    )


def _with_peers(options: PaginateOptions | None, *paths: str) -> PaginateOptions:
    return (options or PaginateOptions()).with_defaults(
        sort_by=DEFAULT_CONNECTION_SORT,
        populate=[PopulateOption(path=path, select=PEER_SUMMARY_FIELDS) for path in paths],
    )


async def get_my_connections(
    session: AsyncSession,
    user_id: str,
    options: PaginateOptions | None = None,
) -> PaginateResult:
    pipeline = Pipeline().append(
        Match(
            {
                "status": ConnectionStatus.ACCEPTED.value,
                "$or": [{"sent_by": user_id}, {"received_by": user_id}],
            }
        )
    )
    return await aggregate_paginate(
        session, Connection, pipeline, _with_peers(options, "sent_by", "received_by")
    )


async def get_received_requests(
    session: AsyncSession,
    user_id: str,
    options: PaginateOptions | None = None,
) -> PaginateResult:
    pipeline = Pipeline().append(
        Match({"received_by": user_id, "status": ConnectionStatus.PENDING.value})
    )
    return await aggregate_paginate(
        session, Connection, pipeline, _with_peers(options, "sent_by", "received_by")
    )


async def get_sent_requests(
    session: AsyncSession,
    user_id: str,
    options: PaginateOptions | None = None,
) -> PaginateResult:
    pipeline = Pipeline().append(
        Match({"sent_by": user_id, "status": ConnectionStatus.PENDING.value})
    )
    return await aggregate_paginate(
        session, Connection, pipeline, _with_peers(options, "sent_by", "received_by")
    )


__all__ = [
    "accept_connection",
    "add_connection",
    "cancel_connection",
    "check_connection_status",
    "decline_connection",
    "get_accepted_peer_ids",
    "get_my_connections",
    "get_mutual_connections",
    "get_received_requests",
    "get_sent_requests",
    "remove_connection",
]
