"""
User directory adapters.

The gate consults a user directory for exactly one thing: the *current*
role of a target user.  Results are never cached across calls -- a role
can change between two requests and every decision must see the newest
value.

A directory answers ``None`` when the user does not exist and raises
``LookupFailedError`` when it cannot answer at all.  The two are kept
apart so the HTTP layer can respond 404 for the first and fail closed
(503) for the second.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Optional, Protocol

from opsboard.models import Role

logger = logging.getLogger(__name__)


class LookupFailedError(Exception):
    """Raised when the user directory is unreachable or errors."""

    def __init__(self, user_id: str, message: str) -> None:
        super().__init__(message)
        self.user_id = user_id


class UserDirectory(Protocol):
    def find_role_by_id(self, user_id: str) -> Optional[Role]:
        """Return the user's current role, or None if no such user exists.

        Raises:
            LookupFailedError: If the directory cannot answer.
        """
        ...


class InMemoryUserDirectory:
    """Dict-backed directory for tests, demos and local development.

    ``available`` can be switched off to simulate an outage; lookups then
    raise ``LookupFailedError``.  ``lookups`` counts calls so callers can
    assert when a lookup did or did not happen.  The counter is not
    synchronized; under concurrent requests it may undercount.
    """

    def __init__(self, roles: Mapping[str, Role] | None = None) -> None:
        self._roles: dict[str, Role] = dict(roles or {})
        self.available = True
        self.lookups = 0

    def add(self, user_id: str, role: Role) -> None:
        if user_id in self._roles:
            raise ValueError(f"User '{user_id}' already exists.")
        self._roles[user_id] = role

    def set_role(self, user_id: str, role: Role) -> None:
        if user_id not in self._roles:
            raise KeyError(f"No user with id '{user_id}'")
        self._roles[user_id] = role

    def remove(self, user_id: str) -> None:
        self._roles.pop(user_id, None)

    def find_role_by_id(self, user_id: str) -> Optional[Role]:
        self.lookups += 1
        if not self.available:
            raise LookupFailedError(user_id, "User directory is unavailable.")
        return self._roles.get(user_id)

    def __len__(self) -> int:
        return len(self._roles)

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._roles


class DocumentUserDirectory:
    """Directory backed by a document collection.

    ``find_one`` is any callable with the signature of PyMongo's
    ``Collection.find_one(filter, projection)``.  Only the ``role`` field
    is requested.  ``id_factory`` converts the path id into the stored key
    type (e.g. ``bson.ObjectId``).  An id the factory rejects with one of
    ``invalid_id_errors`` cannot name a stored user, so it is reported as
    missing.  Any other exception from the factory is a fault and raises
    ``LookupFailedError``.

    Example::

        users = MongoClient(uri).opsboard.users
        directory = DocumentUserDirectory(
            users.find_one, id_factory=ObjectId, invalid_id_errors=(InvalidId, TypeError)
        )
    """

    def __init__(
        self,
        find_one: Callable[..., Optional[Mapping[str, Any]]],
        id_factory: Callable[[str], Any] | None = None,
        id_field: str = "_id",
        role_field: str = "role",
        invalid_id_errors: tuple[type[Exception], ...] = (ValueError, TypeError),
    ) -> None:
        self._find_one = find_one
        self._id_factory = id_factory
        self._id_field = id_field
        self._role_field = role_field
        self._invalid_id_errors = invalid_id_errors

    def find_role_by_id(self, user_id: str) -> Optional[Role]:
        if self._id_factory is None:
            key: Any = user_id
        else:
            try:
                key = self._id_factory(user_id)
            except self._invalid_id_errors:
                logger.debug("User id %r is not a valid key; treating as missing", user_id)
                return None
            except Exception as exc:
                raise LookupFailedError(
                    user_id, f"Could not convert user id '{user_id}': {exc}"
                ) from exc

        try:
            document = self._find_one({self._id_field: key}, {self._role_field: 1})
        except Exception as exc:
            raise LookupFailedError(
                user_id, f"User directory lookup failed for '{user_id}': {exc}"
            ) from exc

        if document is None:
            return None

        stored = document.get(self._role_field)
        try:
            return Role(stored)
        except ValueError as exc:
            raise LookupFailedError(
                user_id, f"User '{user_id}' has an unrecognized role {stored!r}."
            ) from exc
