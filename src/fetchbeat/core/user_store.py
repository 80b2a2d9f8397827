"""
User document store with optimistic concurrency.

Every row carries a ``version`` that is bumped on each write. Writers load a
``UserState``, modify a copy of the document and call ``compare_and_swap``
with the version they loaded; a concurrent write in between makes the swap
fail with ``VersionConflictError``.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from typing import Any

from fetchbeat.core.clock import Clock, to_iso, utcnow
from fetchbeat.core.errors import NotFoundError, VersionConflictError
from fetchbeat.core.models import UserState
from fetchbeat.core.protocols import Connection


class UserStore:
    """Versioned user documents in the ``users`` table."""

    def __init__(self, conn: Connection, *, clock: Clock | None = None) -> None:
        self.conn = conn
        self._clock = clock or utcnow

    def load(self, user_id: str) -> UserState:
        row = self.conn.fetchone(
            "SELECT id, version, document FROM users WHERE id = ?", (user_id,)
        )
        if row is None:
            raise NotFoundError(f"User {user_id} not found").with_context(user_id=user_id)
        return UserState(user_id=row["id"], version=row["version"], document=json.loads(row["document"]))

    def create(self, user_id: str, document: dict[str, Any]) -> UserState:
        self.conn.execute(
            "INSERT INTO users (id, version, document, updated_at) VALUES (?, 0, ?, ?)",
            (user_id, json.dumps(document), to_iso(self._clock())),
        )
        return UserState(user_id=user_id, version=0, document=document)

    def compare_and_swap(self, user_id: str, expected_version: int, document: dict[str, Any]) -> UserState:
        """Write ``document`` only if the stored version still matches.

        Raises:
            VersionConflictError: Another writer got there first.
        """
        changed = self.conn.execute(
            """
            UPDATE users SET document = ?, version = version + 1, updated_at = ?
            WHERE id = ? AND version = ?
            """,
            (json.dumps(document), to_iso(self._clock()), user_id, expected_version),
        )
        if changed != 1:
            raise VersionConflictError(
                f"User {user_id} changed since version {expected_version}",
                expected_version=expected_version,
            ).with_context(user_id=user_id)
        return UserState(user_id=user_id, version=expected_version + 1, document=document)

    def iter_users(self, batch_size: int = 200) -> Iterator[UserState]:
        """Yield users that have at least one scheduled summary, in id order.

        Rows are read in keyset-paginated batches so a scan never holds a
        large result set.
        """
        last_id = ""
        while True:
            rows = self.conn.fetchall(
                """
                SELECT id, version, document FROM users
                WHERE id > ? AND json_array_length(document, '$.scheduled_summaries') > 0
                ORDER BY id LIMIT ?
                """,
                (last_id, batch_size),
            )
            if not rows:
                return
            for row in rows:
                yield UserState(user_id=row["id"], version=row["version"], document=json.loads(row["document"]))
            last_id = rows[-1]["id"]


__all__ = ["UserStore"]
