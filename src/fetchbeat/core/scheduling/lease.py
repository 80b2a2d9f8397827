"""Lease lock for the scheduler tick role.

Manifesto:
    Every process in the fleet runs the same tick loop, but only one of them
    may scan job specs at a time. The lease is a single row in the shared
    store; acquiring it is one conditional upsert, so two processes racing
    for an expired lease can never both win. A holder that stops renewing
    simply loses the lease when ``expires_at`` passes.

Tags:
    scheduling, leader-election, lease, TTL, compare-and-swap

Doc-Types:
    api-reference, architecture-diagram


    Lease Lifecycle::

        (no row) ──try_acquire──► HELD(holder=A, expires=now+L)
                                     │  renew(A) every L/3
                                     │  extends expires
                                     ▼
        HELD(A) ──now >= expires──► EXPIRED ──try_acquire(B)──► HELD(B)
        HELD(A) ──release(A)──────► (no row)
        HELD(A) ──force_release(A, actor)──► (no row)   [admin]
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from fetchbeat.core.clock import Clock, parse_iso, to_iso, utcnow
from fetchbeat.core.errors import StoreUnavailableError
from fetchbeat.core.logging import get_logger
from fetchbeat.core.protocols import Connection

logger = get_logger(__name__)

DEFAULT_RESOURCE = "scheduler-main"
DEFAULT_LEASE_SECONDS = 300.0


@dataclass(frozen=True)
class Lease:
    """A lease row as read from the store."""

    resource: str
    holder: str
    acquired_at: datetime
    heartbeat_at: datetime
    expires_at: datetime

    def is_valid(self, now: datetime) -> bool:
        return now < self.expires_at

    def to_dict(self, now: datetime | None = None) -> dict[str, Any]:
        result: dict[str, Any] = {
            "resource": self.resource,
            "holder": self.holder,
            "acquired_at": to_iso(self.acquired_at),
            "heartbeat_at": to_iso(self.heartbeat_at),
            "expires_at": to_iso(self.expires_at),
        }
        if now is not None:
            result["time_remaining_seconds"] = max(0.0, (self.expires_at - now).total_seconds())
            result["seconds_since_heartbeat"] = max(0.0, (now - self.heartbeat_at).total_seconds())
        return result


class LeaseLock:
    """Store-backed lease over a single named resource.

    Example:
        >>> lock = LeaseLock(conn, resource="scheduler-main")
        >>> if lock.try_acquire("web-1", lease_seconds=300):
        ...     ...  # scan job specs
        ...     lock.renew("web-1")
    """

    def __init__(
        self,
        conn: Connection,
        *,
        resource: str = DEFAULT_RESOURCE,
        lease_seconds: float = DEFAULT_LEASE_SECONDS,
        clock: Clock | None = None,
    ) -> None:
        self.conn = conn
        self.resource = resource
        self.lease_seconds = lease_seconds
        self._clock = clock or utcnow

    def try_acquire(self, holder: str, lease_seconds: float | None = None) -> bool:
        """Take the lease if it is free, expired, or already ours.

        A single ``INSERT ... ON CONFLICT DO UPDATE ... WHERE`` decides the
        race; the changed-row count says whether this caller won. Re-acquiring
        an owned lease refreshes it and keeps the original ``acquired_at``.

        Returns:
            True if ``holder`` now owns the lease. False if someone else does
            or the store is unavailable.
        """
        duration = lease_seconds if lease_seconds is not None else self.lease_seconds
        now = self._clock()
        expires = now + timedelta(seconds=duration)
        try:
            changed = self.conn.execute(
                """
                INSERT INTO scheduler_leases (resource, holder, acquired_at, heartbeat_at, expires_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(resource) DO UPDATE SET
                    acquired_at = CASE
                        WHEN scheduler_leases.holder = excluded.holder
                        THEN scheduler_leases.acquired_at
                        ELSE excluded.acquired_at
                    END,
                    holder = excluded.holder,
                    heartbeat_at = excluded.heartbeat_at,
                    expires_at = excluded.expires_at
                WHERE scheduler_leases.expires_at <= excluded.acquired_at
                   OR scheduler_leases.holder = excluded.holder
                """,
                (self.resource, holder, to_iso(now), to_iso(now), to_iso(expires)),
            )
        except StoreUnavailableError as e:
            logger.warning("lease.acquire_store_unavailable", resource=self.resource, holder=holder, error=str(e))
            return False

        if changed == 1:
            logger.debug("lease.acquired", resource=self.resource, holder=holder, expires_at=to_iso(expires))
            return True
        logger.debug("lease.held_elsewhere", resource=self.resource, holder=holder)
        return False

    def renew(self, holder: str, lease_seconds: float | None = None) -> bool:
        """Extend the lease, only while ``holder`` owns it and it has not expired.

        Returns:
            False if the lease was lost (expired, taken over, released) or the
            store could not be reached.
        """
        duration = lease_seconds if lease_seconds is not None else self.lease_seconds
        now = self._clock()
        expires = now + timedelta(seconds=duration)
        try:
            changed = self.conn.execute(
                """
                UPDATE scheduler_leases SET heartbeat_at = ?, expires_at = ?
                WHERE resource = ? AND holder = ? AND expires_at > ?
                """,
                (to_iso(now), to_iso(expires), self.resource, holder, to_iso(now)),
            )
        except StoreUnavailableError as e:
            logger.warning("lease.renew_store_unavailable", resource=self.resource, holder=holder, error=str(e))
            return False
        if changed != 1:
            logger.info("lease.renew_rejected", resource=self.resource, holder=holder)
            return False
        return True

    def release(self, holder: str) -> bool:
        """Give up the lease. Only the current holder can release it."""
        changed = self.conn.execute(
            "DELETE FROM scheduler_leases WHERE resource = ? AND holder = ?",
            (self.resource, holder),
        )
        if changed:
            logger.info("lease.released", resource=self.resource, holder=holder)
        return changed == 1

    def force_release(self, holder: str, actor: str) -> bool:
        """Admin override: delete the lease row owned by ``holder``.

        Unlike ``release`` this is called on behalf of an operator, not the
        holder itself, and is logged with the operator identity.
        """
        changed = self.conn.execute(
            "DELETE FROM scheduler_leases WHERE resource = ? AND holder = ?",
            (self.resource, holder),
        )
        logger.warning(
            "lease.force_released",
            resource=self.resource,
            holder=holder,
            actor=actor,
            released=bool(changed),
        )
        return changed == 1

    def current_lease(self) -> Lease | None:
        """Return the lease if one exists and is still valid."""
        row = self.conn.fetchone(
            "SELECT resource, holder, acquired_at, heartbeat_at, expires_at "
            "FROM scheduler_leases WHERE resource = ?",
            (self.resource,),
        )
        if row is None:
            return None
        lease = Lease(
            resource=row["resource"],
            holder=row["holder"],
            acquired_at=parse_iso(row["acquired_at"]),
            heartbeat_at=parse_iso(row["heartbeat_at"]),
            expires_at=parse_iso(row["expires_at"]),
        )
        if not lease.is_valid(self._clock()):
            return None
        return lease

    def is_held_by(self, holder: str) -> bool:
        lease = self.current_lease()
        return lease is not None and lease.holder == holder

    def cleanup_expired(self) -> int:
        """Delete expired lease rows for every resource.

        Returns:
            Number of rows removed.
        """
        count = self.conn.execute(
            "DELETE FROM scheduler_leases WHERE expires_at <= ?",
            (to_iso(self._clock()),),
        )
        if count > 0:
            logger.info("lease.cleaned_up", count=count)
        return count

    def status(self) -> dict[str, Any]:
        """Lease view for operators.

        ``heartbeat_healthy`` is true when the holder renewed within the last
        two heartbeat intervals.
        """
        now = self._clock()
        lease = self.current_lease()
        if lease is None:
            return {"resource": self.resource, "held": False, "lease": None, "heartbeat_healthy": False}
        since = (now - lease.heartbeat_at).total_seconds()
        return {
            "resource": self.resource,
            "held": True,
            "lease": lease.to_dict(now),
            "heartbeat_healthy": since <= 2 * (self.lease_seconds / 3),
        }


__all__ = ["DEFAULT_LEASE_SECONDS", "DEFAULT_RESOURCE", "Lease", "LeaseLock"]
