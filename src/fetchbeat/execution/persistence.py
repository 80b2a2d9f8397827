"""
Retry-on-conflict save for user documents.

The scheduler shares each user document with the preference API, auth
flows and the mobile client. It must never overwrite their fields, and it
must not lose its own writes when they race. ``save_with_retry`` therefore:

1. reloads the document,
2. asks a ``FieldMutator`` for new values of the fields it owns,
3. rejects any update outside the mutator's allow-list,
4. merges the updates onto the freshly loaded document,
5. writes with a version check; on conflict it backs off and starts over.

Because updates are recomputed from fresh state on every attempt, a
concurrent edit to another field (or to another job spec's schedule) is
carried forward instead of being clobbered.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, Protocol

from fetchbeat.core.clock import to_iso
from fetchbeat.core.errors import ConflictRetriesExhaustedError, ValidationError, VersionConflictError
from fetchbeat.core.logging import get_logger
from fetchbeat.core.models import SCHEDULER_OWNED_FIELDS, UserState
from fetchbeat.core.user_store import UserStore
from fetchbeat.execution.retry import ExponentialBackoff, RetryStrategy

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


class FieldMutator(Protocol):
    """Computes owned-field updates against freshly loaded state."""

    fields: frozenset[str]

    def apply(self, state: UserState) -> dict[str, Any]:
        ...


class JobRunMutator:
    """Record the outcome of one job run on the user document.

    Always owns ``scheduled_summaries`` (to set that job's ``last_run``).
    When ``history_entry`` is given it also prepends it to
    ``summary_history`` (capped at ``history_limit``) and bumps the daily
    usage counter.
    """

    def __init__(
        self,
        job_id: str,
        *,
        last_run: datetime | None = None,
        history_entry: dict[str, Any] | None = None,
        history_limit: int = 50,
        usage_date: str | None = None,
    ) -> None:
        self.job_id = job_id
        self.last_run = last_run
        self.history_entry = history_entry
        self.history_limit = history_limit
        self.usage_date = usage_date
        owned = set()
        if last_run is not None:
            owned.add("scheduled_summaries")
        if history_entry is not None:
            owned.update({"summary_history", "daily_usage_count", "last_usage_date"})
        self.fields = frozenset(owned)

    def apply(self, state: UserState) -> dict[str, Any]:
        doc = state.document
        updates: dict[str, Any] = {}

        if self.last_run is not None:
            summaries = []
            for raw in doc.get("scheduled_summaries") or []:
                if isinstance(raw, dict) and str(raw.get("id")) == self.job_id:
                    raw = {**raw, "last_run": to_iso(self.last_run)}
                summaries.append(raw)
            updates["scheduled_summaries"] = summaries

        if self.history_entry is not None:
            history = [self.history_entry, *(doc.get("summary_history") or [])]
            updates["summary_history"] = history[: self.history_limit]
            updates["daily_usage_count"] = int(doc.get("daily_usage_count") or 0) + 1
            updates["last_usage_date"] = self.usage_date

        return updates


async def save_with_retry(
    store: UserStore,
    user_id: str,
    mutator: FieldMutator,
    *,
    max_retries: int = 5,
    strategy: RetryStrategy | None = None,
    sleep: Sleep = asyncio.sleep,
    owned_fields: frozenset[str] = SCHEDULER_OWNED_FIELDS,
) -> UserState:
    """Apply ``mutator`` to ``user_id``'s document with optimistic concurrency.

    Makes up to ``max_retries + 1`` attempts.

    Raises:
        ValidationError: The mutator declared or produced a field this
            package does not own.
        ConflictRetriesExhaustedError: Every attempt lost a version race.
        NotFoundError: The user does not exist.
    """
    undeclared = set(mutator.fields) - owned_fields
    if undeclared:
        raise ValidationError(
            f"Mutator declares fields not owned by the scheduler: {sorted(undeclared)}",
            field=",".join(sorted(undeclared)),
        )
    backoff = strategy or ExponentialBackoff()
    last_error: VersionConflictError | None = None

    for attempt in range(max_retries + 1):
        state = store.load(user_id)
        updates = mutator.apply(state)
        outside = set(updates) - set(mutator.fields)
        if outside:
            raise ValidationError(
                f"Mutator changed fields outside its allow-list: {sorted(outside)}",
                field=",".join(sorted(outside)),
            ).with_context(user_id=user_id)

        document = state.copy_document()
        document.update(updates)
        try:
            saved = store.compare_and_swap(user_id, state.version, document)
        except VersionConflictError as e:
            last_error = e
            if attempt >= max_retries:
                break
            delay = backoff.next_delay(attempt)
            logger.info(
                "save.version_conflict",
                user_id=user_id,
                attempt=attempt + 1,
                retry_in=round(delay, 3),
            )
            await sleep(delay)
            continue

        if attempt:
            logger.info("save.succeeded_after_retry", user_id=user_id, attempts=attempt + 1)
        return saved

    raise ConflictRetriesExhaustedError(
        f"Gave up saving user {user_id} after {max_retries + 1} attempts",
        attempts=max_retries + 1,
        cause=last_error,
    ).with_context(user_id=user_id)


__all__ = ["FieldMutator", "JobRunMutator", "save_with_retry"]
