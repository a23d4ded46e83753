"""Session-scoped budget for billable pricing-search calls.

Each execution context (the API process, a pricing client) owns its own
``RateLimiter`` over its own ``KeyValueStore``. The two copies are
reconciled explicitly: the client sends its record with every compare
request and the server adopts it via ``sync_with_client_session``; the
server returns its stats and the client adopts those.

A session record is ACTIVE until ``session_timeout_ms`` after its start,
then it is replaced by a fresh record on the next access. Exhaustion
(``call_count == max_calls_per_session``) is computed, never stored, and
only clears through expiry or ``reset_session``.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

import structlog
from pydantic import ValidationError

from prospec.models.contracts import SessionRecord, SessionStats
from prospec.utils.kv_store import KeyValueStore

log = structlog.get_logger("rate_limiter")

SESSION_STORAGE_KEY = "prospec-serp-api-session"
DEFAULT_SESSION_KEY = "default"
MAX_CALLS_PER_SESSION = 50
SESSION_TIMEOUT_MS = 24 * 60 * 60 * 1000


class RateLimiter:
    def __init__(
        self,
        store: KeyValueStore,
        *,
        max_calls_per_session: int = MAX_CALLS_PER_SESSION,
        session_timeout_ms: int = SESSION_TIMEOUT_MS,
        server_side: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.max_calls_per_session = max_calls_per_session
        self.session_timeout_ms = session_timeout_ms
        self.server_side = server_side
        self._clock = clock

    def now_ms(self) -> int:
        return round(self._clock() * 1000)

    @staticmethod
    def storage_key(session_key: str) -> str:
        return f"{SESSION_STORAGE_KEY}:{session_key}"

    # --- persistence ---

    def _new_session(self, session_key: str) -> SessionRecord:
        record = SessionRecord(call_count=0, session_start_time=self.now_ms(), last_call_time=0)
        self._save(session_key, record)
        return record

    def _save(self, session_key: str, record: SessionRecord) -> None:
        try:
            payload = record.model_dump_json(by_alias=True)
            self.store.set_item(self.storage_key(session_key), payload)
        except (OSError, ValueError) as exc:
            log.error("rate_limit_session_save_failed", session_key=session_key, error=str(exc))

    def _load(self, session_key: str) -> SessionRecord:
        """Return the live record, replacing missing, unreadable or expired ones."""
        try:
            raw = self.store.get_item(self.storage_key(session_key))
        except (OSError, ValueError) as exc:
            log.error("rate_limit_session_read_failed", session_key=session_key, error=str(exc))
            return self._new_session(session_key)

        if raw is None:
            log.info("rate_limit_session_created", session_key=session_key)
            return self._new_session(session_key)

        try:
            record = SessionRecord.model_validate_json(raw)
        except ValidationError as exc:
            log.warning(
                "rate_limit_session_corrupt",
                session_key=session_key,
                error=str(exc)[:200],
            )
            return self._new_session(session_key)

        if self.now_ms() - record.session_start_time > self.session_timeout_ms:
            log.info("rate_limit_session_expired", session_key=session_key)
            return self._new_session(session_key)

        return record

    # --- operations ---

    def get_session(self, session_key: str = DEFAULT_SESSION_KEY) -> SessionRecord:
        """Current record for ``session_key`` (a copy; mutating it has no effect)."""
        return self._load(session_key).model_copy()

    def can_make_call(self, session_key: str = DEFAULT_SESSION_KEY) -> bool:
        return self._load(session_key).call_count < self.max_calls_per_session

    def record_call(self, session_key: str = DEFAULT_SESSION_KEY) -> bool:
        """Count one call against the session. False (and no change) when exhausted."""
        record = self._load(session_key)
        if record.call_count >= self.max_calls_per_session:
            log.warning(
                "rate_limit_reached",
                session_key=session_key,
                max_calls=self.max_calls_per_session,
            )
            return False

        record.call_count += 1
        record.last_call_time = self.now_ms()
        self._save(session_key, record)
        log.info(
            "rate_limit_call_recorded",
            session_key=session_key,
            count=record.call_count,
            max_calls=self.max_calls_per_session,
        )
        return True

    def get_session_stats(self, session_key: str = DEFAULT_SESSION_KEY) -> SessionStats:
        record = self._load(session_key)
        return SessionStats(
            calls_used=record.call_count,
            calls_remaining=self.max_calls_per_session - record.call_count,
            max_calls=self.max_calls_per_session,
            session_age=self.now_ms() - record.session_start_time,
        )

    def get_remaining_calls(self, session_key: str = DEFAULT_SESSION_KEY) -> int:
        return max(0, self.max_calls_per_session - self._load(session_key).call_count)

    def sync_with_client_session(
        self,
        session_key: str,
        client_record: SessionRecord | dict[str, Any],
    ) -> bool:
        """Adopt a client-reported record in place of the server's own.

        The client is trusted: a valid, unexpired record overwrites whatever
        the server holds, including a higher count. Invalid or expired
        records leave the server record untouched. Returns True if adopted.
        """
        if not self.server_side:
            return False

        if not isinstance(client_record, SessionRecord):
            try:
                client_record = SessionRecord.model_validate(client_record)
            except ValidationError:
                log.info("rate_limit_sync_rejected", session_key=session_key, reason="malformed")
                return False

        now = self.now_ms()
        if (
            client_record.call_count < 0
            or client_record.session_start_time <= 0
            or now - client_record.session_start_time >= self.session_timeout_ms
        ):
            log.info(
                "rate_limit_sync_rejected",
                session_key=session_key,
                reason="invalid_or_expired",
                call_count=client_record.call_count,
            )
            return False

        self._save(
            session_key,
            SessionRecord(
                call_count=client_record.call_count,
                session_start_time=client_record.session_start_time,
                last_call_time=client_record.last_call_time or now,
            ),
        )
        log.info(
            "rate_limit_synced_from_client",
            session_key=session_key,
            call_count=client_record.call_count,
            session_age=now - client_record.session_start_time,
        )
        return True

    def adopt_server_stats(self, session_key: str, stats: SessionStats) -> None:
        """Overwrite the local record with the usage the server reported."""
        now = self.now_ms()
        self._save(
            session_key,
            SessionRecord(
                call_count=stats.calls_used,
                session_start_time=now - stats.session_age,
                last_call_time=now,
            ),
        )
        log.debug(
            "rate_limit_adopted_server_stats",
            session_key=session_key,
            calls_used=stats.calls_used,
        )

    def reset_session(self, session_key: str = DEFAULT_SESSION_KEY) -> None:
        try:
            self.store.remove_item(self.storage_key(session_key))
        except (OSError, ValueError) as exc:
            log.error("rate_limit_session_reset_failed", session_key=session_key, error=str(exc))
            return
        log.info("rate_limit_session_reset", session_key=session_key)
