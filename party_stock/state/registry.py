"""
Session registry.

Maps session ids to their MarketSession and owns session lifecycle (create,
destroy, expiry, snapshot/restore) and user maintenance. The registry map is
guarded by its own lock, used only for lookup, creation and removal; all
per-session work happens under the session's lock.
"""

import threading
from datetime import datetime
from typing import Any, Optional

import structlog

from ..config.defaults import config_from_dict
from ..config.loader import ConfigLoader
from ..config.validation import ConfigValidator
from ..errors import (
    AlreadyExistsError,
    InvalidConfigError,
    PersistenceError,
    SessionClosedError,
    SessionNotFoundError,
)
from ..market.inventory import HoldingLimitPolicy
from ..persistence.snapshot_store import SnapshotStore
from ..relay import BaseRegistrationRelay, DirectRelay, RelayError, create_relay
from ..utils.time import is_expired
from .models import RegistrationResult, SessionPhase, User, UserDraft
from .session import MarketSession

logger = structlog.get_logger(__name__)


class SessionRegistry:
    """Registry of live trading sessions."""

    def __init__(
        self,
        config_loader: Optional[ConfigLoader] = None,
        store: Optional[SnapshotStore] = None,
        relay: Optional[BaseRegistrationRelay] = None
    ) -> None:
        self.logger = logger
        self.config_loader = config_loader or ConfigLoader.create()
        self.store = store
        self._relay = relay
        self._sessions: dict[str, MarketSession] = {}
        self._relays: dict[str, BaseRegistrationRelay] = {}
        self._lock = threading.Lock()

    # Lifecycle

    def create(
        self,
        session_id: str,
        overrides: Optional[dict[str, Any]] = None,
        holding_limit: Optional[HoldingLimitPolicy] = None
    ) -> MarketSession:
        """
        Create a session from merged configuration.

        Raises:
            AlreadyExistsError: session_id is in use
            InvalidConfigError: merged configuration failed validation
        """
        merged = self.config_loader.merge_config(session_id, overrides)
        errors = ConfigValidator.validate_config(merged)
        if errors:
            messages = [f"{err.field}: {err.message} (got: {err.value})" for err in errors]
            self.logger.error(
                "Session configuration validation failed",
                session_id=session_id,
                errors=messages
            )
            raise InvalidConfigError("; ".join(messages), errors=errors)

        session = MarketSession(session_id, config_from_dict(merged), holding_limit)

        with self._lock:
            if session_id in self._sessions:
                raise AlreadyExistsError(f"Session {session_id} already exists",
                                         context={"session_id": session_id})
            self._sessions[session_id] = session

        with session.lock:
            self.commit(session)

        self.logger.info(
            "Created session",
            session_id=session_id,
            companies=list(session.companies),
            max_rounds=session.config.market.max_rounds
        )
        return session

    def get(self, session_id: str) -> MarketSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found", session_id=session_id)
        return session

    def exists(self, session_id: str) -> bool:
        return session_id in self._sessions

    def session_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._sessions)

    def destroy(self, session_id: str) -> MarketSession:
        """Drop a session and its snapshot."""
        with self._lock:
            session = self._sessions.pop(session_id, None)
            self._relays.pop(session_id, None)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found", session_id=session_id)

        if self.store:
            self.store.delete(session_id)

        self.logger.info(
            "Destroyed session",
            session_id=session_id,
            final_round=session.round,
            final_phase=session.phase.value
        )
        return session

    def expire_sessions(self, now: Optional[datetime] = None) -> list[str]:
        """Destroy sessions older than their configured TTL."""
        with self._lock:
            expired = [
                sid for sid, session in self._sessions.items()
                if is_expired(session.created_at, session.config.session.ttl_hours, now)
            ]

        for session_id in expired:
            try:
                self.destroy(session_id)
            except SessionNotFoundError:
                continue

        if expired:
            self.logger.info("Expired sessions", session_ids=expired)
        return expired

    def commit(self, session: MarketSession) -> None:
        """Publish the session's state and persist it; callers hold the session lock."""
        session.publish()
        if not self.store:
            return
        try:
            self.store.save(session.to_dict())
        except PersistenceError as e:
            self.logger.error(
                "Failed to persist session snapshot",
                session_id=session.id,
                round=session.round,
                error=str(e)
            )

    def snapshot(self, session_id: str) -> dict[str, Any]:
        session = self.get(session_id)
        with session.lock:
            return session.to_dict()

    def restore(self, data: dict[str, Any],
                holding_limit: Optional[HoldingLimitPolicy] = None) -> MarketSession:
        """Install a session from a snapshot, replacing any live session with the same id."""
        session = MarketSession.from_dict(data, holding_limit)
        with self._lock:
            self._sessions[session.id] = session
            self._relays.pop(session.id, None)

        self.logger.info(
            "Restored session",
            session_id=session.id,
            round=session.round,
            phase=session.phase.value,
            users=session.ledger.user_count()
        )
        return session

    # Users

    def register_user(self, session_id: str, draft: UserDraft) -> RegistrationResult:
        """
        Admit a user, relaying the registration on a best-effort basis.

        The relay is called without holding the session lock. Its failure is
        logged and the user is admitted directly.

        Raises:
            SessionNotFoundError, SessionClosedError, AlreadyExistsError
        """
        session = self.get(session_id)
        self._check_registrable(session, draft)

        result = self._relay_for(session).relay_with_retry(
            draft,
            max_retries=session.config.relay.retry_attempts,
            retry_delay=session.config.relay.retry_delay_seconds
        )
        if result.succeeded:
            message_id = result.message_id or "relayed"
        else:
            message_id = "direct"
            if result.error is not None:
                self.logger.warning(
                    "Registration relay failed, registering directly",
                    session_id=session_id,
                    user_id=draft.user_id,
                    attempts=result.attempt_count,
                    message=result.message
                )

        with session.lock:
            self._check_registrable(session, draft)
            money = draft.money if draft.money is not None else session.config.account.initial_money
            user = session.ledger.add_user(draft.user_id, money, draft.introduction)
            self.commit(session)

        self.logger.info(
            "Registered user",
            session_id=session_id,
            user_id=user.id,
            index=user.index,
            message_id=message_id
        )
        return RegistrationResult(user=user, message_id=message_id)

    def remove_user(self, session_id: str, user_id: str) -> User:
        session = self.get(session_id)
        with session.lock:
            user = session.ledger.remove_user(user_id)
            self.commit(session)
        self.logger.info("Removed user", session_id=session_id, user_id=user_id)
        return user

    def remove_all_users(self, session_id: str) -> int:
        session = self.get(session_id)
        with session.lock:
            count = session.ledger.remove_all()
            self.commit(session)
        self.logger.info("Removed all users", session_id=session_id, removed=count)
        return count

    def align_index(self, session_id: str) -> list[User]:
        """Compact user indexes after removals."""
        session = self.get(session_id)
        with session.lock:
            users = session.ledger.reindex()
            self.commit(session)
        return users

    def set_introduction(self, session_id: str, user_id: str, introduction: str) -> User:
        session = self.get(session_id)
        with session.lock:
            user = session.ledger.set_introduction(user_id, introduction)
            self.commit(session)
        return user

    def get_user(self, session_id: str, user_id: str) -> User:
        return self.get(session_id).ledger.get_user(user_id)

    def get_user_list(self, session_id: str) -> list[User]:
        return self.get(session_id).ledger.users()

    def get_user_count(self, session_id: str) -> int:
        return self.get(session_id).ledger.user_count()

    def _check_registrable(self, session: MarketSession, draft: UserDraft) -> None:
        if session.phase == SessionPhase.CLOSED:
            raise SessionClosedError(f"Session {session.id} is closed")
        if session.ledger.has_user(draft.user_id):
            raise AlreadyExistsError(f"User {draft.user_id} already registered",
                                     context={"user_id": draft.user_id})

    def _relay_for(self, session: MarketSession) -> BaseRegistrationRelay:
        if self._relay is not None:
            return self._relay
        relay = self._relays.get(session.id)
        if relay is None:
            try:
                relay = create_relay(session.config.relay)
            except RelayError as e:
                self.logger.warning(
                    "Registration relay unavailable, registering directly",
                    session_id=session.id,
                    url=session.config.relay.url,
                    error=str(e)
                )
                relay = DirectRelay()
            self._relays[session.id] = relay
        return relay
