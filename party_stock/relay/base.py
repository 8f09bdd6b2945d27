"""Base classes for the registration relay."""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import structlog

from ..state.models import UserDraft


class RelayStatus(Enum):
    """Registration relay outcome."""
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class RelayResult:
    """Result of relaying one registration."""
    status: RelayStatus
    message_id: Optional[str] = None
    message: Optional[str] = None
    attempt_count: int = 1
    relay_time_ms: Optional[int] = None
    error: Optional[Exception] = None

    @property
    def succeeded(self) -> bool:
        return self.status == RelayStatus.SUCCESS


class RelayError(Exception):
    """Base exception for registration relay errors."""
    pass


class RelayRetryableError(RelayError):
    """Transient relay failure (network, 5xx)."""
    pass


class RelayPermanentError(RelayError):
    """Relay failure that should not be retried (4xx, bad payload)."""
    pass


class BaseRegistrationRelay(ABC):
    """Forwards user registrations to an external queue service."""

    def __init__(self, name: str, config: Any):
        self.name = name
        self.config = config
        self.logger = structlog.get_logger(f"relay.{name}")
        self._relay_count = 0
        self._error_count = 0

    @abstractmethod
    def relay(self, draft: UserDraft) -> RelayResult:
        """
        Send one registration to the external service.

        Raises:
            RelayRetryableError: transient failure
            RelayPermanentError: failure that will not succeed on retry
        """
        pass

    def relay_with_retry(
        self,
        draft: UserDraft,
        max_retries: int = 0,
        retry_delay: float = 0.5
    ) -> RelayResult:
        """
        Relay a registration, retrying transient failures.

        Never raises; failures come back as a FAILED result so callers can
        fall back to direct registration.
        """
        attempt = 0
        last_error: Optional[Exception] = None

        while attempt <= max_retries:
            try:
                start_time = time.time()
                result = self.relay(draft)
                result.relay_time_ms = int((time.time() - start_time) * 1000)
                result.attempt_count = attempt + 1
                self._relay_count += 1
                return result

            except RelayPermanentError as e:
                self._error_count += 1
                return RelayResult(
                    status=RelayStatus.FAILED,
                    message=f"Permanent error: {str(e)}",
                    attempt_count=attempt + 1,
                    error=e
                )

            except Exception as e:
                # Unknown errors are treated as retryable
                last_error = e

            attempt += 1

            if attempt <= max_retries:
                self.logger.warning(
                    "Relay attempt failed, retrying",
                    relay_name=self.name,
                    attempt=attempt,
                    retry_delay=retry_delay,
                    error=str(last_error)
                )
                time.sleep(retry_delay)

        self._error_count += 1
        return RelayResult(
            status=RelayStatus.FAILED,
            message=f"Max retries exceeded: {str(last_error)}",
            attempt_count=attempt,
            error=last_error
        )

    def get_stats(self) -> dict[str, Any]:
        """Get relay statistics."""
        return {
            "name": self.name,
            "relay_count": self._relay_count,
            "error_count": self._error_count,
            "success_rate": (
                self._relay_count / (self._relay_count + self._error_count)
                if (self._relay_count + self._error_count) > 0 else 0.0
            )
        }


class DirectRelay(BaseRegistrationRelay):
    """Relay used when no external service is configured."""

    def __init__(self) -> None:
        super().__init__("direct", None)

    def relay(self, draft: UserDraft) -> RelayResult:
        return RelayResult(status=RelayStatus.SKIPPED, message_id="direct")
