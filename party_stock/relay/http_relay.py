"""HTTP POST registration relay."""

import json
import socket
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.parse import urlparse
from urllib.request import Request, urlopen

from ..config.defaults import RelayParams
from ..state.models import UserDraft
from .base import (
    BaseRegistrationRelay,
    RelayPermanentError,
    RelayResult,
    RelayRetryableError,
    RelayStatus,
)


class HttpRegistrationRelay(BaseRegistrationRelay):
    """Posts registrations to the external queue service as JSON."""

    def __init__(self, name: str, config: RelayParams):
        super().__init__(name, config)
        self.config: RelayParams = config

        parsed = urlparse(config.url or "")
        if not parsed.scheme or not parsed.netloc:
            raise RelayPermanentError(f"Invalid URL: {config.url}")

    def relay(self, draft: UserDraft) -> RelayResult:
        """POST the draft; a 2xx JSON body may carry a messageId."""
        try:
            data = json.dumps(draft.to_dict()).encode('utf-8')
            headers = {
                'Content-Type': 'application/json',
                'Content-Length': str(len(data)),
                'User-Agent': 'party-stock/0.1'
            }
            if self.config.headers:
                headers.update(self.config.headers)

            req = Request(
                self.config.url,
                data=data,
                headers=headers,
                method="POST"
            )

            with urlopen(req, timeout=self.config.timeout_seconds) as response:
                response_code = response.getcode()
                response_data = response.read().decode('utf-8')

                if 200 <= response_code < 300:
                    message_id = self._parse_message_id(response_data)
                    self.logger.info(
                        "Registration relayed",
                        relay_name=self.name,
                        user_id=draft.user_id,
                        response_code=response_code,
                        message_id=message_id
                    )
                    return RelayResult(
                        status=RelayStatus.SUCCESS,
                        message_id=message_id,
                        message=f"HTTP {response_code}"
                    )

                error_msg = f"HTTP {response_code}: {response_data[:200]}"
                if response_code >= 500:
                    raise RelayRetryableError(error_msg)
                raise RelayPermanentError(error_msg)

        except HTTPError as e:
            error_msg = f"HTTP {e.code}: {e.reason}"
            self.logger.warning(
                "Registration relay HTTP error",
                relay_name=self.name,
                user_id=draft.user_id,
                error_code=e.code,
                error_reason=e.reason
            )
            if e.code >= 500:
                raise RelayRetryableError(error_msg)
            raise RelayPermanentError(error_msg)

        except (URLError, socket.timeout, OSError) as e:
            self.logger.warning(
                "Registration relay network error",
                relay_name=self.name,
                user_id=draft.user_id,
                error=str(e)
            )
            raise RelayRetryableError(f"Network error: {str(e)}")

    def _parse_message_id(self, body: str) -> str:
        try:
            payload: Any = json.loads(body) if body else {}
        except json.JSONDecodeError:
            return "relayed"
        if isinstance(payload, dict) and payload.get("messageId"):
            return str(payload["messageId"])
        return "relayed"
