"""
HTTP client for the remote poster service.

This module talks JSON over HTTP to the poster API:
- One reusable opener per client, released by ``close()``
- A bounded timeout on every call and no retries; the sync engine decides
  when to try again
- Transport failures classified into transient and rejected errors
"""

import json
import logging
from http.client import HTTPException
from typing import Any, Dict, List, Optional
from urllib.error import HTTPError
from urllib.parse import urlencode
from urllib.request import Request, build_opener

from models import Location, PosterDelta, Session

from .errors import RemoteRejectedError, TransientNetworkError
from .remote_service import RemoteService

logger = logging.getLogger(__name__)


class HttpRemoteService(RemoteService):
    """
    RemoteService implementation over HTTP.

    This class provides:
    - Placement, removal and update retrieval endpoints
    - Bearer authentication with the session's auth key
    - A health probe used to skip sync attempts while offline
    """

    DEFAULT_BASE_URL = "http://localhost:8080/api"
    DEFAULT_TIMEOUT = 5.0  # seconds
    HEALTH_TIMEOUT = 2.0  # seconds
    TRANSIENT_STATUSES = (408, 429)

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None):
        """
        Initialize the remote service client.

        Args:
            base_url: API base URL, without a trailing slash
            timeout: Per-request timeout in seconds
        """
        self.base_url = (base_url or self.DEFAULT_BASE_URL).rstrip('/')
        self.timeout = timeout or self.DEFAULT_TIMEOUT
        self._opener = build_opener()

    def _build_headers(self, session: Optional[Session] = None) -> Dict[str, str]:
        """Build HTTP headers for the request."""
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": "PosterSync/0.1"
        }
        if session is not None and session.auth_key:
            headers["Authorization"] = f"Bearer {session.auth_key}"
        return headers

    @staticmethod
    def _error_message(error: HTTPError) -> str:
        try:
            body = json.loads(error.read().decode('utf-8'))
            return body.get('error') or error.reason
        except (ValueError, AttributeError, OSError):
            return str(error.reason)

    def _request(
        self,
        method: str,
        path: str,
        session: Session,
        payload: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Send one request and decode its JSON body.

        Raises:
            TransientNetworkError: Timeout, connection failure, 5xx, or unreadable body
            RemoteRejectedError: 4xx status or a body with code FAILED
        """
        url = f"{self.base_url}{path}"
        if params:
            url = f"{url}?{urlencode(params)}"
        data = json.dumps(payload).encode('utf-8') if payload is not None else None
        request = Request(url, data=data, headers=self._build_headers(session), method=method)

        try:
            with self._opener.open(request, timeout=self.timeout) as response:
                status = response.status
                raw = response.read()
        except HTTPError as e:
            message = self._error_message(e)
            if e.code >= 500 or e.code in self.TRANSIENT_STATUSES:
                logger.warning(f"{method} {path} failed with {e.code}: {message}")
                raise TransientNetworkError(f"{e.code} {message}") from e
            logger.error(f"{method} {path} rejected with {e.code}: {message}")
            raise RemoteRejectedError(message, status=e.code) from e
        except (OSError, HTTPException) as e:
            # URLError, connection resets and socket timeouts all land here
            logger.warning(f"{method} {path} unreachable: {e}")
            raise TransientNetworkError(str(e)) from e

        try:
            body = json.loads(raw.decode('utf-8')) if raw else {}
        except ValueError as e:
            raise TransientNetworkError(f"Malformed response from {path}: {e}") from e
        if not isinstance(body, dict):
            raise TransientNetworkError(f"Unexpected response from {path}: {body!r}")

        if body.get('code') == 'FAILED':
            message = body.get('error', 'request failed')
            logger.error(f"{method} {path} refused: {message}")
            raise RemoteRejectedError(message, status=status)
        return body

    @staticmethod
    def _poster_payload(session: Session, location: Location) -> Dict[str, Any]:
        return {
            "user_id": session.user_id,
            "party_id": session.party_id,
            "location": location.to_dict()
        }

    @staticmethod
    def _poster_id(body: Dict[str, Any]) -> int:
        try:
            return int(body['poster_id'])
        except (KeyError, TypeError, ValueError) as e:
            raise TransientNetworkError(f"Response carried no poster id: {body!r}") from e

    def place(self, session: Session, location: Location) -> int:
        body = self._request('POST', '/posters', session, payload=self._poster_payload(session, location))
        return self._poster_id(body)

    def remove(self, session: Session, location: Location) -> int:
        body = self._request('POST', '/posters/remove', session, payload=self._poster_payload(session, location))
        return self._poster_id(body)

    def fetch_updates_since(self, session: Session, since_ms: int) -> List[PosterDelta]:
        params = {
            "user_id": session.user_id,
            "party_id": session.party_id,
            "since": since_ms // 1000
        }
        body = self._request('GET', '/posters/updates', session, params=params)
        try:
            return [
                PosterDelta(
                    server_id=int(poster['poster_id']),
                    location=Location.from_dict(poster['location']),
                    removed=bool(poster.get('removed', False))
                )
                for poster in body.get('posters', [])
            ]
        except (KeyError, TypeError, ValueError) as e:
            raise TransientNetworkError(f"Malformed poster update: {e}") from e

    def is_available(self) -> bool:
        """Test if the poster API is reachable."""
        request = Request(f"{self.base_url}/health", headers=self._build_headers(), method='GET')
        try:
            with self._opener.open(request, timeout=self.HEALTH_TIMEOUT) as response:
                return response.status == 200
        except (OSError, HTTPException):
            return False

    def close(self) -> None:
        """Release the opener's handlers."""
        self._opener.close()
        logger.debug("Remote poster service client closed")
