# backend/qachat/client/transport.py
"""
Client transports: the realtime socket (``websockets``) and the REST
history/backfill API (``httpx``).

Both are narrow so the reconciliation layer can be driven by in-memory
fakes in tests.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from typing import Any, Dict, List, Optional, Protocol
from urllib.parse import urlencode

import httpx
import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from ..core.constants import REALTIME_WS_PATH
from ..schemas.realtime import MessagePayload

logger = logging.getLogger(__name__)


class TransportClosed(ConnectionError):
    """The socket is gone; reconnect before sending again."""


class ConversationUnavailable(Exception):
    """
    The server refused one conversation's history (removed, deleted, or
    never visible). Other conversations are unaffected.
    """

    def __init__(self, conversation_key: str, status_code: int):
        super().__init__(f"{conversation_key} unavailable (HTTP {status_code})")
        self.conversation_key = conversation_key
        self.status_code = status_code


# Statuses that mean "try again later" rather than "this request is wrong"
RETRYABLE_STATUSES = frozenset({408, 425, 429})


def _status_error(conversation_key: str, error: httpx.HTTPStatusError) -> Optional[Exception]:
    """
    Translate an HTTP error into what the reconciliation layer acts on.

    5xx and throttling become ``TransportClosed`` (reconnect with backoff),
    other 4xx become ``ConversationUnavailable``. A 401 maps to None and the
    original error propagates: the session token is no longer accepted.
    """
    status_code = error.response.status_code
    if status_code >= 500 or status_code in RETRYABLE_STATUSES:
        return TransportClosed(f"Server unavailable (HTTP {status_code})")
    if status_code == 401:
        return None
    return ConversationUnavailable(conversation_key, status_code)


class Transport(Protocol):
    async def connect(self) -> None: ...

    async def send(self, frame: Dict[str, Any]) -> None: ...

    async def recv(self) -> Dict[str, Any]: ...

    async def close(self) -> None: ...


@dataclass
class HistoryPage:
    messages: List[MessagePayload]
    has_more: bool


class HistorySource(Protocol):
    async def fetch(
        self,
        conversation_key: str,
        *,
        limit: Optional[int] = None,
        before: Optional[int] = None,
        after: Optional[int] = None,
    ) -> HistoryPage: ...

    async def mark_read(self, conversation_key: str, up_to_message_id: int) -> int: ...


class WebSocketTransport:
    """One socket per client session, authenticated with ``?token=``."""

    def __init__(self, base_url: str, token: str, open_timeout: float = 10.0):
        self._url = f"{base_url.rstrip('/')}/api/v1{REALTIME_WS_PATH}?{urlencode({'token': token})}"
        self._open_timeout = open_timeout
        self._ws: Any = None

    async def connect(self) -> None:
        try:
            self._ws = await websockets.connect(
                self._url,
                open_timeout=self._open_timeout,
                ping_interval=20,
                ping_timeout=20,
                close_timeout=5,
            )
        except (InvalidHandshake, InvalidURI) as e:
            raise TransportClosed(f"Handshake failed: {e}") from e
        logger.info("[WS] Client connected")

    async def send(self, frame: Dict[str, Any]) -> None:
        if self._ws is None:
            raise TransportClosed("Not connected")
        try:
            await self._ws.send(json.dumps(frame))
        except ConnectionClosed as e:
            raise TransportClosed(str(e)) from e

    async def recv(self) -> Dict[str, Any]:
        if self._ws is None:
            raise TransportClosed("Not connected")
        try:
            raw = await self._ws.recv()
        except ConnectionClosed as e:
            raise TransportClosed(str(e)) from e
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("Server frame is not a JSON object")
        return data

    async def close(self) -> None:
        if self._ws is not None:
            await self._ws.close()
            self._ws = None


class HistoryApi:
    """REST backfill and fallbacks over ``httpx.AsyncClient``."""

    def __init__(
        self,
        base_url: str,
        token: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._owns_client = client is None
        self._headers = {"Authorization": f"Bearer {token}"}

    async def fetch(
        self,
        conversation_key: str,
        *,
        limit: Optional[int] = None,
        before: Optional[int] = None,
        after: Optional[int] = None,
    ) -> HistoryPage:
        params = {
            k: v for k, v in (("limit", limit), ("before", before), ("after", after)) if v is not None
        }
        try:
            response = await self._client.get(
                f"/api/v1/conversations/{conversation_key}/messages",
                params=params,
                headers=self._headers,
            )
            response.raise_for_status()
        except httpx.TransportError as e:
            raise TransportClosed(f"History fetch failed: {e}") from e
        except httpx.HTTPStatusError as e:
            translated = _status_error(conversation_key, e)
            if translated is None:
                raise
            raise translated from e
        body = response.json()
        return HistoryPage(
            messages=[MessagePayload.model_validate(m) for m in body.get("messages", [])],
            has_more=bool(body.get("has_more")),
        )

    async def mark_read(self, conversation_key: str, up_to_message_id: int) -> int:
        try:
            response = await self._client.patch(
                f"/api/v1/conversations/{conversation_key}/read",
                json={"up_to_message_id": up_to_message_id},
                headers=self._headers,
            )
            response.raise_for_status()
        except httpx.TransportError as e:
            raise TransportClosed(f"Mark read failed: {e}") from e
        except httpx.HTTPStatusError as e:
            translated = _status_error(conversation_key, e)
            if translated is None:
                raise
            raise translated from e
        return int(response.json()["last_read_message_id"])

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
