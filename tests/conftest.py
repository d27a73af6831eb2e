from __future__ import annotations

import asyncio
import json
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

import aiohttp
import pytest


def login_response(token: str = "jwt-1", expires_in: int | None = 3600) -> dict[str, Any]:
    access: dict[str, Any] = {"Token": token}
    if expires_in is not None:
        access["ExpiresIn"] = expires_in
    return {"Result": {"AccessToken": access}}


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeTransport:
    """Replays queued login responses; the last one repeats."""

    def __init__(self, *responses: dict[str, Any] | Exception, delay: float = 0.0) -> None:
        self.responses: list[dict[str, Any] | Exception] = list(responses) or [login_response()]
        self.delay = delay
        self.calls: list[tuple[str, dict[str, Any], dict[str, str]]] = []

    async def post_json(
        self,
        url: str,
        body: Mapping[str, Any],
        *,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        self.calls.append((url, dict(body), dict(headers or {})))
        if self.delay:
            await asyncio.sleep(self.delay)
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        return item


class FakeWebSocket:
    """In-memory stand-in for aiohttp.ClientWebSocketResponse."""

    def __init__(self, *frames: dict[str, Any] | str, close_after: bool = False) -> None:
        self._inbox: asyncio.Queue[aiohttp.WSMessage] = asyncio.Queue()
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self.close_code: int | None = None
        for frame in frames:
            self.push(frame)
        if close_after:
            self.push_close()

    def push(self, frame: dict[str, Any] | str) -> None:
        text = frame if isinstance(frame, str) else json.dumps(frame)
        self._inbox.put_nowait(aiohttp.WSMessage(aiohttp.WSMsgType.TEXT, text, None))

    def push_close(self, code: int = 1000) -> None:
        self.close_code = code
        self._inbox.put_nowait(aiohttp.WSMessage(aiohttp.WSMsgType.CLOSE, code, "bye"))

    async def receive(self) -> aiohttp.WSMessage:
        if self.closed and self._inbox.empty():
            return aiohttp.WSMessage(aiohttp.WSMsgType.CLOSED, None, None)
        return await self._inbox.get()

    async def send_json(self, data: dict[str, Any]) -> None:
        self.sent.append(data)

    async def close(self) -> bool:
        if self.closed:
            return False
        self.closed = True
        self.close_code = self.close_code or 1000
        self._inbox.put_nowait(aiohttp.WSMessage(aiohttp.WSMsgType.CLOSED, None, None))
        return True

    def exception(self) -> BaseException | None:
        return None


class FakeResponse:
    """Async context manager shaped like the result of ``ClientSession.post``."""

    def __init__(self, body: dict[str, Any], *, status: int = 200, delay: float = 0.0) -> None:
        self.body = body
        self.status = status
        self.delay = delay

    async def __aenter__(self) -> FakeResponse:
        if self.delay:
            await asyncio.sleep(self.delay)
        return self

    async def __aexit__(self, *exc: Any) -> None:
        return None

    async def text(self) -> str:
        return json.dumps(self.body)


class FakeSession:
    """Hands out queued websockets (or raises queued errors) on ws_connect."""

    def __init__(
        self,
        *sockets: FakeWebSocket | Exception,
        login: dict[str, Any] | None = None,
        login_delay: float = 0.0,
    ) -> None:
        self.sockets: list[FakeWebSocket | Exception] = list(sockets)
        self.connects: list[str] = []
        self.posts: list[str] = []
        self.login = login or login_response()
        self.login_delay = login_delay
        self.closed = False

    def post(self, url: str, **_kwargs: Any) -> FakeResponse:
        self.posts.append(url)
        return FakeResponse(self.login, delay=self.login_delay)

    async def ws_connect(self, url: str, **_kwargs: Any) -> FakeWebSocket:
        self.connects.append(url)
        if not self.sockets:
            raise aiohttp.ClientConnectionError("no more sockets")
        item = self.sockets.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
