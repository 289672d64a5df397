import asyncio
import json
from typing import Any, Callable, Dict, List, Optional, Union

import pytest

from gwprobe.channel import Channel
from gwprobe.config import ProbeConfig
from gwprobe.errors import ChannelClosed

FIXED_MS = 1_700_000_000_000


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeChannel(Channel):
    """
    In-memory channel. Frames queued with push() come out of recv();
    whatever the engine sends is decoded into `sent`. An optional responder
    gets each sent request and can push replies.
    """

    def __init__(
        self,
        frames=(),
        responder: Optional[Callable[["FakeChannel", Dict[str, Any]], None]] = None,
        fail_open: Optional[BaseException] = None,
    ) -> None:
        self.inbox: "asyncio.Queue[Union[str, bytes, BaseException]]" = asyncio.Queue()
        self.sent: List[Dict[str, Any]] = []
        self.responder = responder
        self.fail_open = fail_open
        self.opened = False
        self.closed = False
        for frame in frames:
            self.push(frame)

    def push(self, frame) -> None:
        if isinstance(frame, (str, bytes, BaseException)):
            self.inbox.put_nowait(frame)
        else:
            self.inbox.put_nowait(json.dumps(frame))

    async def open(self) -> None:
        if self.fail_open is not None:
            raise self.fail_open
        self.opened = True

    async def send(self, text: str) -> None:
        request = json.loads(text)
        self.sent.append(request)
        if self.responder is not None:
            self.responder(self, request)

    async def recv(self):
        item = await self.inbox.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if not self.closed:
            self.closed = True
            self.inbox.put_nowait(ChannelClosed(code, reason))


def challenge(nonce: Optional[str] = "abc123") -> Dict[str, Any]:
    payload = {} if nonce is None else {"nonce": nonce, "ts": FIXED_MS}
    return {"type": "event", "event": "connect.challenge", "payload": payload}


def reply_ok(channel: FakeChannel, request: Dict[str, Any]) -> None:
    channel.push({"type": "res", "id": request["id"], "ok": True, "payload": {"type": "hello-ok"}})


@pytest.fixture
def config() -> ProbeConfig:
    return ProbeConfig(
        gateway_url="ws://gateway.test/",
        token="tok-0123456789abcdef",
        platform="linux",
        user_agent="Python test",
        open_timeout=1.0,
        challenge_timeout=1.0,
        response_timeout=1.0,
    )
