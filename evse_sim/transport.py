import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional

import websockets
from ocpp.messages import Call

from .codec import Message, decode, encode_call, encode_result

logger = logging.getLogger(__name__)

Deliver = Callable[[str], Awaitable[None]]

OCPP_SUBPROTOCOL = "ocpp2.0.1"


class WebSocketLink:
    """Full-duplex connection to a real CSMS."""

    simulated = False

    def __init__(self, url: str, deliver: Deliver, on_closed: Callable[[], None]):
        self.url = url
        self._deliver = deliver
        self._on_closed = on_closed
        self._ws = None
        self._reader: Optional[asyncio.Task] = None
        self._closing = False

    async def open(self):
        self._ws = await websockets.connect(self.url, subprotocols=[OCPP_SUBPROTOCOL])
        self._reader = asyncio.create_task(self._read())

    async def _read(self):
        try:
            async for raw in self._ws:
                await self._deliver(raw)
        except websockets.exceptions.ConnectionClosed as e:
            logger.warning(f"CSMS connection closed: {e}")
        finally:
            if not self._closing:
                self._on_closed()

    async def send(self, raw: str):
        await self._ws.send(raw)

    async def close(self):
        self._closing = True
        if self._reader is not None and self._reader is not asyncio.current_task():
            self._reader.cancel()
        if self._ws is not None:
            await self._ws.close()


class SimulatedCSMS:
    """In-process CSMS that answers every CALL with a canned Accepted reply.

    Replies arrive after ``delay`` seconds through the same ``deliver``
    coroutine a real connection feeds. :meth:`request` plays a CSMS-initiated
    command into the station and returns the station's correlated reply.
    """

    simulated = True
    url = "sim://csms"

    def __init__(self, deliver: Deliver, delay: float = 0.35, heartbeat_interval: int = 30):
        self._deliver = deliver
        self.delay = delay
        self.heartbeat_interval = heartbeat_interval
        self.calls: List[Call] = []
        self.replies: Dict[str, Message] = {}
        # every CALLRESULT/CALLERROR the station has sent, in order
        self.answered: List[Message] = []
        self._tasks = set()
        self.closed = False

    def calls_for(self, action: str) -> List[Call]:
        return [c for c in self.calls if c.action == action]

    def response_for(self, action: str) -> dict:
        now = datetime.now(timezone.utc).isoformat()
        if action == "BootNotification":
            return {"currentTime": now, "interval": self.heartbeat_interval, "status": "Accepted"}
        if action == "Heartbeat":
            return {"currentTime": now}
        if action in ("Authorize", "TransactionEvent"):
            return {"idTokenInfo": {"status": "Accepted"}}
        return {}

    async def send(self, raw: str):
        if self.closed:
            raise ConnectionError("simulated CSMS is closed")
        msg = decode(raw)
        if isinstance(msg, Call):
            self.calls.append(msg)
            task = asyncio.create_task(self._answer(msg))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        else:
            self.answered.append(msg)
            self.replies[msg.unique_id] = msg

    async def _answer(self, msg: Call):
        await asyncio.sleep(self.delay)
        if not self.closed:
            await self._deliver(encode_result(msg.unique_id, self.response_for(msg.action)))

    async def request(self, action: str, payload: dict) -> Optional[Message]:
        unique_id, raw = encode_call(action, payload)
        await self._deliver(raw)
        return self.replies.pop(unique_id, None)

    async def close(self):
        self.closed = True
        for task in list(self._tasks):
            task.cancel()
