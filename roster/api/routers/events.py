from __future__ import annotations
import asyncio
import json
from typing import AsyncIterator

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from ...auth.deps import get_current_user
from ...models import User
from ...redis_client import redis, user_channel

router = APIRouter(prefix="/events", tags=["events"])


# SSE frame helper
def _sse(data: dict) -> bytes:
    return f"data: {json.dumps(data, separators=(',',':'))}\n\n".encode("utf-8")


async def _stream_pubsub(channel: str) -> AsyncIterator[bytes]:
    pubsub = redis.pubsub()
    await pubsub.subscribe(channel)
    try:
        # initial comment to open stream
        yield b": ok\n\n"
        while True:
            msg = await pubsub.get_message(ignore_subscribe_messages=True, timeout=5.0)
            if msg and msg.get("type") == "message":
                payload = msg["data"]
                # if Redis is configured with decode_responses, payload is str; else bytes
                if isinstance(payload, (bytes, bytearray)):
                    payload = payload.decode("utf-8", "ignore")
                try:
                    js = json.loads(payload)
                except json.JSONDecodeError:
                    js = {"raw": payload}
                yield _sse(js)
            else:
                # keep-alive comment every few seconds
                yield b": keepalive\n\n"
                await asyncio.sleep(1)
    finally:
        await pubsub.unsubscribe(channel)
        await pubsub.aclose()


@router.get("/me")
async def sse_me(current: User = Depends(get_current_user)):
    """Notifications for the caller, as the dispatcher publishes them."""
    return StreamingResponse(_stream_pubsub(user_channel(current.id)), media_type="text/event-stream")
