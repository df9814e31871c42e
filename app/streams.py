from __future__ import annotations

from collections.abc import AsyncIterator

from app.broadcast import CancelToken, Subscriber, SubscriptionClosed


SSE_MEDIA_TYPE = "text/event-stream"
SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
}
HEARTBEAT_FRAME = b": ping\n\n"


def format_sse(*, event: str, data: bytes | str) -> bytes:
    """Encode one event-stream frame. Multi-line data becomes one `data:` line per line."""

    text = data.decode("utf-8") if isinstance(data, bytes) else data
    lines = [f"event: {event}"]
    lines.extend(f"data: {line}" for line in text.splitlines() or [""])
    return ("\n".join(lines) + "\n\n").encode("utf-8")


async def board_event_stream(
    *,
    subscriber: Subscriber,
    cancel: CancelToken,
    heartbeat_interval_s: float,
    event: str = "board",
) -> AsyncIterator[bytes]:
    """Relay a subscriber's payloads as SSE frames, with a heartbeat while idle.

    Ends when the subscriber is torn down (evicted or cancelled). Closing the
    generator (client went away) fires `cancel`, which unsubscribes.
    """

    try:
        while True:
            try:
                payload = await subscriber.aget(timeout=heartbeat_interval_s)
            except TimeoutError:
                yield HEARTBEAT_FRAME
                continue
            except SubscriptionClosed:
                return
            yield format_sse(event=event, data=payload)
    finally:
        cancel.cancel()
