import json
from typing import Any, Dict, Union

from .errors import ProtocolError

"""
framing.py - JSON text frames for the gateway message channel.

Protocol (simple on purpose):
- Each channel message is one UTF-8 JSON object, no length prefix; the
  WebSocket layer already delimits messages.
- Hard cap at 4 MiB so a buggy peer can't make us parse silly amounts of data.
- Outbound JSON is compact (no extra spaces).
"""

MAX_FRAME_SIZE = 4 * 1024 * 1024  # 4 MiB hard limit


def encode_frame(obj: Dict[str, Any]) -> str:
    """
    Serialize a dict to compact JSON text for channel.send().

    Raises:
        ValueError: if the encoded frame exceeds MAX_FRAME_SIZE.
    """
    # Compact JSON: stable separators, keep non-ASCII as UTF-8 (not \u escapes).
    text = json.dumps(obj, separators=(",", ":"), ensure_ascii=False)
    if len(text.encode("utf-8")) > MAX_FRAME_SIZE:
        raise ValueError("Frame exceeds maximum size")
    return text


def decode_frame(data: Union[str, bytes]) -> Dict[str, Any]:
    """
    Parse one inbound channel message into a dict.

    Raises:
        ProtocolError: if the frame is too big, not UTF-8, not JSON, or not
            a JSON object.
    """
    if isinstance(data, (bytes, bytearray)):
        if len(data) > MAX_FRAME_SIZE:
            raise ProtocolError(f"Frame too large: {len(data)} > {MAX_FRAME_SIZE}")
        try:
            data = bytes(data).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ProtocolError(f"Frame is not UTF-8: {exc}") from exc
    elif len(data) > MAX_FRAME_SIZE:
        raise ProtocolError(f"Frame too large: {len(data)} > {MAX_FRAME_SIZE}")

    try:
        obj = json.loads(data)
    except json.JSONDecodeError as exc:
        # Keep the message short; no payload echo to avoid leaking big data.
        raise ProtocolError(f"Invalid JSON frame: {exc}") from exc

    if not isinstance(obj, dict):
        raise ProtocolError(f"Frame is not a JSON object: {type(obj).__name__}")
    return obj
