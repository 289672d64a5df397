import copy
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Union

"""
messages.py - connect request shapes, the device signing string, and
inbound frame classification.

What this module does:
- Builds the canonical string a device signs during the handshake. Field
  order is the wire contract: the gateway recomputes the same string and
  verifies the signature over it, so any drift breaks auth silently.
- Builds the `connect` request (params, optional auth/device blocks).
- Hands out per-session request ids.
- Sorts inbound frames into Event / Response / Unrecognized so the engine
  can match on one small tagged union instead of poking at raw dicts.
"""

SIGNING_DELIMITER = "|"
SIGNATURE_VERSION = "v2"

# -----------------------
# Wire tags
# -----------------------
TYPE_REQUEST = "req"
TYPE_RESPONSE = "res"
TYPE_EVENT = "event"

METHOD_CONNECT = "connect"
EVENT_CONNECT_CHALLENGE = "connect.challenge"


def now_ms() -> int:
    """Current time in milliseconds (used for signedAt and request ids)."""
    return int(time.time() * 1000)


def generate_instance_id() -> str:
    """Random UUID4 string for client.instanceId. Never None."""
    return str(uuid.uuid4())


def mask_token(token: Optional[str]) -> str:
    """Short, log-safe view of a secret token."""
    if not token:
        return "<not set>"
    if len(token) < 12:
        return "***"
    return f"{token[:4]}...{token[-4:]}"


# -----------------------
# Signing string
# -----------------------

def build_signing_string(
    version: str,
    device_id: str,
    client_id: str,
    client_mode: str,
    role: str,
    scopes: Iterable[str],
    signed_at_ms: int,
    token: Optional[str],
    nonce: Optional[str] = None,
) -> str:
    """
    Canonical device-auth string:

        version|deviceId|clientId|clientMode|role|scopesCSV|signedAtMs|token[|nonce]

    The nonce is appended only for v2 and only when one was issued. A missing
    token becomes an empty field; empty scopes become an empty field too.

    Raises:
        ValueError: if any field contains the '|' delimiter.
    """
    parts = [
        version,
        device_id,
        client_id,
        client_mode,
        role,
        ",".join(scopes),
        str(signed_at_ms),
        token or "",
    ]
    if version == SIGNATURE_VERSION and nonce:
        parts.append(nonce)

    for part in parts:
        if SIGNING_DELIMITER in part:
            raise ValueError(f"Signing field may not contain '{SIGNING_DELIMITER}': {part!r}")
    return SIGNING_DELIMITER.join(parts)


# -----------------------
# Outbound
# -----------------------

class RequestIds:
    """Per-session request id source: probe-<counter>-<epoch ms>."""

    def __init__(self, prefix: str = "probe", clock=now_ms) -> None:
        self.prefix = prefix
        self._clock = clock
        self._counter = 0

    def next(self) -> str:
        self._counter += 1
        return f"{self.prefix}-{self._counter}-{self._clock()}"


def build_device_block(
    device_id: str,
    public_key_b64: str,
    signature_b64: str,
    signed_at_ms: int,
    nonce: str,
) -> Dict[str, Any]:
    return {
        "id": device_id,
        "publicKey": public_key_b64,
        "signature": signature_b64,
        "signedAt": signed_at_ms,
        "nonce": nonce,
    }


def build_connect_params(
    config,
    instance_id: str,
    device: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Params for the `connect` request, in wire shape.

    `auth` is only present when the config carries a token; `device` only
    when a signed device block was built for this attempt.
    """
    params: Dict[str, Any] = {
        "minProtocol": config.min_protocol,
        "maxProtocol": config.max_protocol,
        "client": {
            "id": config.client_id,
            "version": config.client_version,
            "platform": config.platform,
            "mode": config.client_mode,
            "instanceId": str(instance_id),
        },
        "role": config.role,
        "scopes": list(config.scopes),
        "userAgent": config.user_agent,
        "locale": config.locale,
    }
    if config.token:
        params["auth"] = {"token": config.token}
    if device is not None:
        params["device"] = device
    return params


def new_request(request_id: str, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
    """Request envelope: {type: "req", id, method, params}."""
    return {
        "type": TYPE_REQUEST,
        "id": request_id,
        "method": method,
        "params": params,
    }


def redact_request(request: Dict[str, Any]) -> Dict[str, Any]:
    """Deep copy with params.auth.token masked. For logs only."""
    shown = copy.deepcopy(request)
    auth = shown.get("params", {}).get("auth")
    if isinstance(auth, dict) and auth.get("token"):
        auth["token"] = mask_token(auth["token"])
    return shown


# -----------------------
# Inbound
# -----------------------

@dataclass(frozen=True)
class Event:
    event: str
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Response:
    id: str
    ok: bool
    error_message: Optional[str] = None
    payload: Any = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class Unrecognized:
    reason: str
    raw: Any = field(default=None, compare=False, repr=False)


Inbound = Union[Event, Response, Unrecognized]


def parse_inbound(frame: Any) -> Inbound:
    """
    Classify one decoded frame. Never raises; anything odd comes back as
    Unrecognized with a short reason so the caller can log and move on.
    """
    if not isinstance(frame, dict):
        return Unrecognized("frame is not a JSON object", frame)

    msg_type = frame.get("type")
    if msg_type == TYPE_EVENT:
        name = frame.get("event")
        if not isinstance(name, str):
            return Unrecognized("event without a name", frame)
        payload = frame.get("payload")
        return Event(name, payload if isinstance(payload, dict) else {})

    if msg_type == TYPE_RESPONSE:
        rid = frame.get("id")
        if not isinstance(rid, str):
            return Unrecognized("response without a string id", frame)
        error = frame.get("error")
        message = error.get("message") if isinstance(error, dict) else None
        return Response(
            id=rid,
            ok=frame.get("ok") is True,
            error_message=message if isinstance(message, str) else None,
            payload=frame.get("payload"),
            raw=frame,
        )

    return Unrecognized(f"unknown frame type {msg_type!r}", frame)
