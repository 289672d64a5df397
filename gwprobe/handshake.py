import asyncio
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from . import crypto
from . import messages as m
from .channel import Channel
from .config import ProbeConfig
from .errors import (
    AuthRejected,
    ChannelClosed,
    HandshakeTimeout,
    KeyGenerationError,
    ProbeError,
    ProtocolError,
    SigningError,
    TransportError,
)
from .framing import decode_frame, encode_frame
from .log import get_logger

"""
handshake.py - the initiating side of the gateway connect handshake.

Flow (single attempt, no retries):
    IDLE -> CONNECTING -> AWAITING_CHALLENGE -> SIGNING_AND_SENDING
         -> AWAITING_RESPONSE -> COMPLETED

- The gateway opens with a `connect.challenge` event carrying a nonce.
- In signed mode we create an ephemeral Ed25519 identity, sign the canonical
  device string (which includes that nonce) and attach a `device` block.
- Exactly one `connect` request goes out; the response with the matching id
  decides the outcome.

Frames we don't understand are logged and dropped; the engine keeps waiting.
Every other failure ends the session with a classified SessionOutcome.
"""

logger = get_logger(__name__)

FATAL_KINDS = frozenset({TransportError.kind, KeyGenerationError.kind, SigningError.kind})


class HandshakeState(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    AWAITING_CHALLENGE = "awaiting_challenge"
    SIGNING_AND_SENDING = "signing_and_sending"
    AWAITING_RESPONSE = "awaiting_response"
    COMPLETED = "completed"


@dataclass(frozen=True)
class SessionOutcome:
    """Terminal result of a session. error_kind is None on success."""
    ok: bool
    error_kind: Optional[str] = None
    detail: Optional[str] = None
    request_id: Optional[str] = None
    response: Optional[m.Response] = None

    @property
    def fatal(self) -> bool:
        """True for local failures the caller should treat as a process error."""
        return self.error_kind in FATAL_KINDS


class HandshakeEngine:
    """
    Drives one connect handshake over a Channel.

    Not re-entrant: one engine, one run(). Key material lives on the engine
    instance only, so concurrent sessions never share signing state.
    """

    def __init__(
        self,
        channel: Channel,
        config: ProbeConfig,
        identity_factory: Callable[[], crypto.Identity] = crypto.create_identity,
        clock: Callable[[], int] = m.now_ms,
    ) -> None:
        self.channel = channel
        self.config = config
        self.identity_factory = identity_factory
        self.clock = clock
        self.request_ids = m.RequestIds(clock=clock)

        self.state = HandshakeState.IDLE
        self.nonce: Optional[str] = None
        self.identity: Optional[crypto.Identity] = None
        self.sent_request: Optional[Dict[str, Any]] = None
        self.outcome: Optional[SessionOutcome] = None
        self._abort_reason: Optional[str] = None

    # -------------------------
    # Public API
    # -------------------------

    async def run(self) -> SessionOutcome:
        """Run the handshake to completion and return its outcome."""
        if self.state is not HandshakeState.IDLE:
            raise RuntimeError("HandshakeEngine.run() may only be called once")

        try:
            outcome = await self._handshake()
        except ProbeError as exc:
            outcome = self._failed(exc)
        except asyncio.CancelledError:
            self.outcome = SessionOutcome(False, "Cancelled", "session cancelled", self._sent_id())
            raise
        finally:
            self.state = HandshakeState.COMPLETED
            await self._release()

        self.outcome = outcome
        if outcome.ok:
            logger.info("Handshake completed (request %s)", outcome.request_id)
        else:
            logger.warning("Handshake failed [%s]: %s", outcome.error_kind, outcome.detail)
        return outcome

    async def abort(self, reason: str = "aborted by caller") -> None:
        """Stop a running session from outside; run() then ends TransportError."""
        if self.state is HandshakeState.COMPLETED:
            return
        self._abort_reason = reason
        await self.channel.close(reason=reason)

    # -------------------------
    # Phases
    # -------------------------

    async def _handshake(self) -> SessionOutcome:
        self.state = HandshakeState.CONNECTING
        await self._open()
        # abort() during open has no socket to close yet.
        self._check_aborted()

        self.state = HandshakeState.AWAITING_CHALLENGE
        await self._await_challenge()

        self.state = HandshakeState.SIGNING_AND_SENDING
        request = self._build_request()
        self._check_aborted()
        logger.info("Sending connect request: %s", json.dumps(m.redact_request(request)))
        await self.channel.send(encode_frame(request))
        self.sent_request = request

        self.state = HandshakeState.AWAITING_RESPONSE
        response = await self._await_response(request["id"])
        if response.ok:
            return SessionOutcome(True, request_id=response.id, response=response)
        return SessionOutcome(
            False,
            AuthRejected.kind,
            response.error_message or "Unknown error",
            response.id,
            response,
        )

    def _check_aborted(self) -> None:
        if self._abort_reason is not None:
            raise TransportError(f"aborted: {self._abort_reason}")

    async def _open(self) -> None:
        try:
            await asyncio.wait_for(self.channel.open(), self.config.open_timeout)
        except asyncio.TimeoutError as exc:
            raise TransportError(
                f"Channel did not open within {self.config.open_timeout}s"
            ) from exc

    async def _await_challenge(self) -> None:
        deadline = self._deadline(self.config.challenge_timeout)
        while True:
            msg = await self._receive(deadline, "connect.challenge", self.config.challenge_timeout)
            if isinstance(msg, m.Event) and msg.event == m.EVENT_CONNECT_CHALLENGE:
                # Token-only sessions don't need the nonce to proceed.
                if self._take_nonce(msg) or not self.config.with_device:
                    return
            else:
                self._ignore(msg)

    async def _await_response(self, request_id: str) -> m.Response:
        deadline = self._deadline(self.config.response_timeout)
        while True:
            msg = await self._receive(deadline, "connect response", self.config.response_timeout)
            if isinstance(msg, m.Response):
                if msg.id == request_id:
                    logger.info("Connect response: %s", json.dumps(msg.raw))
                    return msg
                logger.warning("Ignoring response for unknown request id %s", msg.id)
            elif isinstance(msg, m.Event) and msg.event == m.EVENT_CONNECT_CHALLENGE:
                # Last nonce wins; the request already in flight is not resent.
                self._take_nonce(msg)
            else:
                self._ignore(msg)

    # -------------------------
    # Request construction
    # -------------------------

    def _build_request(self) -> Dict[str, Any]:
        device = None
        if self.config.with_device and self.nonce:
            device = self._build_device_block()
        params = m.build_connect_params(self.config, m.generate_instance_id(), device)
        return m.new_request(self.request_ids.next(), m.METHOD_CONNECT, params)

    def _build_device_block(self) -> Dict[str, Any]:
        cfg = self.config
        if self.identity is None:
            self.identity = self.identity_factory()
            logger.info("Device ID: %s", self.identity.device_id)
            logger.info("Public key (base64url): %s", self.identity.public_key_b64url)

        signed_at = self.clock()
        fields = [
            cfg.signature_version,
            self.identity.device_id,
            cfg.client_id,
            cfg.client_mode,
            cfg.role,
            cfg.scopes,
            signed_at,
        ]
        try:
            signing_string = m.build_signing_string(*fields, cfg.token, self.nonce)
            shown = m.build_signing_string(
                *fields, m.mask_token(cfg.token) if cfg.token else None, self.nonce
            )
        except ValueError as exc:
            raise SigningError(str(exc)) from exc
        logger.info("Signing string: %s", shown)

        signature = crypto.sign(signing_string, self.identity.private_key)
        logger.debug("Signature (base64url): %s...", signature[:40])
        return m.build_device_block(
            self.identity.device_id,
            self.identity.public_key_b64url,
            signature,
            signed_at,
            self.nonce,
        )

    # -------------------------
    # Inbound helpers
    # -------------------------

    def _deadline(self, timeout: float) -> float:
        return asyncio.get_running_loop().time() + timeout

    async def _receive(self, deadline: float, waiting_for: str, timeout: float) -> m.Inbound:
        remaining = deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            raise HandshakeTimeout(f"No {waiting_for} within {timeout}s")
        try:
            data = await asyncio.wait_for(self.channel.recv(), remaining)
        except asyncio.TimeoutError as exc:
            raise HandshakeTimeout(f"No {waiting_for} within {timeout}s") from exc

        try:
            frame = decode_frame(data)
        except ProtocolError as exc:
            return m.Unrecognized(str(exc), data)
        logger.debug("Received: %s", json.dumps(frame))
        return m.parse_inbound(frame)

    def _take_nonce(self, event: m.Event) -> bool:
        nonce = event.payload.get("nonce")
        if not isinstance(nonce, str) or not nonce:
            logger.warning("Ignoring connect.challenge without a nonce")
            return False
        if self.nonce is not None and nonce != self.nonce:
            logger.info("Replacing challenge nonce %s with %s", self.nonce, nonce)
        else:
            logger.info("Challenge nonce: %s", nonce)
        self.nonce = nonce
        return True

    def _ignore(self, msg: m.Inbound) -> None:
        if isinstance(msg, m.Unrecognized):
            logger.warning("Dropping unrecognized frame: %s", msg.reason)
        elif isinstance(msg, m.Event):
            logger.info("Ignoring event %s", msg.event)
        else:
            logger.warning("Ignoring response %s: no request outstanding", msg.id)

    # -------------------------
    # Termination
    # -------------------------

    def _sent_id(self) -> Optional[str]:
        return self.sent_request["id"] if self.sent_request else None

    def _failed(self, exc: ProbeError) -> SessionOutcome:
        if self._abort_reason is not None and isinstance(exc, ChannelClosed):
            exc = TransportError(f"aborted: {self._abort_reason}")
        return SessionOutcome(False, exc.kind, str(exc), self._sent_id())

    async def _release(self) -> None:
        try:
            await self.channel.close()
        except (TransportError, OSError) as exc:
            logger.debug("Error while closing channel: %s", exc)
