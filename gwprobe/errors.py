"""
errors.py - failure taxonomy for a probe session.

Every error carries a short ``kind`` string; the handshake engine copies it
into the session outcome so callers can classify a failure without
isinstance checks.
"""

from typing import Optional


class ProbeError(Exception):
    """Base class for everything the probe raises on purpose."""
    kind = "ProbeError"


class TransportError(ProbeError):
    """Channel failed to open, errored, or went away."""
    kind = "TransportError"


class ChannelClosed(TransportError):
    """Peer (or we) closed the channel. Keeps the close code and reason."""

    def __init__(self, code: Optional[int] = None, reason: str = "") -> None:
        self.code = code
        self.reason = reason
        super().__init__(f"channel closed: {code} - {reason or 'No reason'}")


class ProtocolError(ProbeError):
    """Inbound frame we can't make sense of. Logged and dropped."""
    kind = "ProtocolError"


class HandshakeTimeout(ProbeError):
    """No challenge or no response within the allotted window."""
    kind = "HandshakeTimeout"


class KeyGenerationError(ProbeError):
    kind = "KeyGenerationError"


class SigningError(ProbeError):
    kind = "SigningError"


class AuthRejected(ProbeError):
    """Gateway answered ``ok: false``. Not a local fault."""
    kind = "AuthRejected"


class ConfigError(ProbeError):
    kind = "ConfigError"


class GatewayConfigError(ConfigError):
    kind = "GatewayConfigError"
