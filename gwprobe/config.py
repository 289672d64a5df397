import platform
import sys
from dataclasses import dataclass, replace
from typing import Mapping, Optional, Tuple

from .errors import ConfigError

"""
config.py - the one configuration object a probe session runs with.

Environment is read here (and only here) so the handshake engine can be
driven directly in tests with a hand-built ProbeConfig.
"""

GATEWAY_URL = "wss://moltbot-production-50a1.up.railway.app/"
GATEWAY_ORIGIN = "https://moltbot-production-50a1.up.railway.app"

TOKEN_ENV = "CLAWDBOT_GATEWAY_TOKEN"
TIMEOUT_ENV = "GWPROBE_TIMEOUT"

DEFAULT_SCOPES = ("operator.admin", "operator.approvals", "operator.pairing")
DEFAULT_TIMEOUT = 10.0
DEFAULT_USER_AGENT = f"Python {platform.python_version()}"


@dataclass(frozen=True)
class ProbeConfig:
    gateway_url: str = GATEWAY_URL
    origin: Optional[str] = GATEWAY_ORIGIN
    token: Optional[str] = None
    with_device: bool = False

    # client identity as presented in connect params
    client_id: str = "moltbot-probe"
    client_version: str = "dev"
    client_mode: str = "webchat"
    platform: str = sys.platform
    role: str = "operator"
    scopes: Tuple[str, ...] = DEFAULT_SCOPES
    min_protocol: int = 3
    max_protocol: int = 3
    user_agent: str = DEFAULT_USER_AGENT
    locale: str = "en-US"
    signature_version: str = "v2"

    # seconds
    open_timeout: float = DEFAULT_TIMEOUT
    challenge_timeout: float = DEFAULT_TIMEOUT
    response_timeout: float = DEFAULT_TIMEOUT

    @classmethod
    def from_env(cls, environ: Mapping[str, str], with_device: bool = False) -> "ProbeConfig":
        """
        Build a config from an environment mapping.

        Reads CLAWDBOT_GATEWAY_TOKEN (auth token, empty means unset) and
        GWPROBE_TIMEOUT (seconds for every phase).
        """
        cfg = cls(token=environ.get(TOKEN_ENV) or None, with_device=with_device)

        raw_timeout = environ.get(TIMEOUT_ENV)
        if raw_timeout:
            try:
                timeout = float(raw_timeout)
            except ValueError as exc:
                raise ConfigError(f"{TIMEOUT_ENV} must be a number, got {raw_timeout!r}") from exc
            if timeout <= 0:
                raise ConfigError(f"{TIMEOUT_ENV} must be positive, got {raw_timeout!r}")
            cfg = replace(cfg, open_timeout=timeout, challenge_timeout=timeout, response_timeout=timeout)
        return cfg
