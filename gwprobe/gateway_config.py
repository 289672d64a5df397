import json
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from .errors import GatewayConfigError
from .log import configure_logging, get_logger

"""
gateway_config.py - render the gateway's JSON config from environment values.

Pure data shaping: build_gateway_config() takes an environ mapping and returns
the document; main() is the thin wrapper that writes it to CONFIG_FILE.
The Telegram channel block is only emitted when a bot token is configured.
"""

logger = get_logger(__name__)

DEFAULT_CONFIG_FILE = "/data/moltbot.json"
DEFAULT_PORT = 18789
# Railway's proxy network (100.64.0.0/10 carrier-grade NAT) plus private range.
TRUSTED_PROXIES = ["100.64.0.0/10", "10.0.0.0/8"]


def parse_allow_list(value: Optional[str]) -> List[Any]:
    """
    WhatsApp allowFrom list.

    Unset/empty → ["*"]; a JSON array is used as-is; anything else is treated
    as a single raw entry.
    """
    if not value:
        return ["*"]
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        logger.warning("Failed to parse allow list %r, treating as single entry", value)
        return [value]
    if not isinstance(parsed, list):
        logger.warning("Allow list %r is not a JSON array, treating as single entry", value)
        return [value]
    return parsed


def _port(environ: Mapping[str, str]) -> int:
    raw = environ.get("PORT") or str(DEFAULT_PORT)
    try:
        return int(raw)
    except ValueError as exc:
        raise GatewayConfigError(f"PORT must be an integer, got {raw!r}") from exc


def build_gateway_config(environ: Mapping[str, str]) -> Dict[str, Any]:
    """Build the gateway config document from environment values."""
    config: Dict[str, Any] = {
        "gateway": {
            "port": _port(environ),
            "mode": "local",
            "bind": "0.0.0.0",
            "auth": {
                "mode": "token",
                "token": environ.get("GATEWAY_AUTH_TOKEN") or "changeme",
            },
            "trustedProxies": list(TRUSTED_PROXIES),
        },
        "channels": {
            "whatsapp": {
                "sendReadReceipts": True,
                "dmPolicy": "pairing",
                "messagePrefix": environ.get("WHATSAPP_MESSAGE_PREFIX") or "[Bot]",
                "allowFrom": parse_allow_list(environ.get("WHATSAPP_ALLOWLIST")),
                "groupPolicy": "disabled",
            },
        },
        "agents": {
            "defaults": {
                "model": {"primary": environ.get("AI_MODEL") or "openai/gpt-4o"},
                "maxConcurrent": 4,
                "subagents": {"maxConcurrent": 8},
            },
        },
        "auth": {
            "profiles": {
                "default": {
                    "provider": environ.get("AI_PROVIDER") or "openai",
                    "openai": {
                        "apiKey": environ.get("OPENAI_API_KEY") or environ.get("ANTHROPIC_API_KEY") or "",
                    },
                },
            },
        },
        "messages": {"ackReactionScope": "group-mentions"},
    }

    bot_token = environ.get("TELEGRAM_BOT_TOKEN")
    if bot_token:
        config["channels"]["telegram"] = {
            "dmPolicy": "pairing",
            "botToken": bot_token,
            "groupPolicy": "allowlist",
            "streamMode": "partial",
        }
    return config


def write_gateway_config(config: Dict[str, Any], path: Path) -> Path:
    """Write the document as 2-space indented JSON; returns the path."""
    path = Path(path)
    try:
        path.write_text(json.dumps(config, indent=2), encoding="utf-8")
    except OSError as exc:
        raise GatewayConfigError(f"Failed to write {path}: {exc}") from exc
    return path


def main() -> None:
    """Entry point: render from os.environ and write to CONFIG_FILE."""
    configure_logging()
    try:
        config = build_gateway_config(os.environ)
        path = write_gateway_config(config, Path(os.environ.get("CONFIG_FILE") or DEFAULT_CONFIG_FILE))
    except GatewayConfigError as exc:
        print(f"Failed to generate config: {exc}", file=sys.stderr)
        sys.exit(1)
    print(f"Config generated at {path}")
    print(json.dumps(config, indent=2))


if __name__ == "__main__":
    main()
