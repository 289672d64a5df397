import argparse
import asyncio
import json
import os
import sys

from .channel import WebSocketChannel
from .config import ProbeConfig
from .errors import ConfigError
from .handshake import HandshakeEngine, SessionOutcome
from .log import configure_logging, get_logger
from .messages import mask_token

"""
run_probe.py - single entry point for the gateway handshake probe.

Modes:
- Default:        token auth only, no device block.
- --with-device:  ephemeral Ed25519 device identity + signed challenge.

Environment:
- CLAWDBOT_GATEWAY_TOKEN  auth token (optional)
- GWPROBE_TIMEOUT         seconds for each wait (optional)

Exit code 0 when the session ran to a verdict (even a rejected one),
1 for local/transport failures.
"""

logger = get_logger(__name__)

BANNER = "=== Moltbot WebSocket Handshake Probe ==="


# -------------------------
# Runner (thin wrapper)
# -------------------------

async def run_probe(config: ProbeConfig) -> SessionOutcome:
    """Open a WebSocket channel to the gateway and run one handshake."""
    channel = WebSocketChannel(config.gateway_url, origin=config.origin, open_timeout=config.open_timeout)
    engine = HandshakeEngine(channel, config)
    return await engine.run()


def report(outcome: SessionOutcome) -> None:
    """Human-readable summary of the session on stdout."""
    if outcome.ok:
        print("\nSUCCESS! Handshake completed.")
        if outcome.response is not None and outcome.response.payload is not None:
            print(json.dumps(outcome.response.payload, indent=2))
        return
    print(f"\nFAILED [{outcome.error_kind}]: {outcome.detail}")


# -------------------------
# Argument parsing
# -------------------------

def parse_args(argv=None) -> argparse.Namespace:
    """
    Quick examples:
      Token only:    python -m gwprobe.run_probe
      Signed device: python -m gwprobe.run_probe --with-device
    """
    p = argparse.ArgumentParser(description="Probe the gateway connect handshake.")
    p.add_argument("--with-device", action="store_true", help="Sign the challenge with an ephemeral device key")
    p.add_argument("-v", "--verbose", action="store_true", help="Log received frames")
    return p.parse_args(argv)


# -------------------------
# Main entrypoint
# -------------------------

def main(argv=None) -> int:
    args = parse_args(argv)
    configure_logging("DEBUG" if args.verbose else "INFO")

    try:
        config = ProbeConfig.from_env(os.environ, with_device=args.with_device)
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 1

    print(BANNER)
    print(f"Gateway: {config.gateway_url}")
    print(f"Token:   {mask_token(config.token)}")
    print(f"Mode:    {'B (with device signature)' if config.with_device else 'A (token only)'}")
    if config.with_device and not config.token:
        print("Warning: no CLAWDBOT_GATEWAY_TOKEN set, device signature will use an empty token")

    try:
        outcome = asyncio.run(run_probe(config))
    except Exception:
        logger.exception("Fatal error")
        return 1

    report(outcome)
    return 1 if outcome.fatal else 0


if __name__ == "__main__":
    sys.exit(main())
