"""
gwprobe - diagnostic client for the gateway connect handshake.

Acts as a scripted peer: waits for the gateway's `connect.challenge`, sends a
single `connect` request (token auth, optionally with an Ed25519-signed
device block bound to the challenge nonce) and reports how the gateway
answered.

Keys are ephemeral, generated per run and never written to disk.

Set CLAWDBOT_GATEWAY_TOKEN before running `python -m gwprobe.run_probe`.
"""
__all__ = [
    "channel",
    "config",
    "crypto",
    "errors",
    "framing",
    "gateway_config",
    "handshake",
    "messages",
    "run_probe",
]
