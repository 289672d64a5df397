import json
from dataclasses import replace

import pytest
import websockets

from gwprobe import crypto
from gwprobe.channel import WebSocketChannel
from gwprobe.errors import ChannelClosed, TransportError
from gwprobe.handshake import HandshakeEngine


def gateway(nonce="srv-nonce", reject=None):
    """Minimal gateway: challenge, check the device signature, answer."""
    seen = {}

    async def handler(ws):
        await ws.send(json.dumps({"type": "event", "event": "connect.challenge", "payload": {"nonce": nonce}}))
        request = json.loads(await ws.recv())
        seen["request"] = request
        device = request["params"].get("device")
        ok, message = True, None
        if reject:
            ok, message = False, reject
        elif device is not None:
            params = request["params"]
            signing_string = "|".join([
                "v2", device["id"], params["client"]["id"], params["client"]["mode"], params["role"],
                ",".join(params["scopes"]), str(device["signedAt"]),
                params.get("auth", {}).get("token", ""), device["nonce"],
            ])
            public_key = crypto.b64url_decode(device["publicKey"])
            ok = device["nonce"] == nonce and crypto.verify(public_key, signing_string, device["signature"])
            message = None if ok else "device signature invalid"
        reply = {"type": "res", "id": request["id"], "ok": ok}
        if message:
            reply["error"] = {"message": message}
        await ws.send(json.dumps(reply))
        await ws.wait_closed()

    return handler, seen


async def serve(handler):
    server = await websockets.serve(handler, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    return server, f"ws://127.0.0.1:{port}/"


@pytest.mark.anyio
async def test_signed_handshake_against_websocket_gateway(config):
    handler, seen = gateway()
    server, url = await serve(handler)
    try:
        cfg = replace(config, gateway_url=url, origin="http://127.0.0.1", with_device=True)
        outcome = await HandshakeEngine(WebSocketChannel(url, origin=cfg.origin), cfg).run()
    finally:
        server.close()
        await server.wait_closed()

    assert outcome.ok, outcome.detail
    assert seen["request"]["params"]["device"]["nonce"] == "srv-nonce"


@pytest.mark.anyio
async def test_rejection_over_websocket(config):
    handler, _ = gateway(reject="bad token")
    server, url = await serve(handler)
    try:
        cfg = replace(config, gateway_url=url)
        outcome = await HandshakeEngine(WebSocketChannel(url), cfg).run()
    finally:
        server.close()
        await server.wait_closed()

    assert outcome.error_kind == "AuthRejected"
    assert outcome.detail == "bad token"


@pytest.mark.anyio
async def test_server_close_surfaces_code_and_reason():
    async def handler(ws):
        await ws.close(code=4001, reason="go away")

    server, url = await serve(handler)
    channel = WebSocketChannel(url)
    try:
        await channel.open()
        with pytest.raises(ChannelClosed) as exc:
            await channel.recv()
        assert exc.value.code == 4001
        assert exc.value.reason == "go away"
    finally:
        await channel.close()
        server.close()
        await server.wait_closed()


@pytest.mark.anyio
async def test_open_failure_is_transport_error():
    channel = WebSocketChannel("ws://127.0.0.1:1/", open_timeout=2)
    with pytest.raises(TransportError):
        await channel.open()


@pytest.mark.anyio
async def test_send_before_open_is_transport_error():
    with pytest.raises(TransportError):
        await WebSocketChannel("ws://127.0.0.1:1/").send("{}")
