"""End-to-end tests against a real relay server on an ephemeral port."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest
import pytest_asyncio
from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed

from relay.config import RelayConfig
from relay.registry import ConnectionRegistry
from relay.server import RelayServer
from relay.status import health_payload, render_status_page

DEVICE_ACK = '{"type":"registered","client":"esp32"}'
WEB_ACK = '{"type":"registered","client":"web"}'


# ── Fixtures ──────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def server():
    relay = RelayServer(RelayConfig(host="127.0.0.1", port=0, ping_interval=30))
    async with relay.serve():
        yield relay


def _url(server: RelayServer, path: str = "/") -> str:
    return f"ws://127.0.0.1:{server.port}{path}"


async def _register(ws, client: str) -> str:
    await ws.send(json.dumps({"type": "register", "client": client}))
    return await asyncio.wait_for(ws.recv(), timeout=2)


async def _until(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


# ── Relay over real sockets ───────────────────────────────────────


class TestRelay:
    @pytest.mark.asyncio
    async def test_scenario(self, server):
        async with connect(_url(server)) as device, connect(_url(server)) as web:
            assert await _register(device, "esp32") == DEVICE_ACK
            assert await _register(web, "web") == WEB_ACK
            assert server.registry.observer_count() == 1

            await web.send(b"\xde\xad\xbe\xef")
            assert await asyncio.wait_for(device.recv(), 2) == b"\xde\xad\xbe\xef"

            await device.send(b"\xca\xfe\xba\xbe")
            assert await asyncio.wait_for(web.recv(), 2) == b"\xca\xfe\xba\xbe"

            await device.close()
            await _until(lambda: not server.registry.is_device_present())

            await web.send(b"\x01\x02")
            pong = await web.ping()
            await asyncio.wait_for(pong, 2)  # still connected, no error

    @pytest.mark.asyncio
    async def test_control_round_trip(self, server):
        async with connect(_url(server)) as device, connect(_url(server)) as web:
            await _register(device, "esp32")
            await _register(web, "web")

            cmd = '{"type":"control","cmd":"start_stream"}'
            await web.send(cmd)
            assert await asyncio.wait_for(device.recv(), 2) == cmd

            status = '{"type":"control","cmd":"level","value":42}'
            await device.send(status)
            assert await asyncio.wait_for(web.recv(), 2) == status

    @pytest.mark.asyncio
    async def test_device_takeover_closes_previous(self, server):
        async with connect(_url(server)) as first, connect(_url(server)) as second:
            await _register(first, "esp32")
            await _register(second, "esp32")
            with pytest.raises(ConnectionClosed):
                await asyncio.wait_for(first.recv(), 2)
            assert server.registry.is_device_present()
            await _until(lambda: len(server.connections) == 1)
            assert server.registry.device in server.connections

    @pytest.mark.asyncio
    async def test_unregistered_sender_is_inert(self, server):
        async with connect(_url(server)) as device, connect(_url(server)) as stranger:
            await _register(device, "esp32")
            await stranger.send(b"\x99")
            await stranger.send('{"type":"control","cmd":"x"}')
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(device.recv(), 0.2)

    @pytest.mark.asyncio
    async def test_observer_disconnect_updates_count(self, server):
        async with connect(_url(server)) as web:
            await _register(web, "web")
            assert server.registry.observer_count() == 1
        await _until(lambda: server.registry.observer_count() == 0)

    @pytest.mark.asyncio
    async def test_liveness_terminates_stale_connection(self, server):
        async with connect(_url(server)) as web:
            await _register(web, "web")
            conn = next(iter(server.connections))
            conn.alive = False  # pretend the previous ping went unanswered
            assert await server.liveness.sweep() == 1
            await _until(lambda: server.registry.observer_count() == 0)
            assert not server.connections

    @pytest.mark.asyncio
    async def test_liveness_sweep_keeps_responsive_clients(self, server):
        async with connect(_url(server)) as web:
            await _register(web, "web")
            conn = next(iter(server.connections))
            await server.liveness.sweep()
            await _until(lambda: conn.alive)
            assert await server.liveness.sweep() == 0
            assert server.registry.observer_count() == 1


# ── HTTP status endpoints ─────────────────────────────────────────


class TestHTTP:
    @pytest.mark.asyncio
    async def test_health(self, server):
        async with connect(_url(server)) as web:
            await _register(web, "web")
            async with httpx.AsyncClient() as client:
                resp = await client.get(f"http://127.0.0.1:{server.port}/health")
        assert resp.status_code == 200
        assert resp.headers["content-type"] == "application/json"
        data = resp.json()
        assert data["status"] == "ok"
        assert data["esp32Connected"] is False
        assert data["webClients"] == 1
        assert data["uptime"] >= 0

    @pytest.mark.asyncio
    async def test_status_page(self, server):
        async with httpx.AsyncClient() as client:
            resp = await client.get(f"http://127.0.0.1:{server.port}/")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/html")
        assert "ESP32 Connected: <strong>NO</strong>" in resp.text
        assert f"ws://127.0.0.1:{server.port}" in resp.text

    @pytest.mark.asyncio
    async def test_unknown_path(self, server):
        async with httpx.AsyncClient() as client:
            resp = await client.get(f"http://127.0.0.1:{server.port}/nope")
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_websocket_on_root_path(self, server):
        async with connect(_url(server, "/")) as web:
            assert await _register(web, "web") == WEB_ACK


class TestStatusRendering:
    def test_health_payload(self, make_conn):
        registry = ConnectionRegistry()
        registry.register_device(make_conn("dev"))
        registry.register_observer(make_conn("a"))
        registry.register_observer(make_conn("b"))
        assert health_payload(registry, 12.5) == {
            "status": "ok",
            "esp32Connected": True,
            "webClients": 2,
            "uptime": 12.5,
        }

    def test_status_page_secure(self):
        page = render_status_page(ConnectionRegistry(), 61.9, "relay.example.com", secure=True)
        assert "wss://relay.example.com" in page
        assert "Uptime: 61 seconds" in page
        assert "Web Clients: <strong>0</strong>" in page

    def test_send_timeout_applies_to_router_and_liveness(self):
        relay = RelayServer(RelayConfig(send_timeout=0.25, ping_interval=10))
        assert relay.router.send_timeout == 0.25
        assert relay.liveness.ping_timeout == 0.25

    def test_status_page_escapes_host(self):
        page = render_status_page(ConnectionRegistry(), 0, "<script>")
        assert "<script>" not in page
