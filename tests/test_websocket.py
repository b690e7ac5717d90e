"""Tests for the live dispatch feed WebSocket."""

import pytest
from starlette.websockets import WebSocketDisconnect

import medidispatch.config as config
from medidispatch.auth import create_access_token


def test_rejects_missing_token(client):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/api/ambulance/events"):
            pass
    assert exc.value.code == 1008


def test_rejects_invalid_token(client):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/api/ambulance/events?token=garbage"):
            pass


async def test_rejects_customers(client, make_user):
    customer = await make_user("customer")
    token = create_access_token(customer.id, "customer")
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect(f"/api/ambulance/events?token={token}"):
            pass


async def test_staff_receives_keepalive(client, make_user, monkeypatch):
    monkeypatch.setattr(config, "DASHBOARD_PING_SECONDS", 0.05)
    staff = await make_user("staff")
    token = create_access_token(staff.id, "staff")
    with client.websocket_connect(f"/api/ambulance/events?token={token}") as ws:
        assert ws.receive_json() == {"type": "ping"}
