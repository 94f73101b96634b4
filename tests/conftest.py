import json

import httpx
import pytest

import lambda_function

BOT_TOKEN = "123456:test-token"
CHAT_ID = "-100200300"


@pytest.fixture
def credentials():
    return lambda_function.Credentials(bot_token=BOT_TOKEN, chat_id=CHAT_ID)


@pytest.fixture
def make_event():
    def _make_event(body=None, method="POST", headers=None):
        return {
            "httpMethod": method,
            "headers": {"user-agent": "pytest-agent/1.0"} if headers is None else headers,
            "body": json.dumps(body) if isinstance(body, dict) else body,
            "isBase64Encoded": False
        }
    return _make_event


@pytest.fixture
def telegram(monkeypatch):
    """Sustituye httpx.post y guarda cada llamada saliente."""
    state = {"calls": [], "response": httpx.Response(200, json={"ok": True})}

    def fake_post(url, json=None, headers=None):
        state["calls"].append({"url": url, "json": json, "headers": headers})
        if isinstance(state["response"], Exception):
            raise state["response"]
        return state["response"]

    monkeypatch.setattr(lambda_function.httpx, "post", fake_post)
    return state
