"""
API fixtures.

The app runs against the per-test session: ``get_session`` is overridden
to yield it, so every request shares the test's rollback scope.
"""

import hashlib
import hmac
import json

import pytest
from fastapi.testclient import TestClient

from settlement_kernel.config import Settings
from settlement_kernel.domain.access_policy import Actor
from settlement_kernel.services.notifier import CallbackNotifier
from settlement_api import create_app
from settlement_api.dependencies import SIGNATURE_HEADER, get_session

WEBHOOK_SECRET = "whsec-test"


def actor_headers(actor: Actor) -> dict[str, str]:
    headers = {"X-User-Id": str(actor.user_id), "X-User-Role": actor.role.value}
    if actor.company_id is not None:
        headers["X-Company-Id"] = str(actor.company_id)
    return headers


@pytest.fixture
def delivered():
    return []


@pytest.fixture
def app(session, deterministic_clock, delivered):
    app = create_app(
        settings=Settings(webhook_secret=WEBHOOK_SECRET),
        clock=deterministic_clock,
        notifier=CallbackNotifier(delivered.append),
        init_engine=False,
    )

    def _test_session():
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise

    app.dependency_overrides[get_session] = _test_session
    return app


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def headers():
    return actor_headers


def sign(payload: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha512).hexdigest()


@pytest.fixture
def post_webhook(client):
    """POST a JSON body to the gateway webhook, signed unless told otherwise."""

    def _post(body: dict, signature: str | None = "valid"):
        payload = json.dumps(body).encode("utf-8")
        headers = {"Content-Type": "application/json"}
        if signature == "valid":
            headers[SIGNATURE_HEADER] = sign(payload)
        elif signature is not None:
            headers[SIGNATURE_HEADER] = signature
        return client.post("/api/webhooks/payments", content=payload, headers=headers)

    return _post


@pytest.fixture
def webhook_signature():
    return sign
