# tests/test_app_lifecycle.py
from fastapi.testclient import TestClient

from newsletter_stage.services.email_client import (
    EmailClient,
    EmailClientConfig,
    _EmailClientSingleton,
)
from newsletter_stage.services.subscribers import SubscriberEmail


def test_shutdown_closes_email_client_without_workers(app, mocker):
    client = EmailClient(
        EmailClientConfig(
            base_url="https://email.example.com",
            sender=SubscriberEmail.parse("newsletter@example.com"),
            authorization_token="server-token",
            timeout_seconds=2.0,
        )
    )
    close = mocker.patch.object(client, "close", new_callable=mocker.AsyncMock)
    mocker.patch.object(_EmailClientSingleton, "_instance", client)

    with TestClient(app) as test_client:
        assert test_client.app.state.delivery_workers == []

    close.assert_awaited_once()
    assert _EmailClientSingleton._instance is None
