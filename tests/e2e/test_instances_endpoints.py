"""End-to-end tests for instance, messaging and data-lifecycle endpoints."""

import base64
import hashlib
import hmac
import json
from unittest.mock import AsyncMock, patch
from urllib.parse import parse_qs, urlparse

import pytest

from src.errors import InstagramAPIError

TEST_CLIENT_SECRET = "test-client-secret"


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def make_signed_request(payload: dict, secret: str = TEST_CLIENT_SECRET) -> str:
    encoded_payload = _b64url(json.dumps(payload).encode("utf-8"))
    signature = hmac.new(
        secret.encode("utf-8"), encoded_payload.encode("ascii"), hashlib.sha256
    ).digest()
    return f"{_b64url(signature)}.{encoded_payload}"


class TestCreateInstance:
    """POST /api/instagram/instances."""

    def test_returns_authorization_url(self, test_client):
        response = test_client.post(
            "/api/instagram/instances",
            json={"userId": "user-1", "name": "  Main Store  "},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "success"
        parsed = urlparse(data["authUrl"])
        assert parsed.netloc == "api.test.com"
        assert parsed.path == "/api/instagram/auth/authorize"
        assert parse_qs(parsed.query) == {
            "userId": ["user-1"],
            "instanceName": ["Main Store"],
        }

    @pytest.mark.parametrize(
        "body",
        [
            {"userId": "user-1", "name": "ab"},
            {"userId": "user-1", "name": "x" * 51},
            {"userId": "", "name": "Main Store"},
            {"name": "Main Store"},
        ],
    )
    def test_invalid_body(self, test_client, body):
        response = test_client.post("/api/instagram/instances", json=body)

        assert response.status_code == 400
        assert response.json()["status"] == "validation_error"


class TestReadInstances:
    """GET /api/instagram/instances[/{id}]."""

    @patch("src.api.instagram.find_instances_by_user_id")
    def test_list_instances(self, mock_find, test_client, sample_instance):
        mock_find.return_value = [sample_instance]

        response = test_client.get("/api/instagram/instances", params={"userId": "user-1"})

        assert response.status_code == 200
        [summary] = response.json()["instances"]
        assert summary["id"] == "inst-1"
        assert summary["instanceName"] == "aB3dE5gH7j"
        assert summary["username"] == "main_store"
        assert "accessToken" not in summary
        assert "access_token" not in summary
        assert "token" not in summary

    def test_list_requires_user_id(self, test_client):
        response = test_client.get("/api/instagram/instances")
        assert response.status_code == 400

    @patch("src.api.instagram.find_instance_by_id")
    def test_get_instance(self, mock_find, test_client, sample_instance):
        mock_find.return_value = sample_instance

        response = test_client.get("/api/instagram/instances/inst-1")

        assert response.status_code == 200
        assert response.json()["instance"]["name"] == "Main Store"

    @patch("src.api.instagram.find_instance_by_id")
    def test_get_unknown_instance(self, mock_find, test_client):
        mock_find.return_value = None

        response = test_client.get("/api/instagram/instances/missing")

        assert response.status_code == 404
        assert response.json() == {
            "status": "not_found",
            "message": "Instance not found: missing",
        }

    @patch("src.api.instagram.get_subscribed_apps", new_callable=AsyncMock)
    @patch("src.api.instagram.find_instance_by_id")
    def test_subscribed_apps(
        self, mock_find, mock_subscribed_apps, test_client, sample_instance
    ):
        mock_find.return_value = sample_instance
        mock_subscribed_apps.return_value = [{"id": "app-1"}]

        response = test_client.get("/api/instagram/instances/inst-1/subscribed-apps")

        assert response.status_code == 200
        assert response.json() == {"status": "success", "data": [{"id": "app-1"}]}


class TestDeleteInstance:
    """DELETE /api/instagram/instances/{id}."""

    @patch("src.api.instagram.delete_instance")
    def test_delete(self, mock_delete, test_client):
        mock_delete.return_value = True

        response = test_client.delete("/api/instagram/instances/inst-1")

        assert response.status_code == 200
        mock_delete.assert_called_once_with("inst-1")

    @patch("src.api.instagram.delete_instance")
    def test_delete_unknown(self, mock_delete, test_client):
        mock_delete.return_value = False

        response = test_client.delete("/api/instagram/instances/missing")

        assert response.status_code == 404


class TestMessaging:
    """POST /api/instagram/messages and comment replies."""

    @patch("src.api.instagram.send_direct_message", new_callable=AsyncMock)
    @patch("src.api.instagram.find_instance_by_id")
    def test_send_message(self, mock_find, mock_send, test_client, sample_instance):
        mock_find.return_value = sample_instance
        mock_send.return_value = {"recipient_id": "u1", "message_id": "mid-1"}

        response = test_client.post(
            "/api/instagram/messages",
            json={"instanceId": "inst-1", "recipientId": "u1", "message": "Hello!"},
        )

        assert response.status_code == 200
        assert response.json()["data"]["message_id"] == "mid-1"
        assert mock_send.await_args.args[1:] == (sample_instance, "u1", "Hello!")

    @patch("src.api.instagram.find_instance_by_id")
    def test_send_message_unknown_instance(self, mock_find, test_client):
        mock_find.return_value = None

        response = test_client.post(
            "/api/instagram/messages",
            json={"instanceId": "missing", "recipientId": "u1", "message": "Hello!"},
        )

        assert response.status_code == 404

    def test_send_message_requires_text(self, test_client):
        response = test_client.post(
            "/api/instagram/messages",
            json={"instanceId": "inst-1", "recipientId": "u1", "message": ""},
        )

        assert response.status_code == 400

    @patch("src.api.instagram.send_direct_message", new_callable=AsyncMock)
    @patch("src.api.instagram.find_instance_by_id")
    def test_provider_failure_is_bad_gateway(
        self, mock_find, mock_send, test_client, sample_instance
    ):
        mock_find.return_value = sample_instance
        mock_send.side_effect = InstagramAPIError(
            "Failed to send direct message", upstream_status=400
        )

        response = test_client.post(
            "/api/instagram/messages",
            json={"instanceId": "inst-1", "recipientId": "u1", "message": "Hello!"},
        )

        assert response.status_code == 502
        assert response.json() == {
            "status": "upstream_error",
            "message": "Failed to send direct message",
        }

    @patch("src.api.instagram.reply_to_comment", new_callable=AsyncMock)
    @patch("src.api.instagram.find_instance_by_id")
    def test_reply_to_comment(self, mock_find, mock_reply, test_client, sample_instance):
        mock_find.return_value = sample_instance
        mock_reply.return_value = {"id": "reply-1"}

        response = test_client.post(
            "/api/instagram/comments/c-1/replies",
            json={"instanceId": "inst-1", "message": "Thanks!"},
        )

        assert response.status_code == 200
        assert response.json() == {
            "status": "success",
            "message": "Comment replied",
            "data": {"id": "reply-1"},
        }
        assert mock_reply.await_args.args[1:] == (sample_instance, "c-1", "Thanks!")


class TestDeauthorize:
    """POST /api/instagram/deauthorize."""

    @patch("src.api.instagram.update_instance_status")
    def test_form_encoded_signed_request(self, mock_update, test_client):
        mock_update.return_value = 1
        signed = make_signed_request({"algorithm": "HMAC-SHA256", "user_id": "123"})

        response = test_client.post(
            "/api/instagram/deauthorize", data={"signed_request": signed}
        )

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}
        mock_update.assert_called_once_with("123", "disconnected")

    @patch("src.api.instagram.update_instance_status")
    def test_json_signed_request(self, mock_update, test_client):
        mock_update.return_value = 1
        signed = make_signed_request({"algorithm": "HMAC-SHA256", "user_id": 123})

        response = test_client.post(
            "/api/instagram/deauthorize", json={"signed_request": signed}
        )

        assert response.status_code == 200
        mock_update.assert_called_once_with("123", "disconnected")

    @patch("src.api.instagram.update_instance_status")
    def test_forged_signed_request(self, mock_update, test_client):
        signed = make_signed_request(
            {"algorithm": "HMAC-SHA256", "user_id": "123"}, secret="other-secret"
        )

        response = test_client.post(
            "/api/instagram/deauthorize", data={"signed_request": signed}
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid signed_request"}
        mock_update.assert_not_called()

    def test_missing_signed_request(self, test_client):
        response = test_client.post("/api/instagram/deauthorize")

        assert response.status_code == 400
        assert response.json() == {"error": "signed_request is required"}


class TestDataDeletion:
    """POST /api/instagram/data-deletion and status lookup."""

    @patch("src.api.instagram.delete_instances_by_account_id")
    def test_deletes_account_data(self, mock_delete, test_client):
        mock_delete.return_value = 2
        signed = make_signed_request({"algorithm": "HMAC-SHA256", "user_id": "123"})

        response = test_client.post(
            "/api/instagram/data-deletion", data={"signed_request": signed}
        )

        assert response.status_code == 200
        data = response.json()
        mock_delete.assert_called_once_with("123")
        assert data["confirmation_code"]
        status_url = urlparse(data["url"])
        assert status_url.path == "/api/instagram/data-deletion/status"
        assert parse_qs(status_url.query)["code"] == [data["confirmation_code"]]

    @patch("src.api.instagram.delete_instances_by_account_id")
    def test_signed_request_without_user_is_rejected(self, mock_delete, test_client):
        signed = make_signed_request({"algorithm": "HMAC-SHA256"})

        response = test_client.post(
            "/api/instagram/data-deletion", data={"signed_request": signed}
        )

        assert response.status_code == 400
        mock_delete.assert_not_called()

    def test_status(self, test_client):
        response = test_client.get(
            "/api/instagram/data-deletion/status", params={"code": "abc123"}
        )

        assert response.status_code == 200
        assert response.json() == {"status": "completed", "confirmation_code": "abc123"}

    def test_status_requires_code(self, test_client):
        response = test_client.get("/api/instagram/data-deletion/status")
        assert response.status_code == 400
