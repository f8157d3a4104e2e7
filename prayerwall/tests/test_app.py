import math
import os
import tempfile
import time
import unittest
from datetime import datetime

from fastapi.testclient import TestClient

from prayerwall.app import create_app
from prayerwall.config import Settings
from prayerwall.db import InMemoryDbClient

ADMIN_PASSWORD = "let-me-in"


def make_settings(**overrides) -> Settings:
    values = {
        "_env_file": None,
        "admin_username": "admin",
        "admin_password": ADMIN_PASSWORD,
        "use_in_memory_backends": False,
        "database_url": None,
    }
    values.update(overrides)
    return Settings(**values)


def parse_timestamp(value: str) -> float:
    return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()


class ApiTestCase(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.client = self.open_client(create_app(make_settings(), db=self.db))

    def open_client(self, app) -> TestClient:
        client = TestClient(app)
        client.__enter__()
        self.addCleanup(client.__exit__, None, None, None)
        return client

    def login(self) -> str:
        response = self.client.post(
            "/api/login", json={"username": "admin", "password": ADMIN_PASSWORD}
        )
        self.assertEqual(response.status_code, 200)
        return response.json()["token"]

    def auth(self, token: str) -> dict:
        return {"Authorization": f"Bearer {token}"}

    def submit(self, **payload) -> dict:
        response = self.client.post("/api/prayer-requests", json=payload)
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()


class AuthApiTests(ApiTestCase):
    def test_login_returns_token_and_admin_user(self):
        response = self.client.post(
            "/api/login", json={"username": "admin", "password": ADMIN_PASSWORD}
        )
        payload = response.json()
        self.assertTrue(payload["success"])
        self.assertTrue(payload["token"])
        self.assertEqual(payload["user"], {"username": "admin", "role": "admin"})

    def test_wrong_password_then_missing_token(self):
        token = self.login()

        response = self.client.post(
            "/api/login", json={"username": "admin", "password": "wrong"}
        )
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json(), {"error": "Invalid credentials"})

        response = self.client.get("/api/prayer-requests")
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json(), {"error": "Access token required"})

        # The earlier token is unaffected by the failed login.
        response = self.client.get("/api/prayer-requests", headers=self.auth(token))
        self.assertEqual(response.status_code, 200)

    def test_unknown_token_is_forbidden(self):
        response = self.client.get(
            "/api/prayer-requests", headers=self.auth("not-a-real-token")
        )
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json(), {"error": "Invalid or expired token"})

    def test_logout_revokes_token(self):
        token = self.login()
        response = self.client.post("/api/logout", headers=self.auth(token))
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["success"])

        response = self.client.get("/api/comments", headers=self.auth(token))
        self.assertEqual(response.status_code, 403)

    def test_each_login_gets_a_distinct_token(self):
        self.assertNotEqual(self.login(), self.login())


class PrayerRequestApiTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.headers = self.auth(self.login())

    def test_public_submission(self):
        created = self.submit(name="Sarah M.", request="Healing")
        self.assertEqual(created["name"], "Sarah M.")
        self.assertEqual(created["status"], "pending")
        self.assertFalse(created["isAnonymous"])
        self.assertEqual(created["createdAt"], created["updatedAt"])
        self.assertTrue(created["id"])

    def test_anonymous_submission_hides_name(self):
        created = self.submit(name="Sarah M.", request="Healing", isAnonymous=True)
        self.assertEqual(created["name"], "Anonymous")
        fetched = self.client.get(
            f"/api/prayer-requests/{created['id']}", headers=self.headers
        ).json()
        self.assertEqual(fetched["name"], "Anonymous")

    def test_submission_cannot_choose_status(self):
        created = self.submit(request="Healing", status="answered")
        self.assertEqual(created["status"], "pending")

    def test_missing_request_text(self):
        for body in ({"name": "Sarah"}, {"name": "Sarah", "request": ""}):
            response = self.client.post("/api/prayer-requests", json=body)
            self.assertEqual(response.status_code, 400)
            self.assertEqual(response.json(), {"error": "Prayer request text is required"})
        self.assertEqual(self.db.prayer_requests.count(), 0)

    def test_malformed_body_is_a_400(self):
        response = self.client.post(
            "/api/prayer-requests", json={"request": "x", "isAnonymous": [1, 2]}
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn("error", response.json())

    def test_list_is_newest_first_and_filterable(self):
        first = self.submit(request="first")
        second = self.submit(request="second")
        self.client.put(
            f"/api/prayer-requests/{first['id']}",
            json={"status": "answered"},
            headers=self.headers,
        )

        listed = self.client.get("/api/prayer-requests", headers=self.headers).json()
        self.assertEqual([r["id"] for r in listed], [second["id"], first["id"]])

        answered = self.client.get(
            "/api/prayer-requests", params={"status": "answered"}, headers=self.headers
        ).json()
        self.assertEqual([r["id"] for r in answered], [first["id"]])

        response = self.client.get(
            "/api/prayer-requests", params={"status": "closed"}, headers=self.headers
        )
        self.assertEqual(response.status_code, 400)

    def test_get_unknown_request(self):
        response = self.client.get("/api/prayer-requests/nope", headers=self.headers)
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json(), {"error": "Prayer request not found"})

    def test_partial_update(self):
        created = self.submit(name="Michael T.", request="Leadership")
        response = self.client.put(
            f"/api/prayer-requests/{created['id']}",
            json={"status": "in-progress"},
            headers=self.headers,
        )
        self.assertEqual(response.status_code, 200)
        updated = response.json()
        self.assertEqual(updated["status"], "in-progress")
        for field in ("id", "name", "request", "isAnonymous", "createdAt"):
            self.assertEqual(updated[field], created[field])
        self.assertGreaterEqual(
            parse_timestamp(updated["updatedAt"]), parse_timestamp(created["updatedAt"])
        )

    def test_update_rejects_bad_status_and_unknown_id(self):
        created = self.submit(request="Leadership")
        response = self.client.put(
            f"/api/prayer-requests/{created['id']}",
            json={"status": "closed"},
            headers=self.headers,
        )
        self.assertEqual(response.status_code, 400)

        response = self.client.put(
            "/api/prayer-requests/nope", json={"status": "answered"}, headers=self.headers
        )
        self.assertEqual(response.status_code, 404)

    def test_update_requires_token(self):
        created = self.submit(request="Leadership")
        response = self.client.put(
            f"/api/prayer-requests/{created['id']}", json={"status": "answered"}
        )
        self.assertEqual(response.status_code, 401)

    def test_delete_returns_deleted_entity(self):
        created = self.submit(request="Strength")
        response = self.client.delete(
            f"/api/prayer-requests/{created['id']}", headers=self.headers
        )
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertTrue(payload["success"])
        self.assertEqual(payload["request"], created)

        response = self.client.delete(
            f"/api/prayer-requests/{created['id']}", headers=self.headers
        )
        self.assertEqual(response.status_code, 404)

    def test_delete_all(self):
        for text in ("one", "two", "three"):
            self.submit(request=text)
        response = self.client.delete("/api/prayer-requests", headers=self.headers)
        self.assertEqual(response.json(), {"success": True, "deletedCount": 3})
        listed = self.client.get("/api/prayer-requests", headers=self.headers).json()
        self.assertEqual(listed, [])


class CommentApiTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.headers = self.auth(self.login())

    def test_admin_listing_is_unbounded(self):
        for i in range(60):
            self.db.comments.create({"text": f"comment {i}"})
        listed = self.client.get("/api/comments", headers=self.headers).json()
        self.assertEqual(len(listed), 60)
        self.assertEqual(listed[0]["text"], "comment 59")

    def test_delete_comment(self):
        comment = self.db.comments.create({"author": "Amy", "text": "Hello"})
        response = self.client.delete(f"/api/comments/{comment.id}", headers=self.headers)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["comment"], comment.as_dict())

        response = self.client.delete(f"/api/comments/{comment.id}", headers=self.headers)
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json(), {"error": "Comment not found"})


class PushChannelTests(ApiTestCase):
    def test_initial_comments_capped_newest_first(self):
        for i in range(55):
            self.db.comments.create({"author": "Amy", "text": f"comment {i}"})
        with self.client.websocket_connect("/ws") as ws:
            initial = ws.receive_json()
        self.assertEqual(initial["event"], "initial-comments")
        self.assertEqual(len(initial["data"]), 50)
        self.assertEqual(initial["data"][0]["text"], "comment 54")
        self.assertEqual(initial["data"][-1]["text"], "comment 5")

    def test_submitted_comment_is_broadcast_to_everyone(self):
        submitted_at = math.floor(time.time() * 1000) / 1000
        with self.client.websocket_connect("/ws") as sender, self.client.websocket_connect(
            "/ws"
        ) as viewer:
            self.assertEqual(sender.receive_json()["data"], [])
            self.assertEqual(viewer.receive_json()["data"], [])

            sender.send_json(
                {"event": "new-comment", "data": {"author": "Amy", "text": "Hello"}}
            )
            for ws in (sender, viewer):
                received = ws.receive_json()
                self.assertEqual(received["event"], "new-comment")
                comment = received["data"]
                self.assertTrue(comment["id"])
                self.assertEqual(comment["author"], "Amy")
                self.assertEqual(comment["text"], "Hello")
                self.assertGreaterEqual(parse_timestamp(comment["timestamp"]), submitted_at)

        headers = self.auth(self.login())
        listed = self.client.get("/api/comments", headers=headers).json()
        self.assertEqual([c["text"] for c in listed], ["Hello"])

    def test_invalid_frames_are_ignored(self):
        with self.client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_text("this is not json")
            ws.send_json({"event": "new-comment", "data": {"author": "Amy"}})
            ws.send_json({"event": "new-comment", "data": {"text": "Still here"}})
            received = ws.receive_json()
        self.assertEqual(received["event"], "new-comment")
        self.assertEqual(received["data"]["text"], "Still here")
        self.assertEqual(received["data"]["author"], "Anonymous")
        self.assertEqual(self.db.comments.count(), 1)

    def test_binary_frame_is_ignored(self):
        with self.client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_bytes(b"\x00\x01")
            ws.send_json({"event": "new-comment", "data": {"text": "After bytes"}})
            received = ws.receive_json()
        self.assertEqual(received["event"], "new-comment")
        self.assertEqual(received["data"]["text"], "After bytes")
        self.assertEqual(self.db.comments.count(), 1)

    def test_prayer_request_lifecycle_events(self):
        headers = self.auth(self.login())
        with self.client.websocket_connect("/ws") as ws:
            ws.receive_json()

            created = self.submit(name="Sarah", request="Healing")
            event = ws.receive_json()
            self.assertEqual(event["event"], "prayer-request-updated")
            self.assertEqual(event["data"], {"type": "added", "request": created})

            updated = self.client.put(
                f"/api/prayer-requests/{created['id']}",
                json={"status": "answered"},
                headers=headers,
            ).json()
            event = ws.receive_json()
            self.assertEqual(event["data"], {"type": "updated", "request": updated})

            self.client.delete(f"/api/prayer-requests/{created['id']}", headers=headers)
            event = ws.receive_json()
            self.assertEqual(event["data"], {"type": "deleted", "requestId": created["id"]})

            self.submit(request="Another")
            ws.receive_json()
            self.client.delete("/api/prayer-requests", headers=headers)
            event = ws.receive_json()
            self.assertEqual(event["data"], {"type": "deleted-all", "count": 1})

        listed = self.client.get("/api/prayer-requests", headers=headers).json()
        self.assertEqual(listed, [])

    def test_failed_submission_is_not_broadcast(self):
        with self.client.websocket_connect("/ws") as ws:
            ws.receive_json()
            response = self.client.post("/api/prayer-requests", json={"name": "x"})
            self.assertEqual(response.status_code, 400)
            self.submit(request="Valid")
            event = ws.receive_json()
        self.assertEqual(event["data"]["type"], "added")
        self.assertEqual(event["data"]["request"]["request"], "Valid")

    def test_comment_deletion_is_broadcast(self):
        comment = self.db.comments.create({"author": "Amy", "text": "Hello"})
        headers = self.auth(self.login())
        with self.client.websocket_connect("/ws") as ws:
            ws.receive_json()
            self.client.delete(f"/api/comments/{comment.id}", headers=headers)
            event = ws.receive_json()
        self.assertEqual(event, {"event": "comment-deleted", "data": {"id": comment.id}})

    def test_reconnect_gets_fresh_snapshot(self):
        with self.client.websocket_connect("/ws") as ws:
            self.assertEqual(ws.receive_json()["data"], [])
            ws.send_json({"event": "new-comment", "data": {"text": "First"}})
            ws.receive_json()
        with self.client.websocket_connect("/ws") as ws:
            snapshot = ws.receive_json()["data"]
        self.assertEqual([c["text"] for c in snapshot], ["First"])


class HealthTests(ApiTestCase):
    def test_health_in_memory_mode(self):
        self.submit(request="Healing")
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["status"], "ok")
        self.assertEqual(payload["database"], "disconnected")
        self.assertEqual(payload["storage"], "memory")
        self.assertEqual(payload["prayerRequestsCount"], 1)
        self.assertEqual(payload["connectedClients"], 0)

    def test_health_counts_live_connections(self):
        with self.client.websocket_connect("/ws") as ws:
            ws.receive_json()
            payload = self.client.get("/health").json()
        self.assertEqual(payload["connectedClients"], 1)


class BackendSelectionApiTests(unittest.TestCase):
    def _client(self, settings: Settings) -> TestClient:
        client = TestClient(create_app(settings))
        client.__enter__()
        self.addCleanup(client.__exit__, None, None, None)
        return client

    def _exercise_crud(self, client: TestClient) -> None:
        token = client.post(
            "/api/login", json={"username": "admin", "password": ADMIN_PASSWORD}
        ).json()["token"]
        headers = {"Authorization": f"Bearer {token}"}

        created = client.post("/api/prayer-requests", json={"request": "Healing"})
        self.assertEqual(created.status_code, 201)
        request_id = created.json()["id"]

        fetched = client.get(f"/api/prayer-requests/{request_id}", headers=headers)
        self.assertEqual(fetched.status_code, 200)
        updated = client.put(
            f"/api/prayer-requests/{request_id}",
            json={"status": "archived"},
            headers=headers,
        )
        self.assertEqual(updated.json()["status"], "archived")
        deleted = client.delete(f"/api/prayer-requests/{request_id}", headers=headers)
        self.assertEqual(deleted.status_code, 200)
        cleared = client.delete("/api/prayer-requests", headers=headers)
        self.assertEqual(cleared.json()["deletedCount"], 0)

    def test_unreachable_database_falls_back(self):
        client = self._client(
            make_settings(database_url="sqlite:////nonexistent-prayerwall-dir/prayers.db")
        )
        health = client.get("/health").json()
        self.assertEqual(health["database"], "disconnected")
        self.assertEqual(health["storage"], "memory")
        self._exercise_crud(client)

    def test_durable_backend(self):
        directory = tempfile.TemporaryDirectory()
        self.addCleanup(directory.cleanup)
        database_url = f"sqlite:///{os.path.join(directory.name, 'prayers.db')}"

        client = self._client(make_settings(database_url=database_url))
        health = client.get("/health").json()
        self.assertEqual(health["database"], "connected")
        self.assertEqual(health["storage"], "durable")
        self._exercise_crud(client)


if __name__ == "__main__":
    unittest.main()
