#!/usr/bin/env python3

from __future__ import annotations

import os
import tempfile
import unittest
from pathlib import Path

from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[3]
TEST_DB_DIR = tempfile.TemporaryDirectory(dir=ROOT)
TEST_DB_PATH = Path(TEST_DB_DIR.name) / "test_werewolf_api.db"
os.environ["WEREWOLF_DB_PATH"] = str(TEST_DB_PATH)

from apps.api.werewolf_api.main import app
from apps.api.werewolf_api.services.werewolf_engine import get_engine, reset_engine_cache_for_tests
from apps.api.werewolf_api.storage.werewolf import reset_backend_cache_for_tests

API = "/api/v1/werewolf"
PLAYERS = [f"agent-{idx}" for idx in range(8)]


class WerewolfApiTests(unittest.TestCase):
    def setUp(self) -> None:
        os.environ["WEREWOLF_DB_PATH"] = str(TEST_DB_PATH)
        if TEST_DB_PATH.exists():
            TEST_DB_PATH.unlink()
        reset_backend_cache_for_tests()
        reset_engine_cache_for_tests()
        self.client = TestClient(app)

    def _form_match(self) -> str:
        body = {}
        for player_id in PLAYERS:
            resp = self.client.post(f"{API}/queue/join", json={"player_id": player_id})
            self.assertEqual(resp.status_code, 200, resp.text)
            body = resp.json()
        self.assertEqual(body["state"], "seated")
        return body["match_id"]

    def _state(self, match_id: str, viewer_id: str | None = None) -> dict:
        params = {"viewer_id": viewer_id} if viewer_id else {}
        resp = self.client.get(f"{API}/matches/{match_id}/state", params=params)
        self.assertEqual(resp.status_code, 200, resp.text)
        return resp.json()["state"]

    def _start_night(self) -> tuple[str, dict[str, str]]:
        match_id = self._form_match()
        for player_id in PLAYERS:
            resp = self.client.post(f"{API}/matches/{match_id}/ready", json={"player_id": player_id})
            self.assertEqual(resp.status_code, 200, resp.text)
        roles = {pid: self._state(match_id, pid)["you"]["role"] for pid in PLAYERS}
        return match_id, roles

    def test_healthz_and_poller_status(self) -> None:
        resp = self.client.get("/healthz")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["status"], "ok")

        poller = self.client.get(f"{API}/poller")
        self.assertEqual(poller.status_code, 200)
        self.assertIn("running", poller.json()["poller"])

    def test_queue_forms_match_and_lists_it(self) -> None:
        status = self.client.get(f"{API}/queue/status", params={"player_id": "agent-0"}).json()
        self.assertEqual(status["state"], "idle")
        self.assertEqual(status["required_players"], 8)

        match_id = self._form_match()
        listed = self.client.get(f"{API}/matches").json()
        self.assertEqual(listed["count"], 1)
        self.assertEqual(listed["matches"][0]["match_id"], match_id)
        self.assertEqual(self.client.get(f"{API}/matches", params={"status": "ended"}).json()["count"], 0)

        state = self._state(match_id)
        self.assertEqual(state["phase"], "READY_CHECK")
        self.assertTrue(all(player["role"] is None for player in state["players"]))
        self.assertTrue(state["phase_ends_at_iso"].endswith("Z"))

    def test_night_actions_and_manual_advance(self) -> None:
        match_id, roles = self._start_night()
        self.assertEqual(self._state(match_id)["phase"], "NIGHT")
        wolves = [pid for pid, role in roles.items() if role == "WEREWOLF"]
        villagers = [pid for pid, role in roles.items() if role == "VILLAGER"]

        for wolf in wolves:
            resp = self.client.post(
                f"{API}/matches/{match_id}/night/wolf-kill",
                json={"player_id": wolf, "target_id": villagers[0], "round_number": 1},
            )
            self.assertEqual(resp.status_code, 200, resp.text)

        ends_at = self._state(match_id)["phase_ends_at"]
        body = get_engine().advance(match_id=match_id, now=ends_at)
        self.assertEqual(body["to_phase"], "DAY_DISCUSSION")
        self.assertEqual(body["eliminated_ids"], [villagers[0]])

        public = self._state(match_id)
        dead = [p for p in public["players"] if not p["alive"]]
        self.assertEqual([p["player_id"] for p in dead], [villagers[0]])
        self.assertEqual(dead[0]["role"], "VILLAGER")

        events = self.client.get(
            f"{API}/matches/{match_id}/events", params={"viewer_id": villagers[1], "limit": 200}
        ).json()
        types = [event["event_type"] for event in events["events"]]
        self.assertIn("night_result", types)
        self.assertNotIn("night_action_submitted", types)

    def test_error_responses_carry_codes(self) -> None:
        missing = self.client.post(f"{API}/matches/match_missing/ready", json={"player_id": "agent-0"})
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json()["code"], "NOT_FOUND")
        self.assertFalse(missing.json()["retryable"])

        match_id, roles = self._start_night()
        villager = next(pid for pid, role in roles.items() if role == "VILLAGER")
        wolf = next(pid for pid, role in roles.items() if role == "WEREWOLF")

        forbidden = self.client.post(
            f"{API}/matches/{match_id}/night/wolf-kill",
            json={"player_id": villager, "target_id": wolf},
        )
        self.assertEqual(forbidden.status_code, 403)
        self.assertEqual(forbidden.json()["code"], "FORBIDDEN")

        expired = self.client.post(
            f"{API}/matches/{match_id}/vote",
            json={"player_id": villager, "target_id": wolf},
        )
        self.assertEqual(expired.status_code, 409)
        self.assertEqual(expired.json()["code"], "PHASE_EXPIRED")

        stale = self.client.post(
            f"{API}/matches/{match_id}/night/wolf-kill",
            json={"player_id": wolf, "target_id": villager, "round_number": 4},
        )
        self.assertEqual(stale.status_code, 409)
        self.assertEqual(stale.json()["code"], "PHASE_EXPIRED")

        self_target = self.client.post(
            f"{API}/matches/{match_id}/night/wolf-kill",
            json={"player_id": wolf, "target_id": wolf},
        )
        self.assertEqual(self_target.status_code, 400)
        self.assertEqual(self_target.json()["code"], "VALIDATION_ERROR")

    def test_idempotency_reuse_and_conflict(self) -> None:
        match_id = self._form_match()
        payload = {"player_id": "agent-0", "idempotency_key": "ready-agent-0"}
        first = self.client.post(f"{API}/matches/{match_id}/ready", json=payload)
        second = self.client.post(f"{API}/matches/{match_id}/ready", json=payload)
        self.assertEqual(first.status_code, 200, first.text)
        self.assertEqual(first.json()["event_id"], second.json()["event_id"])
        self.assertTrue(second.json()["reused"])

        conflict = self.client.post(
            f"{API}/matches/{match_id}/ready",
            json={"player_id": "agent-1", "idempotency_key": "ready-agent-0"},
        )
        self.assertEqual(conflict.status_code, 409)
        self.assertEqual(conflict.json()["code"], "IDEMPOTENCY_CONFLICT")

    def test_wolf_chat_rate_limit_sets_retry_after(self) -> None:
        match_id, roles = self._start_night()
        wolf = next(pid for pid, role in roles.items() if role == "WEREWOLF")
        url = f"{API}/matches/{match_id}/night/wolf-chat"

        self.assertEqual(self.client.post(url, json={"player_id": wolf, "text": "first"}).status_code, 200)
        limited = self.client.post(url, json={"player_id": wolf, "text": "second"})
        self.assertEqual(limited.status_code, 429)
        self.assertEqual(limited.json()["code"], "RATE_LIMITED")
        self.assertTrue(limited.json()["retryable"])
        self.assertEqual(limited.headers.get("Retry-After"), "1")

    def test_request_model_limits(self) -> None:
        match_id = self._form_match()
        resp = self.client.post(
            f"{API}/matches/{match_id}/say",
            json={"player_id": "agent-0", "text": "x" * 501},
        )
        self.assertEqual(resp.status_code, 422)

        short_key = self.client.post(
            f"{API}/matches/{match_id}/ready",
            json={"player_id": "agent-0", "idempotency_key": "key-123"},
        )
        self.assertEqual(short_key.status_code, 422)

    def test_http_advance_uses_the_server_clock(self) -> None:
        match_id = self._form_match()
        before = self._state(match_id)

        far_future = {"now": before["phase_ends_at"] + 10**12}
        resp = self.client.post(f"{API}/matches/{match_id}/advance", json=far_future)
        self.assertEqual(resp.status_code, 200, resp.text)
        self.assertFalse(resp.json()["changed"])
        everything = self.client.post(f"{API}/advance", json=far_future)
        self.assertEqual(everything.status_code, 200, everything.text)
        self.assertEqual(everything.json()["advanced"], [])

        after = self._state(match_id)
        self.assertEqual(after["phase"], "READY_CHECK")
        self.assertEqual(after["phase_ends_at"], before["phase_ends_at"])
        ready = self.client.post(f"{API}/matches/{match_id}/ready", json={"player_id": "agent-0"})
        self.assertEqual(ready.status_code, 200, ready.text)


if __name__ == "__main__":
    unittest.main()
