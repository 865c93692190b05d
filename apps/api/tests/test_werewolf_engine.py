#!/usr/bin/env python3

from __future__ import annotations

import itertools
import tempfile
import threading
import unittest
from pathlib import Path

from apps.api.werewolf_api.services.match_poller import MatchPhasePoller
from apps.api.werewolf_api.services.werewolf_engine import WerewolfEngine
from apps.api.werewolf_api.storage.werewolf import SQLiteWerewolfStore
from packages.werewolf_core.engine.config import EngineConfig
from packages.werewolf_core.engine.errors import (
    ForbiddenError,
    IdempotencyConflictError,
    NotFoundError,
    PhaseExpiredError,
    ValidationError,
)
from packages.werewolf_core.engine.state import create_match_state


class FakeClock:
    def __init__(self, now: int = 1_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


PLAYERS = [f"agent-{idx}" for idx in range(8)]


class WerewolfEngineTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.store = SQLiteWerewolfStore(Path(self.tmp.name) / "werewolf.db")
        self.clock = FakeClock()
        ids = itertools.count(1)
        self.engine = WerewolfEngine(
            store=self.store,
            config=EngineConfig(),
            clock=self.clock,
            match_id_factory=lambda: f"match_{next(ids)}",
        )

    def tearDown(self) -> None:
        self.tmp.cleanup()

    def _form_match(self) -> str:
        for player_id in PLAYERS:
            self.clock.advance(1)
            status = self.engine.queue_join(player_id=player_id)
        self.assertEqual(status["state"], "seated")
        return str(status["match_id"])

    def _roles(self, match_id: str) -> dict[str, str]:
        return {
            player_id: self.engine.get_state(match_id=match_id, viewer_id=player_id)["you"]["role"]
            for player_id in PLAYERS
        }

    def _start_night(self) -> tuple[str, dict[str, str]]:
        match_id = self._form_match()
        for player_id in PLAYERS:
            self.engine.ready(match_id=match_id, player_id=player_id)
        return match_id, self._roles(match_id)

    def test_eighth_join_forms_ready_check_match(self) -> None:
        for player_id in PLAYERS[:7]:
            self.clock.advance(1)
            status = self.engine.queue_join(player_id=player_id)
        self.assertEqual(status["state"], "queued")
        self.assertEqual(status["position"], 7)
        self.assertEqual(status["queue_size"], 7)
        self.assertEqual(self.engine.list_matches(), [])

        self.clock.advance(1)
        status = self.engine.queue_join(player_id=PLAYERS[7])

        self.assertEqual(status["state"], "seated")
        self.assertEqual(status["formed_match_ids"], ["match_1"])
        self.assertEqual(status["queue_size"], 0)
        matches = self.engine.list_matches()
        self.assertEqual(len(matches), 1)
        self.assertEqual(matches[0]["phase"], "READY_CHECK")
        self.assertEqual(matches[0]["player_count"], 8)
        first = self.engine.queue_status(player_id=PLAYERS[0])
        self.assertEqual(first["state"], "seated")
        self.assertEqual(first["seat"], 1)

    def test_excess_players_stay_queued_and_seated_join_is_noop(self) -> None:
        match_id = self._form_match()
        extra = self.engine.queue_join(player_id="agent-extra")
        self.assertEqual(extra["state"], "queued")
        self.assertEqual(extra["position"], 1)

        again = self.engine.queue_join(player_id=PLAYERS[0])
        self.assertEqual(again["state"], "seated")
        self.assertEqual(again["match_id"], match_id)
        self.assertEqual(self.engine.queue_status(player_id="agent-extra")["queue_size"], 1)

        left = self.engine.queue_leave(player_id="agent-extra")
        self.assertTrue(left["removed"])
        self.assertEqual(left["state"], "idle")
        self.assertFalse(self.engine.queue_leave(player_id="agent-extra")["removed"])

    def test_queue_join_is_idempotent(self) -> None:
        first = self.engine.queue_join(player_id="agent-0", idempotency_key="join-key-0001")
        second = self.engine.queue_join(player_id="agent-0", idempotency_key="join-key-0001")
        self.assertFalse(first["reused"])
        self.assertTrue(second["reused"])
        with self.assertRaises(IdempotencyConflictError):
            self.engine.queue_join(player_id="agent-1", idempotency_key="join-key-0001")
        self.assertEqual(self.engine.queue_status(player_id="agent-1")["state"], "idle")

    def test_all_ready_moves_to_night_and_empty_night_dawns_quietly(self) -> None:
        match_id = self._form_match()
        for player_id in PLAYERS[:-1]:
            result = self.engine.ready(match_id=match_id, player_id=player_id)
            self.assertEqual(result["phase"], "READY_CHECK")
        result = self.engine.ready(match_id=match_id, player_id=PLAYERS[-1])
        self.assertEqual(result["phase"], "NIGHT")
        self.assertTrue(result["advanced"])

        state = self.engine.get_state(match_id=match_id)
        self.clock.now = state["phase_ends_at"]
        advanced = self.engine.advance(match_id=match_id)

        self.assertTrue(advanced["changed"])
        self.assertEqual(advanced["to_phase"], "DAY_DISCUSSION")
        self.assertEqual(advanced["eliminated_ids"], [])
        self.assertEqual(self.engine.get_state(match_id=match_id)["players_alive"], 8)

        repeat = self.engine.advance(match_id=match_id)
        self.assertFalse(repeat["changed"])
        self.assertEqual(repeat["event_ids"], [])

    def test_duplicate_ready_with_key_returns_stored_result(self) -> None:
        match_id = self._form_match()
        first = self.engine.ready(match_id=match_id, player_id=PLAYERS[0], idempotency_key="ready-key-001")
        second = self.engine.ready(match_id=match_id, player_id=PLAYERS[0], idempotency_key="ready-key-001")
        self.assertEqual(first["event_id"], second["event_id"])
        self.assertTrue(second["reused"])
        events = self.engine.events_get(match_id=match_id, limit=200)["events"]
        ready_events = [e for e in events if e["event_type"] == "player_ready"]
        self.assertEqual(len(ready_events), 1)

        with self.assertRaises(IdempotencyConflictError):
            self.engine.ready(match_id=match_id, player_id=PLAYERS[1], idempotency_key="ready-key-001")

    def test_action_errors(self) -> None:
        match_id, roles = self._start_night()
        villager = next(pid for pid, role in roles.items() if role == "VILLAGER")
        wolf = next(pid for pid, role in roles.items() if role == "WEREWOLF")

        with self.assertRaises(NotFoundError):
            self.engine.wolf_kill(match_id="match_missing", player_id=wolf, target_id=villager)
        with self.assertRaises(ValidationError):
            self.engine.wolf_kill(match_id=match_id, player_id="stranger", target_id=villager)
        with self.assertRaises(ForbiddenError):
            self.engine.wolf_kill(match_id=match_id, player_id=villager, target_id=wolf)
        with self.assertRaises(PhaseExpiredError):
            self.engine.vote(match_id=match_id, player_id=villager, target_id=wolf)

        self.clock.now = self.engine.get_state(match_id=match_id)["phase_ends_at"]
        with self.assertRaises(PhaseExpiredError):
            self.engine.wolf_kill(match_id=match_id, player_id=wolf, target_id=villager)

    def test_wolf_chat_visible_to_wolves_until_viewer_dies(self) -> None:
        match_id, roles = self._start_night()
        wolves = [pid for pid, role in roles.items() if role == "WEREWOLF"]
        villagers = [pid for pid, role in roles.items() if role == "VILLAGER"]
        self.engine.wolf_chat(match_id=match_id, player_id=wolves[0], text=f"take {villagers[0]}")

        def has_chat(viewer_id):
            events = self.engine.get_state(match_id=match_id, viewer_id=viewer_id)["events"]
            return any(e["event_type"] == "wolf_chat_message" for e in events)

        self.assertTrue(has_chat(wolves[1]))
        self.assertFalse(has_chat(villagers[0]))
        self.assertFalse(has_chat(None))

        for wolf in wolves:
            self.engine.wolf_kill(match_id=match_id, player_id=wolf, target_id=villagers[0])
        self.clock.now = self.engine.get_state(match_id=match_id)["phase_ends_at"]
        advanced = self.engine.advance(match_id=match_id)

        self.assertEqual(advanced["eliminated_ids"], [villagers[0]])
        self.assertTrue(has_chat(villagers[0]))
        self.assertFalse(has_chat(villagers[1]))

    def test_full_round_with_vote_elimination(self) -> None:
        match_id, roles = self._start_night()
        wolves = [pid for pid, role in roles.items() if role == "WEREWOLF"]
        seer = next(pid for pid, role in roles.items() if role == "SEER")
        doctor = next(pid for pid, role in roles.items() if role == "DOCTOR")
        villagers = [pid for pid, role in roles.items() if role == "VILLAGER"]

        for wolf in wolves:
            self.engine.wolf_kill(match_id=match_id, player_id=wolf, target_id=villagers[0])
        self.engine.seer_inspect(match_id=match_id, player_id=seer, target_id=wolves[0])
        result = self.engine.doctor_protect(match_id=match_id, player_id=doctor, target_id=villagers[0])
        self.assertEqual(result["phase"], "DAY_DISCUSSION")

        seer_view = self.engine.get_state(match_id=match_id, viewer_id=seer)
        self.assertEqual(seer_view["you"]["seer_results"][0]["target_id"], wolves[0])
        self.assertTrue(seer_view["you"]["seer_results"][0]["is_werewolf"])
        self.assertEqual(seer_view["players_alive"], 8)

        self.clock.advance(10)
        self.engine.say_public(match_id=match_id, player_id=seer, text=f"{wolves[0]} is a wolf")
        self.clock.now = self.engine.get_state(match_id=match_id)["phase_ends_at"]
        self.assertEqual(self.engine.advance(match_id=match_id)["to_phase"], "VOTING")

        self.clock.advance(10)
        for voter in PLAYERS:
            target = villagers[1] if voter == wolves[0] else wolves[0]
            outcome = self.engine.vote(match_id=match_id, player_id=voter, target_id=target)
        self.assertEqual(outcome["phase"], "RESOLUTION")

        state = self.engine.get_state(match_id=match_id)
        eliminated = {p["player_id"]: p for p in state["players"] if not p["alive"]}
        self.assertEqual(list(eliminated), [wolves[0]])
        self.assertEqual(eliminated[wolves[0]]["role"], "WEREWOLF")

        self.clock.now = state["phase_ends_at"]
        advanced = self.engine.advance(match_id=match_id)
        self.assertEqual(advanced["to_phase"], "NIGHT")
        self.assertEqual(advanced["round_number"], 2)

    def test_events_paging(self) -> None:
        match_id = self._form_match()
        for player_id in PLAYERS[:3]:
            self.engine.ready(match_id=match_id, player_id=player_id)
        everything = self.engine.events_get(match_id=match_id, limit=200)
        seqs = [e["seq"] for e in everything["events"]]
        self.assertEqual(seqs, sorted(seqs))
        self.assertEqual([e["event_id"] for e in everything["events"]], [str(s) for s in seqs])

        latest = self.engine.events_get(match_id=match_id, limit=2)
        self.assertEqual([e["seq"] for e in latest["events"]], seqs[-2:])

        after = self.engine.events_get(match_id=match_id, since_seq=seqs[0], limit=2)
        self.assertEqual([e["seq"] for e in after["events"]], seqs[1:3])
        self.assertEqual(after["next_seq"], seqs[2])

    def test_advance_all_moves_expired_matches(self) -> None:
        match_id = self._form_match()
        self.clock.now = self.engine.get_state(match_id=match_id)["phase_ends_at"]
        result = self.engine.advance_all()
        self.assertEqual(result["checked"], 1)
        self.assertEqual(result["advanced"][0]["to_phase"], "NIGHT")
        self.assertEqual(self.engine.advance_all()["advanced"], [])

    def test_poller_advances_expired_matches_once(self) -> None:
        match_id = self._form_match()
        poller = MatchPhasePoller(engine_factory=lambda: self.engine, interval_seconds=0.1)
        self.assertEqual(poller.poll_once(), 0)

        self.clock.now = self.engine.get_state(match_id=match_id)["phase_ends_at"]
        self.assertEqual(poller.poll_once(), 1)
        self.assertEqual(poller.poll_once(), 0)
        self.assertEqual(self.engine.get_state(match_id=match_id)["phase"], "NIGHT")
        self.assertFalse(poller.status()["running"])

    def _seed_ready_checks(self, count: int) -> list[str]:
        match_ids = [f"bulk_{idx:04d}" for idx in range(count)]
        with self.store.transaction():
            for idx, match_id in enumerate(match_ids):
                state = create_match_state(
                    match_id=match_id,
                    player_ids=[f"{match_id}-p{seat}" for seat in range(8)],
                    now=self.clock.now + idx,
                    config=self.engine.config,
                )
                self.store.create_match(
                    state=state.to_dict(),
                    seats=[{"player_id": p.player_id, "seat": p.seat} for p in state.players],
                    now=state.created_at,
                )
        return match_ids

    def test_advance_all_reaches_every_due_match(self) -> None:
        match_ids = self._seed_ready_checks(501)
        self.assertEqual(self.store.list_due_match_ids(now=self.clock.now), [])

        self.clock.advance(10_000_000)
        due = self.store.list_due_match_ids(now=self.clock.now)
        self.assertEqual(due, match_ids)

        result = self.engine.advance_all()
        self.assertEqual(result["checked"], 501)
        self.assertEqual(len(result["advanced"]), 501)
        for match_id in (match_ids[0], match_ids[-1]):
            self.assertEqual(self.engine.get_state(match_id=match_id)["phase"], "NIGHT")

    def test_advance_never_moves_the_clock_backwards(self) -> None:
        match_id = self._form_match()
        before = self.engine.get_state(match_id=match_id)

        result = self.engine.advance(match_id=match_id, now=0)

        self.assertFalse(result["changed"])
        after = self.engine.get_state(match_id=match_id)
        self.assertEqual(after["phase_started_at"], before["phase_started_at"])
        self.assertEqual(after["phase_ends_at"], before["phase_ends_at"])

    def test_same_millisecond_joins_keep_arrival_order(self) -> None:
        self.engine.queue_join(player_id="zed")
        self.engine.queue_join(player_id="amy")
        self.assertEqual(self.engine.queue_status(player_id="zed")["position"], 1)
        self.assertEqual(self.engine.queue_status(player_id="amy")["position"], 2)

        for idx in range(6):
            self.engine.queue_join(player_id=f"agent-{idx}")
        status = self.engine.queue_status(player_id="zed")
        self.assertEqual(status["state"], "seated")
        self.assertEqual(status["seat"], 1)
        self.assertEqual(self.engine.queue_status(player_id="amy")["seat"], 2)

    def test_service_enforces_key_length(self) -> None:
        with self.assertRaises(ValidationError):
            self.engine.queue_join(player_id="agent-0", idempotency_key="key-123")
        with self.assertRaises(ValidationError):
            self.engine.queue_join(player_id="agent-0", idempotency_key="k" * 129)
        self.assertEqual(self.engine.queue_status(player_id="agent-0")["state"], "idle")

    def test_concurrent_duplicates_apply_once(self) -> None:
        match_id = self._form_match()
        callers = 8
        barrier = threading.Barrier(callers)
        results: list[dict] = []
        errors: list[BaseException] = []
        lock = threading.Lock()

        def call() -> None:
            barrier.wait()
            try:
                out = self.engine.ready(
                    match_id=match_id, player_id=PLAYERS[0], idempotency_key="ready-race-0001"
                )
            except BaseException as exc:
                with lock:
                    errors.append(exc)
                return
            with lock:
                results.append(out)

        threads = [threading.Thread(target=call) for _ in range(callers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        self.assertEqual(errors, [])
        self.assertEqual(len(results), callers)
        self.assertEqual(len({result["event_id"] for result in results}), 1)
        self.assertEqual(sum(1 for result in results if not result["reused"]), 1)
        events = self.engine.events_get(match_id=match_id, limit=200)["events"]
        self.assertEqual(len([e for e in events if e["event_type"] == "player_ready"]), 1)


if __name__ == "__main__":
    unittest.main()
