#!/usr/bin/env python3

from __future__ import annotations

import unittest

from packages.werewolf_core.engine.config import EngineConfig
from packages.werewolf_core.engine.day import (
    apply_public_message,
    apply_vote,
    resolve_votes,
    tally_votes,
    votes_complete,
)
from packages.werewolf_core.engine.errors import (
    ForbiddenError,
    PhaseExpiredError,
    RateLimitedError,
    ValidationError,
)
from packages.werewolf_core.engine.types import Phase

from apps.api.tests.match_fixtures import make_state


NOW = 5_000


class DayVoteTests(unittest.TestCase):
    def _vote(self, state, voter, target, now=NOW, **kwargs):
        return apply_vote(state, player_id=voter, target_id=target, now=now, **kwargs)

    def test_tie_at_the_top_eliminates_no_one(self) -> None:
        state = make_state(phase=Phase.VOTING, dead=("v4",))
        for voter in ("w1", "w2", "seer"):
            self._vote(state, voter, "v1")
        for voter in ("doc", "v1", "v2"):
            self._vote(state, voter, "v2")
        self._vote(state, "v3", "v3")
        self.assertEqual(len(state.alive_players()), 7)
        self.assertEqual(tally_votes(state), {"v1": 3, "v2": 3, "v3": 1})

        outcome = resolve_votes(state, now=NOW)

        self.assertIsNone(outcome.eliminated_id)
        self.assertTrue(outcome.tied)
        self.assertEqual(len(state.alive_players()), 7)
        self.assertEqual([draft.event_type for draft in outcome.drafts], ["vote_result"])

    def test_strict_plurality_is_eliminated(self) -> None:
        state = make_state(phase=Phase.VOTING)
        for voter in ("v1", "v2", "v3"):
            self._vote(state, voter, "w1")
        self._vote(state, "w1", "v1")
        self._vote(state, "w2", None)

        outcome = resolve_votes(state, now=NOW)

        self.assertEqual(outcome.eliminated_id, "w1")
        self.assertFalse(state.player("w1").alive)
        self.assertEqual(state.player("w1").elimination_cause, "vote")
        eliminated = outcome.drafts[-1]
        self.assertEqual(eliminated.event_type, "player_eliminated")
        self.assertEqual(eliminated.payload["role_revealed"], "WEREWOLF")
        self.assertEqual(state.votes, {})

    def test_no_votes_eliminates_no_one(self) -> None:
        state = make_state(phase=Phase.VOTING)
        outcome = resolve_votes(state, now=NOW)
        self.assertIsNone(outcome.eliminated_id)
        self.assertFalse(outcome.tied)

    def test_latest_vote_wins(self) -> None:
        state = make_state(phase=Phase.VOTING)
        self._vote(state, "v1", "w1")
        self._vote(state, "v1", "w2")
        self.assertEqual(tally_votes(state), {"w2": 1})

    def test_abstentions_count_as_voted_but_not_for_anyone(self) -> None:
        state = make_state(phase=Phase.VOTING, dead=("v2", "v3", "v4"))
        for voter in ("w1", "w2", "seer", "doc"):
            self._vote(state, voter, None)
        self.assertFalse(votes_complete(state))
        self._vote(state, "v1", "w1")
        self.assertTrue(votes_complete(state))
        self.assertEqual(tally_votes(state), {"w1": 1})

    def test_vote_validation(self) -> None:
        state = make_state(phase=Phase.VOTING, dead=("v4",))
        with self.assertRaises(ValidationError):
            self._vote(state, "v1", "v4")
        with self.assertRaises(ValidationError):
            self._vote(state, "v1", "w1", reason="r" * 201)
        with self.assertRaises(ForbiddenError):
            self._vote(state, "v4", "w1")
        with self.assertRaises(PhaseExpiredError):
            self._vote(make_state(phase=Phase.DAY_DISCUSSION), "v1", "w1")

        drafts = self._vote(state, "v1", "w1", reason="  too quiet  ")
        self.assertEqual(drafts[0].payload["reason"], "too quiet")


class PublicMessageTests(unittest.TestCase):
    def setUp(self) -> None:
        self.config = EngineConfig(public_message_cooldown_ms=3_000)

    def test_public_message_allowed_in_discussion_and_voting(self) -> None:
        for phase in (Phase.DAY_DISCUSSION, Phase.VOTING):
            state = make_state(phase=phase)
            drafts = apply_public_message(state, player_id="v1", text="I trust seer", now=NOW, config=self.config)
            self.assertEqual(drafts[0].event_type, "public_message")
            self.assertEqual(drafts[0].phase, phase)

    def test_public_message_rejected_at_night(self) -> None:
        state = make_state(phase=Phase.NIGHT)
        with self.assertRaises(PhaseExpiredError):
            apply_public_message(state, player_id="v1", text="hello", now=NOW, config=self.config)

    def test_public_message_cooldown_and_length(self) -> None:
        state = make_state(phase=Phase.DAY_DISCUSSION)
        apply_public_message(state, player_id="v1", text="first", now=NOW, config=self.config)
        with self.assertRaises(RateLimitedError):
            apply_public_message(state, player_id="v1", text="second", now=NOW + 1_000, config=self.config)
        apply_public_message(state, player_id="v1", text="second", now=NOW + 3_000, config=self.config)
        with self.assertRaises(ValidationError):
            apply_public_message(state, player_id="v2", text="   ", now=NOW, config=self.config)
        with self.assertRaises(ValidationError):
            apply_public_message(state, player_id="v2", text="x" * 501, now=NOW, config=self.config)


if __name__ == "__main__":
    unittest.main()
