"""Deterministic secret role assignment."""

from __future__ import annotations

import random

from .errors import ValidationError
from .types import Role


def _rng(seed: str) -> random.Random:
    return random.Random(seed)


def role_distribution(player_count: int) -> dict[Role, int]:
    if player_count < 4:
        raise ValidationError("A match needs at least 4 players")
    if player_count <= 5:
        return {Role.WEREWOLF: 1, Role.SEER: 1, Role.VILLAGER: player_count - 2}
    if player_count == 6:
        return {Role.WEREWOLF: 2, Role.SEER: 1, Role.VILLAGER: 3}
    if player_count <= 8:
        return {Role.WEREWOLF: 2, Role.SEER: 1, Role.DOCTOR: 1, Role.VILLAGER: player_count - 4}
    return {Role.WEREWOLF: 3, Role.SEER: 1, Role.DOCTOR: 1, Role.VILLAGER: player_count - 5}


def assign_roles(*, player_ids: list[str], seed: str) -> dict[str, Role]:
    """Shuffle roles over players; the same seed and player set always yield the same map."""
    if len(set(player_ids)) != len(player_ids):
        raise ValidationError("Role assignment requires unique player ids")
    ids = sorted(player_ids)
    _rng(f"roles:{seed}:{','.join(ids)}").shuffle(ids)
    roles: list[Role] = []
    for role, count in role_distribution(len(ids)).items():
        roles.extend([role] * count)
    return {player_id: roles[idx] for idx, player_id in enumerate(ids)}
