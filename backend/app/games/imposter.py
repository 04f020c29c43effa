"""Catch the Imposter rules.

The session manager stores roles and phases verbatim; this module owns the
closed phase set, the one-imposter invariant and round resolution.
"""
from __future__ import annotations

import random
from typing import Dict, Iterable, Mapping, Optional

from app.core.exceptions import InvalidRoleAssignmentError, ValidationFailedError
from app.games.voting import tally_votes

IMPOSTER = "imposter"
CREWMATE = "crewmate"

PHASES = ("setup", "tasks", "discussion", "voting", "results")

# Advisory; clients move from discussion to voting when it runs out
DISCUSSION_SECONDS = 120


class ImposterRules:
    """Role assignment, validation and resolution for one imposter round."""

    phases = PHASES
    discussion_seconds = DISCUSSION_SECONDS

    def validate_phase(self, phase: str) -> str:
        if phase not in PHASES:
            raise ValidationFailedError(f"Unknown imposter phase: {phase}", field="phase")
        return phase

    def assign_roles(self, player_ids: Iterable[str], *, seed: Optional[str] = None) -> Dict[str, str]:
        """Pick exactly one imposter at random; everyone else is a crewmate."""
        players = list(player_ids)
        if not players:
            raise InvalidRoleAssignmentError("No players to assign roles to")
        rng = random.Random(seed) if seed is not None else random.SystemRandom()
        imposter_id = rng.choice(players)
        return {pid: IMPOSTER if pid == imposter_id else CREWMATE for pid in players}

    def validate_roles(self, roles: Mapping[str, Optional[str]], player_ids: Iterable[str]) -> str:
        """Check a full role map and return the imposter's id.

        Every player must hold a role, exactly one of them imposter and the
        rest crewmate.
        """
        known = set(player_ids)
        unknown = set(roles) - known
        if unknown:
            raise InvalidRoleAssignmentError(f"Roles given for non-players: {', '.join(sorted(unknown))}")

        missing = sorted(pid for pid in known if not roles.get(pid))
        if missing:
            raise InvalidRoleAssignmentError(f"Players without a role: {', '.join(missing)}")

        bad = sorted({role for role in roles.values() if role not in (IMPOSTER, CREWMATE)})
        if bad:
            raise InvalidRoleAssignmentError(f"Unknown roles: {', '.join(bad)}")

        imposters = [pid for pid, role in roles.items() if role == IMPOSTER]
        if len(imposters) != 1:
            raise InvalidRoleAssignmentError(
                f"Exactly one imposter is required, got {len(imposters)}"
            )
        return imposters[0]

    def resolve_round(self, votes: Mapping[str, str], roles: Mapping[str, Optional[str]]) -> dict:
        """Eliminate the most-voted player; crewmates win only if that is the imposter.

        A tie for the highest count eliminates nobody, which hands the round
        to the imposter.
        """
        imposter_id = self.validate_roles(roles, roles.keys())
        tally = tally_votes(votes, eligible_voters=roles.keys())
        eliminated = tally.leader
        winner = "crewmates" if eliminated is not None and eliminated == imposter_id else "imposter"
        return {
            "winner": winner,
            "eliminated": eliminated,
            "imposterId": imposter_id,
            "voteCounts": tally.counts,
            "tie": tally.tie,
        }


imposter_rules = ImposterRules()
