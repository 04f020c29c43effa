"""Tests for the game catalogue, vote tallying and imposter rules."""
import pytest

from app.core.exceptions import InvalidRoleAssignmentError, ValidationFailedError
from app.games import GAME_CATALOG, get_game_info, imposter_rules, tally_votes
from app.games.imposter import CREWMATE, IMPOSTER, PHASES
from app.models.circle import GameType

PLAYERS = ["p1", "p2", "p3", "p4"]


class TestCatalog:

    def test_every_game_type_is_listed(self):
        assert set(GAME_CATALOG) == {g.value for g in GameType}
        assert len(GAME_CATALOG) == 13

    def test_lookup_accepts_enum_or_string(self):
        assert get_game_info(GameType.IMPOSTER).name == "Catch the Imposter"
        assert get_game_info("mafia").min_players == 6
        assert get_game_info("chess") is None

    def test_player_bounds_are_consistent(self):
        for info in GAME_CATALOG.values():
            assert 1 <= info.min_players <= info.max_players


class TestTallyVotes:

    def test_strict_majority_has_leader(self):
        tally = tally_votes({"p1": "p3", "p2": "p3", "p4": "p1"})
        assert tally.leader == "p3"
        assert tally.tie is False
        assert tally.counts == {"p3": 2, "p1": 1}

    def test_shared_top_count_is_tie(self):
        tally = tally_votes({"p1": "p3", "p2": "p4"})
        assert tally.leader is None
        assert tally.tie is True

    def test_no_votes(self):
        tally = tally_votes({})
        assert tally.leader is None
        assert tally.tie is False
        assert tally.counts == {}

    def test_ineligible_voters_are_dropped(self):
        tally = tally_votes({"p1": "p3", "ghost": "p2", "ghost2": "p2"}, eligible_voters=PLAYERS)
        assert tally.leader == "p3"
        assert tally.counts == {"p3": 1}


class TestImposterRules:

    def test_known_phases_pass_validation(self):
        assert PHASES == ("setup", "tasks", "discussion", "voting", "results")
        for phase in PHASES:
            assert imposter_rules.validate_phase(phase) == phase

    def test_unknown_phase_rejected(self):
        with pytest.raises(ValidationFailedError):
            imposter_rules.validate_phase("lobby")

    def test_assign_roles_picks_one_imposter(self):
        roles = imposter_rules.assign_roles(PLAYERS)
        assert set(roles) == set(PLAYERS)
        assert list(roles.values()).count(IMPOSTER) == 1
        assert imposter_rules.validate_roles(roles, PLAYERS) in PLAYERS

    def test_seeded_assignment_is_repeatable(self):
        assert imposter_rules.assign_roles(PLAYERS, seed="round-1") == imposter_rules.assign_roles(
            PLAYERS, seed="round-1"
        )

    def test_assign_roles_needs_players(self):
        with pytest.raises(InvalidRoleAssignmentError):
            imposter_rules.assign_roles([])

    @pytest.mark.parametrize("roles", [
        {"p1": IMPOSTER, "p2": CREWMATE, "p3": CREWMATE},
        {"p1": IMPOSTER, "p2": IMPOSTER, "p3": CREWMATE, "p4": CREWMATE},
        {"p1": CREWMATE, "p2": CREWMATE, "p3": CREWMATE, "p4": CREWMATE},
        {"p1": IMPOSTER, "p2": "spy", "p3": CREWMATE, "p4": CREWMATE},
        {"p1": IMPOSTER, "p2": CREWMATE, "p3": CREWMATE, "p4": CREWMATE, "p9": CREWMATE},
    ])
    def test_invalid_role_maps(self, roles):
        with pytest.raises(InvalidRoleAssignmentError):
            imposter_rules.validate_roles(roles, PLAYERS)

    def test_crewmates_win_when_imposter_voted_out(self):
        roles = {"p1": IMPOSTER, "p2": CREWMATE, "p3": CREWMATE, "p4": CREWMATE}
        outcome = imposter_rules.resolve_round({"p2": "p1", "p3": "p1", "p1": "p4"}, roles)
        assert outcome == {
            "winner": "crewmates",
            "eliminated": "p1",
            "imposterId": "p1",
            "voteCounts": {"p1": 2, "p4": 1},
            "tie": False,
        }

    def test_imposter_wins_when_crewmate_voted_out(self):
        roles = {"p1": IMPOSTER, "p2": CREWMATE, "p3": CREWMATE, "p4": CREWMATE}
        outcome = imposter_rules.resolve_round({"p1": "p2", "p3": "p2"}, roles)
        assert outcome["winner"] == "imposter"
        assert outcome["eliminated"] == "p2"

    def test_tie_goes_to_imposter(self):
        roles = {"p1": IMPOSTER, "p2": CREWMATE, "p3": CREWMATE, "p4": CREWMATE}
        outcome = imposter_rules.resolve_round({"p2": "p1", "p3": "p4"}, roles)
        assert outcome["winner"] == "imposter"
        assert outcome["eliminated"] is None
        assert outcome["tie"] is True
