"""Game-specific rules layered on top of the game-agnostic session manager."""
from app.games.catalog import GAME_CATALOG, GameInfo, get_game_info
from app.games.imposter import ImposterRules, imposter_rules
from app.games.voting import VoteTally, tally_votes

__all__ = [
    "GAME_CATALOG",
    "GameInfo",
    "get_game_info",
    "ImposterRules",
    "imposter_rules",
    "VoteTally",
    "tally_votes",
]
