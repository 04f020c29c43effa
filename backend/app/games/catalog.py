"""Catalogue of mini-games a circle can be configured with."""
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Dict, List

from app.models.circle import GameType


@dataclass(frozen=True)
class GameInfo:
    id: str
    name: str
    description: str
    min_players: int
    max_players: int
    requires_host: bool
    estimated_minutes: int

    def to_dict(self) -> dict:
        return asdict(self)


_GAMES: List[GameInfo] = [
    GameInfo(GameType.NONE.value, "No Game", "Just voice chat", 1, 30, False, 0),
    GameInfo(GameType.IMPOSTER.value, "Catch the Imposter", "Find the imposter among crewmates", 4, 10, True, 15),
    GameInfo(GameType.MAFIA.value, "Mafia / Werewolf", "Classic social deduction game", 6, 15, True, 20),
    GameInfo(GameType.SPYFALL.value, "Spyfall", "Find the spy who doesn't know the location", 3, 8, True, 10),
    GameInfo(GameType.SCRIBBLE_WORDS.value, "Scribble Words", "Describe words without saying them", 2, 10, False, 10),
    GameInfo(GameType.FASTEST_FIRST.value, "Fastest First", "Answer questions as fast as possible", 2, 10, False, 10),
    GameInfo(GameType.MEMORY_REPEAT.value, "Memory Repeat", "Repeat the sequence and add to it", 3, 10, False, 10),
    GameInfo(GameType.FIVE_SECONDS.value, "Five Seconds Game", "Answer questions in under 5 seconds", 2, 10, False, 10),
    GameInfo(GameType.TRUTH_OR_LIE.value, "Truth or Lie", "Two truths, one lie - guess which is the lie", 3, 10, False, 15),
    GameInfo(GameType.RED_FLAG_GREEN_FLAG.value, "Red Flag / Green Flag", "Rate scenarios as red or green flags", 2, 10, False, 10),
    GameInfo(GameType.EMOJI_SOUND_GUESS.value, "Emoji Sound Guess", "Make sound effects for emojis, others guess", 3, 10, False, 10),
    GameInfo(GameType.GUARD_THE_LEADER.value, "Guard the Leader", "Team-based game with leader and distractors", 6, 12, True, 15),
    GameInfo(GameType.RAPID_QUIZ.value, "Rapid Quiz Battles", "Head-to-head voice quiz rounds", 2, 10, False, 15),
]

GAME_CATALOG: Dict[str, GameInfo] = {game.id: game for game in _GAMES}


def get_game_info(game_type: str) -> GameInfo | None:
    return GAME_CATALOG.get(getattr(game_type, "value", game_type))
