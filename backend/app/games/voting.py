from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, Mapping, Optional


@dataclass(frozen=True)
class VoteTally:
    counts: Dict[str, int] = field(default_factory=dict)
    leader: Optional[str] = None
    tie: bool = False


def tally_votes(
    votes: Mapping[str, str],
    *,
    eligible_voters: Optional[Iterable[str]] = None,
) -> VoteTally:
    """
    Count the latest vote of each voter.
    - Votes from voters outside eligible_voters are dropped when it is given.
    - The leader is the target with the strictly highest count.
    - A shared highest count is a tie and produces no leader.
    """
    allowed = set(eligible_voters) if eligible_voters is not None else None
    counts: Counter = Counter(
        target
        for voter, target in votes.items()
        if target and (allowed is None or voter in allowed)
    )
    if not counts:
        return VoteTally()

    top = max(counts.values())
    leaders = [target for target, count in counts.items() if count == top]
    if len(leaders) > 1:
        return VoteTally(counts=dict(counts), leader=None, tie=True)
    return VoteTally(counts=dict(counts), leader=leaders[0], tie=False)
