"""
Versioned scoring rulesets.

Two rule versions exist: the ``classic`` one (every set to 25, deciding
set to 15, standings by wins) and the ``stage`` one (pool sets to 21,
bracket sets to 25, match points with win bonuses). The evaluator and the
standings aggregator receive a Ruleset instead of hard-coding either.
"""
from typing import Callable, Dict, Optional, Tuple

from .models import STAGE_POOL, STAGE_SEMI, STAGE_FINAL


def stage_match_bonus(sets_won: int, sets_lost: int, won_match: bool) -> int:
    """+2 for a sweep, +1 for a win conceding a set, nothing for a loss."""
    if not won_match:
        return 0
    return 2 if sets_lost == 0 else 1


def stage_sort_key(row: dict):
    return (
        -row['match_points'],
        -row['wins'],
        -row['point_diff_in_wins'],
        -row['point_diff'],
        -row['sets_won'],
        row['name'],
    )


def classic_sort_key(row: dict):
    return (-row['wins'], -row['sets_won'], -row['point_diff'], row['name'])


class Ruleset:
    def __init__(self, name: str, set_targets: Dict[str, Tuple[int, int, int]],
                 match_point_bonus: Optional[Callable[[int, int, bool], int]],
                 sort_key: Callable[[dict], tuple]):
        self.name = name
        self.set_targets = set_targets
        self.match_point_bonus = match_point_bonus
        self.sort_key = sort_key

    @property
    def awards_match_points(self) -> bool:
        return self.match_point_bonus is not None

    def target(self, stage: str, set_number: int) -> int:
        """Points needed to take set ``set_number`` in a match of ``stage``."""
        targets = self.set_targets.get(stage, self.set_targets[STAGE_POOL])
        return targets[min(max(set_number, 1), len(targets)) - 1]

    def match_points(self, sets_won: int, sets_lost: int, won_match: bool) -> int:
        if self.match_point_bonus is None:
            return 0
        return 2 * sets_won + self.match_point_bonus(sets_won, sets_lost, won_match)

    def __repr__(self):
        return f"Ruleset(name={self.name})"


STAGE_RULES = Ruleset(
    name='stage',
    set_targets={
        STAGE_POOL: (21, 21, 15),
        STAGE_SEMI: (25, 25, 15),
        STAGE_FINAL: (25, 25, 15),
    },
    match_point_bonus=stage_match_bonus,
    sort_key=stage_sort_key,
)

CLASSIC_RULES = Ruleset(
    name='classic',
    set_targets={
        STAGE_POOL: (25, 25, 15),
        STAGE_SEMI: (25, 25, 15),
        STAGE_FINAL: (25, 25, 15),
    },
    match_point_bonus=None,
    sort_key=classic_sort_key,
)

RULESETS = {r.name: r for r in (STAGE_RULES, CLASSIC_RULES)}
DEFAULT_RULESET = STAGE_RULES


def get_ruleset(name: Optional[str] = None) -> Ruleset:
    """Look up a ruleset by name; None gives the default."""
    if not name:
        return DEFAULT_RULESET
    try:
        return RULESETS[name]
    except KeyError:
        raise KeyError(f"Unknown ruleset '{name}', expected one of: {', '.join(sorted(RULESETS))}")
