"""
Set and match outcome evaluation.

Two ways of deciding a winner coexist:

- strict: a set is won only at the target score with a two point lead,
  and a match only once a side has taken two sets. Used for live badges.
- lenient: any set where one side has more points counts for that side,
  ties on sets fall back to total points and then to team1. Used when a
  match is completed, so that a winner always exists.
"""
from typing import List, Optional, Tuple

from .models import Match, SetScore
from .rules import Ruleset, DEFAULT_RULESET

NONE = 0
TEAM1 = 1
TEAM2 = 2

SETS_TO_WIN_MATCH = 2
MIN_LEAD = 2


def points_to_win(set_number: int, stage: str, rules: Optional[Ruleset] = None) -> int:
    """Target score for a set in a match of the given stage."""
    return (rules or DEFAULT_RULESET).target(stage, set_number)


def evaluate_set(set_score: SetScore, stage: str, rules: Optional[Ruleset] = None) -> int:
    """Return TEAM1 or TEAM2 if that side has clinched the set, else NONE."""
    p1, p2 = set_score.team1_points, set_score.team2_points
    if p1 < 0 or p2 < 0:
        return NONE
    target = points_to_win(set_score.set_number, stage, rules)
    if p1 >= target and p1 - p2 >= MIN_LEAD:
        return TEAM1
    if p2 >= target and p2 - p1 >= MIN_LEAD:
        return TEAM2
    return NONE


def strict_set_wins(match: Match, sets: List[SetScore], rules: Optional[Ruleset] = None) -> Tuple[int, int]:
    """Count sets clinched under the strict rule by each side."""
    wins = [0, 0]
    for s in sets:
        result = evaluate_set(s, match.stage, rules)
        if result == TEAM1:
            wins[0] += 1
        elif result == TEAM2:
            wins[1] += 1
    return wins[0], wins[1]


def strict_winner_id(match: Match, sets: List[SetScore], rules: Optional[Ruleset] = None) -> Optional[str]:
    """Team id of the side that has taken two sets, or None while undecided."""
    wins1, wins2 = strict_set_wins(match, sets, rules)
    if wins1 >= SETS_TO_WIN_MATCH and wins1 > wins2:
        return match.team1_id
    if wins2 >= SETS_TO_WIN_MATCH and wins2 > wins1:
        return match.team2_id
    return None


def tally_sets(sets: List[SetScore]) -> dict:
    """Sets won and points scored per side, by plain point comparison."""
    tally = {'sets1': 0, 'sets2': 0, 'points1': 0, 'points2': 0}
    for s in sets:
        tally['points1'] += s.team1_points
        tally['points2'] += s.team2_points
        if s.team1_points > s.team2_points:
            tally['sets1'] += 1
        elif s.team2_points > s.team1_points:
            tally['sets2'] += 1
    return tally


def compute_winner_id(match: Match, sets: List[SetScore]) -> Optional[str]:
    """Lenient winner: more sets, then more points, then team1.

    The final team1 fallback is intentional. It guarantees a definite
    winner for any completed match (even 0-0) so that bracket propagation
    can always proceed; it does favour team1 on an exact tie.
    """
    tally = tally_sets(sets)
    if tally['sets1'] != tally['sets2']:
        return match.team1_id if tally['sets1'] > tally['sets2'] else match.team2_id
    if tally['points1'] != tally['points2']:
        return match.team1_id if tally['points1'] > tally['points2'] else match.team2_id
    return match.team1_id


def active_set(match: Match, sets: List[SetScore], rules: Optional[Ruleset] = None) -> Optional[SetScore]:
    """First set nobody has clinched yet, or the last set when all are decided."""
    if not sets:
        return None
    ordered = sorted(sets, key=lambda s: s.set_number)
    for s in ordered:
        if evaluate_set(s, match.stage, rules) == NONE:
            return s
    return ordered[-1]


def adjust_points(current: int, delta: int) -> int:
    """Apply a scoring action, never going below zero."""
    return max(0, current + delta)
