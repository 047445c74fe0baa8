"""
Standings computation for a tournament and for each of its pools.
"""
from typing import Dict, Iterable, List, Optional, Set

from .models import Match, Pool, SetScore, Team, SET_NUMBERS, group_sets_by_match, pool_members
from .rules import Ruleset, DEFAULT_RULESET
from .scoring import compute_winner_id, tally_sets


def _empty_row(team: Team) -> dict:
    return {
        'id': team.id,
        'name': team.name,
        'wins': 0,
        'losses': 0,
        'sets_won': 0,
        'sets_lost': 0,
        'points_for': 0,
        'points_against': 0,
        'point_diff': 0,
        'match_points': 0,
        'point_diff_in_wins': 0,
        'matches_played': 0,
    }


def match_winner_for_standings(match: Match, sets: List[SetScore]) -> str:
    """Stored winner when it names a participant, otherwise the lenient winner.

    Matches completed before the winner column existed (or whose slots were
    reassigned afterwards) carry no usable winner and are recomputed.
    """
    if match.winner_team_id in (match.team1_id, match.team2_id):
        return match.winner_team_id
    return compute_winner_id(match, sets)


def _credit(row: dict, sets_won: int, sets_lost: int, points_for: int, points_against: int,
            won: bool, rules: Ruleset):
    row['sets_won'] += sets_won
    row['sets_lost'] += sets_lost
    row['points_for'] += points_for
    row['points_against'] += points_against
    row['point_diff'] = row['points_for'] - row['points_against']
    row['matches_played'] += 1
    row['match_points'] += rules.match_points(sets_won, sets_lost, won)
    if won:
        row['wins'] += 1
        row['point_diff_in_wins'] += points_for - points_against
    else:
        row['losses'] += 1


def compute_standings(teams: Iterable[Team], matches: Iterable[Match], sets: Iterable[SetScore],
                      members: Optional[Set[str]] = None, rules: Optional[Ruleset] = None) -> List[dict]:
    """
    Rank teams by their completed matches.

    When ``members`` is given, only those teams are ranked and only matches
    with both participants in ``members`` are counted.

    Returns: list of row dicts ordered by the ruleset's sort key. Every
    team gets a row, including teams with no completed match.
    """
    rules = rules or DEFAULT_RULESET
    rows: Dict[str, dict] = {}
    for team in teams:
        if members is None or team.id in members:
            rows[team.id] = _empty_row(team)

    sets_by_match = group_sets_by_match(list(sets))

    for match in matches:
        if not match.is_completed or match.is_placeholder:
            continue
        if members is not None and not (match.team1_id in members and match.team2_id in members):
            continue
        match_sets = sets_by_match.get(match.id, [])
        if len(match_sets) < len(SET_NUMBERS):
            continue

        tally = tally_sets(match_sets)
        winner_id = match_winner_for_standings(match, match_sets)

        if match.team1_id in rows:
            _credit(rows[match.team1_id], tally['sets1'], tally['sets2'],
                    tally['points1'], tally['points2'], winner_id == match.team1_id, rules)
        if match.team2_id in rows:
            _credit(rows[match.team2_id], tally['sets2'], tally['sets1'],
                    tally['points2'], tally['points1'], winner_id == match.team2_id, rules)

    return sorted(rows.values(), key=rules.sort_key)


def compute_pool_standings(pools: Iterable[Pool], pool_teams: List[dict], teams: List[Team],
                           matches: List[Match], sets: List[SetScore],
                           rules: Optional[Ruleset] = None) -> List[dict]:
    """
    Standings table per pool, pools in display order.

    Any completed match between two members of the pool counts, bracket
    games included; matches against outsiders never enter a pool table.

    Returns: [{'pool': Pool, 'standings': [row, ...]}, ...]
    """
    members_by_pool = pool_members(pool_teams)
    matches = list(matches)
    sets = list(sets)
    tables = []
    for pool in sorted(pools, key=lambda p: p.sort_key()):
        members = members_by_pool.get(pool.id, set())
        tables.append({
            'pool': pool,
            'standings': compute_standings(teams, matches, sets, members=members, rules=rules),
        })
    return tables
