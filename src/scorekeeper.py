"""
Admin operations and read models for a tournament.

Every function takes the store as its first argument. Input problems are
raised as ValidationError before anything is written; multi-row changes
run inside one store transaction so they land together or not at all.
Callers decide who may invoke the mutating functions.
"""
import logging
from typing import Dict, List, Optional

from core.bracket import (
    INSERT, UPDATE, Mutation, find_bracket_matches, plan_placeholders,
    plan_semifinal_seeding, plan_final_propagation,
)
from core.errors import ValidationError, ConsistencyError, StoreError
from core.models import (
    Team, Tournament, Pool, Match, SetScore, PoolPlay, STAGES, STAGE_POOL,
    STATUS_SCHEDULED, STATUS_IN_PROGRESS, STATUS_COMPLETED, SET_NUMBERS,
    SLOT_SF1, SLOT_SF2, SLOT_FINAL, kind_for_stage, kind_to_row, slugify,
)
from core.rules import Ruleset
from core.scoring import (
    NONE, compute_winner_id, strict_winner_id, evaluate_set, points_to_win,
    active_set, adjust_points,
)
from core.standings import compute_standings, compute_pool_standings
from generate_matches import generate_pool_play_matches

logger = logging.getLogger(__name__)

SIDE_FIELDS = {1: 'team1_points', 2: 'team2_points'}


class TournamentSnapshot:
    """Everything the standings and bracket logic needs for one tournament."""

    def __init__(self, tournament_id, teams, roster_ids, pools, pool_teams, matches, sets):
        self.tournament_id = tournament_id
        self.teams = teams
        self.roster_ids = roster_ids
        self.pools = pools
        self.pool_teams = pool_teams
        self.matches = matches
        self.sets = sets

    @property
    def roster(self) -> List[Team]:
        return [t for t in self.teams if t.id in self.roster_ids]

    def team_name(self, team_id) -> str:
        for team in self.teams:
            if team.id == team_id:
                return team.name
        return 'TBD'

    def sets_for(self, match_id) -> List[SetScore]:
        return sorted((s for s in self.sets if s.match_id == match_id), key=lambda s: s.set_number)

    def __repr__(self):
        return (f"TournamentSnapshot(tournament_id={self.tournament_id}, teams={len(self.teams)}, "
                f"matches={len(self.matches)}, sets={len(self.sets)})")


def load_snapshot(db, tournament_id) -> TournamentSnapshot:
    """Load a tournament's roster, pools, matches and sets. ``db`` is a store or an open transaction."""
    roster_ids = {r['team_id'] for r in db.select('tournament_teams', tournament_id=tournament_id)}
    pools = [Pool.from_row(r) for r in db.select('pools', order_by='name', tournament_id=tournament_id)]
    pool_teams = db.select('pool_teams', pool_id=[p.id for p in pools]) if pools else []

    team_ids = roster_ids | {r['team_id'] for r in pool_teams}
    teams = [Team.from_row(r) for r in db.select('teams', order_by='name', id=list(team_ids))]

    match_rows = db.select('matches', order_by='scheduled_at', tournament_id=tournament_id)
    matches = [Match.from_row(r) for r in match_rows]
    match_ids = [m.id for m in matches]
    sets = [SetScore.from_row(r) for r in db.select('sets', order_by='set_number', match_id=match_ids)] if match_ids else []

    return TournamentSnapshot(tournament_id, teams, roster_ids, pools, pool_teams, matches, sets)


# ---- Teams ----

def list_teams(store) -> List[Team]:
    return [Team.from_row(r) for r in store.select('teams', order_by='name')]


def create_team(store, name: str) -> Team:
    name = (name or '').strip()
    if not name:
        raise ValidationError("Team name is required")
    with store.transaction() as tx:
        if tx.select('teams', name=name):
            raise ValidationError(f"A team named '{name}' already exists")
        row = tx.insert('teams', {'name': name})
    logger.info('Created team %s', name)
    return Team.from_row(row)


def delete_team(store, team_id) -> int:
    """Delete a team together with its memberships and matches."""
    store.get('teams', team_id)
    return store.delete('teams', id=team_id)


# ---- Tournaments ----

def list_tournaments(store) -> List[Tournament]:
    rows = store.select('tournaments', order_by=['start_date', 'name'])
    return [Tournament.from_row(r) for r in rows]


def create_tournament(store, name: str, start_date: Optional[str] = None,
                      end_date: Optional[str] = None) -> Tournament:
    name = (name or '').strip()
    if not name:
        raise ValidationError("Tournament name is required")
    slug = slugify(name)
    if not slug:
        raise ValidationError("Tournament name must contain letters or digits")
    row = store.insert('tournaments', {'name': name, 'slug': slug,
                                       'start_date': start_date, 'end_date': end_date})
    logger.info('Created tournament %s (%s)', name, slug)
    return Tournament.from_row(row)


def get_tournament(store, tournament_id) -> Tournament:
    return Tournament.from_row(store.get('tournaments', tournament_id))


def find_tournament_by_slug(store, slug: str) -> Optional[Tournament]:
    rows = store.select('tournaments', slug=slug)
    return Tournament.from_row(rows[0]) if rows else None


def delete_tournament(store, tournament_id) -> int:
    """Delete a tournament with its pools, roster entries, matches and sets."""
    store.get('tournaments', tournament_id)
    return store.delete('tournaments', id=tournament_id)


def _require(value, message):
    if not value:
        raise ValidationError(message)


def add_team_to_tournament(store, tournament_id, team_id):
    _require(tournament_id, "Select a tournament first")
    _require(team_id, "Select a team to add")
    with store.transaction() as tx:
        tx.get('tournaments', tournament_id)
        tx.get('teams', team_id)
        return tx.insert('tournament_teams', {'tournament_id': tournament_id, 'team_id': team_id})


def remove_team_from_tournament(store, tournament_id, team_id) -> int:
    _require(tournament_id, "Select a tournament first")
    return store.delete('tournament_teams', tournament_id=tournament_id, team_id=team_id)


# ---- Pools ----

def create_pool(store, tournament_id, name: str, order_index: Optional[int] = None) -> Pool:
    _require(tournament_id, "Select a tournament first")
    name = (name or '').strip()
    _require(name, "Pool name is required")
    with store.transaction() as tx:
        tx.get('tournaments', tournament_id)
        row = tx.insert('pools', {'tournament_id': tournament_id, 'name': name, 'order_index': order_index})
    return Pool.from_row(row)


def delete_pool(store, pool_id) -> int:
    store.get('pools', pool_id)
    return store.delete('pools', id=pool_id)


def add_team_to_pool(store, pool_id, team_id):
    _require(pool_id, "Select a pool first")
    _require(team_id, "Select a team to add")
    with store.transaction() as tx:
        tx.get('pools', pool_id)
        tx.get('teams', team_id)
        return tx.insert('pool_teams', {'pool_id': pool_id, 'team_id': team_id})


def remove_team_from_pool(store, pool_id, team_id) -> int:
    return store.delete('pool_teams', pool_id=pool_id, team_id=team_id)


# ---- Matches ----

def _insert_match(tx, values: dict) -> dict:
    """Insert a match row and its three empty sets."""
    row = tx.insert('matches', values)
    for number in SET_NUMBERS:
        tx.insert('sets', {'match_id': row['id'], 'set_number': number})
    return row


def _ensure_sets(tx, match_id):
    existing = {r['set_number'] for r in tx.select('sets', match_id=match_id)}
    for number in SET_NUMBERS:
        if number not in existing:
            tx.insert('sets', {'match_id': match_id, 'set_number': number})


def _validate_pair(team1_id, team2_id):
    if not team1_id or not team2_id or team1_id == team2_id:
        raise ValidationError("Pick two different teams")


def schedule_match(store, tournament_id, team1_id, team2_id, scheduled_at: Optional[str] = None,
                   stage: str = STAGE_POOL, pool_id=None) -> Match:
    _require(tournament_id, "Select a tournament first")
    _validate_pair(team1_id, team2_id)
    if stage not in STAGES:
        raise ValidationError(f"Unknown stage '{stage}'")
    kind = kind_for_stage(stage, pool_id=pool_id)
    values = {
        'tournament_id': tournament_id,
        'team1_id': team1_id,
        'team2_id': team2_id,
        'scheduled_at': scheduled_at,
        'status': STATUS_SCHEDULED,
    }
    values.update(kind_to_row(kind))
    with store.transaction() as tx:
        tx.get('tournaments', tournament_id)
        tx.get('teams', team1_id)
        tx.get('teams', team2_id)
        if pool_id:
            tx.get('pools', pool_id)
        row = _insert_match(tx, values)
    return Match.from_row(row)


def generate_round_robin(store, tournament_id) -> List[Match]:
    """Schedule every missing pairing inside each pool of the tournament."""
    _require(tournament_id, "Select a tournament first")
    with store.transaction() as tx:
        snapshot = load_snapshot(tx, tournament_id)
        members = {p.id: [] for p in snapshot.pools}
        for row in snapshot.pool_teams:
            members.setdefault(row['pool_id'], []).append(row['team_id'])
        existing = [(m.team1_id, m.team2_id) for m in snapshot.matches
                    if isinstance(m.kind, PoolPlay) and not m.is_placeholder]
        created = []
        for pairing in generate_pool_play_matches(members, existing_pairs=existing):
            team1_id, team2_id = pairing['teams']
            values = {'tournament_id': tournament_id, 'team1_id': team1_id, 'team2_id': team2_id,
                      'status': STATUS_SCHEDULED}
            values.update(kind_to_row(PoolPlay(pairing['pool'])))
            created.append(Match.from_row(_insert_match(tx, values)))
    logger.info('Generated %d pool matches for tournament %s', len(created), tournament_id)
    return created


def adjust_point(store, set_id, side: int, delta: int) -> SetScore:
    """Add or remove one point for a side of a set; the first adjustment starts the match."""
    if side not in SIDE_FIELDS:
        raise ValidationError("Side must be 1 or 2")
    if delta not in (1, -1):
        raise ValidationError("Points change by one at a time")
    field = SIDE_FIELDS[side]
    with store.transaction() as tx:
        set_row = tx.get('sets', set_id)
        updated = tx.update('sets', set_id, {field: adjust_points(int(set_row.get(field) or 0), delta)})
        match_row = tx.get('matches', set_row['match_id'])
        if match_row.get('status') == STATUS_SCHEDULED:
            tx.update('matches', match_row['id'], {'status': STATUS_IN_PROGRESS})
    return SetScore.from_row(updated)


def complete_match(store, match_id) -> Match:
    """
    Mark a match completed with its lenient winner, then push semifinal
    winners into the final when both semis are done.

    No check is made that a side actually won two sets. The completion is
    saved before propagation runs; a store failure while filling the final
    is logged and left for a later update_final_from_semis call.
    """
    with store.transaction() as tx:
        match = Match.from_row(tx.get('matches', match_id))
        if match.is_placeholder:
            raise ValidationError("Assign both teams before completing the match")
        sets = [SetScore.from_row(r) for r in tx.select('sets', order_by='set_number', match_id=match_id)]
        winner_id = compute_winner_id(match, sets)
        row = tx.update('matches', match_id, {'status': STATUS_COMPLETED, 'winner_team_id': winner_id})
    logger.info('Completed match %s, winner %s', match_id, winner_id)
    try:
        update_final_from_semis(store, match.tournament_id)
    except StoreError as e:
        logger.warning('Match %s completed but the final was not updated: %s', match_id, e)
    return Match.from_row(row)


def delete_match(store, match_id) -> int:
    store.get('matches', match_id)
    return store.delete('matches', id=match_id)


def assign_match_teams(store, match_id, team1_id, team2_id) -> Match:
    _validate_pair(team1_id, team2_id)
    with store.transaction() as tx:
        tx.get('teams', team1_id)
        tx.get('teams', team2_id)
        row = tx.update('matches', match_id, {'team1_id': team1_id, 'team2_id': team2_id})
        _ensure_sets(tx, match_id)
    return Match.from_row(row)


def clear_match_teams(store, match_id) -> Match:
    return Match.from_row(store.update('matches', match_id, {'team1_id': None, 'team2_id': None}))


# ---- Bracket ----

def apply_plan(tx, plan: List[Mutation]) -> List[dict]:
    """Write a bracket plan inside an open transaction; returns the affected match rows."""
    rows = []
    for mutation in plan:
        if mutation.action == INSERT:
            rows.append(_insert_match(tx, mutation.values))
        elif mutation.action == UPDATE:
            rows.append(tx.update('matches', mutation.match_id, mutation.values))
            _ensure_sets(tx, mutation.match_id)
        else:
            raise ValueError(f"Unknown mutation action: {mutation.action}")
    return rows


def create_bracket_placeholders(store, tournament_id, times: Optional[Dict[str, str]] = None) -> List[Mutation]:
    _require(tournament_id, "Select a tournament first")
    with store.transaction() as tx:
        tx.get('tournaments', tournament_id)
        matches = [Match.from_row(r) for r in tx.select('matches', tournament_id=tournament_id)]
        plan = plan_placeholders(matches, tournament_id, times)
        apply_plan(tx, plan)
    return plan


def seed_semifinals(store, tournament_id, rules: Optional[Ruleset] = None) -> List[Mutation]:
    """Seed SF1/SF2 from the two pools' standings. Raises SeedingError without writing anything."""
    _require(tournament_id, "Select a tournament first")
    with store.transaction() as tx:
        snapshot = load_snapshot(tx, tournament_id)
        tables = compute_pool_standings(snapshot.pools, snapshot.pool_teams, snapshot.teams,
                                        snapshot.matches, snapshot.sets, rules=rules)
        plan = plan_semifinal_seeding(tables, snapshot.matches, tournament_id)
        apply_plan(tx, plan)
    logger.info('Seeded semifinals for tournament %s', tournament_id)
    return plan


def update_final_from_semis(store, tournament_id) -> List[Mutation]:
    """Fill the final from completed semifinals. Safe to call at any time."""
    with store.transaction() as tx:
        matches = [Match.from_row(r) for r in tx.select('matches', tournament_id=tournament_id)]
        plan = plan_final_propagation(matches, tournament_id)
        apply_plan(tx, plan)
    if plan:
        logger.info('Advanced semifinal winners to the final of tournament %s', tournament_id)
    return plan


# ---- Read models ----

def leaderboard(store, tournament_id, rules: Optional[Ruleset] = None) -> List[dict]:
    snapshot = load_snapshot(store, tournament_id)
    return compute_standings(snapshot.roster, snapshot.matches, snapshot.sets, rules=rules)


def pool_leaderboards(store, tournament_id, rules: Optional[Ruleset] = None) -> List[dict]:
    snapshot = load_snapshot(store, tournament_id)
    return compute_pool_standings(snapshot.pools, snapshot.pool_teams, snapshot.teams,
                                  snapshot.matches, snapshot.sets, rules=rules)


def _match_summary(snapshot: TournamentSnapshot, match: Optional[Match]) -> Optional[dict]:
    if match is None:
        return None
    return {
        'id': match.id,
        'team1': snapshot.team_name(match.team1_id) if match.team1_id else 'TBD',
        'team2': snapshot.team_name(match.team2_id) if match.team2_id else 'TBD',
        'team1_id': match.team1_id,
        'team2_id': match.team2_id,
        'status': match.status,
        'scheduled_at': match.scheduled_at,
        'winner_team_id': match.winner_team_id,
    }


def bracket_view(store, tournament_id) -> dict:
    snapshot = load_snapshot(store, tournament_id)
    bracket = find_bracket_matches(snapshot.matches)
    return {slot: _match_summary(snapshot, bracket[slot]) for slot in (SLOT_SF1, SLOT_SF2, SLOT_FINAL)}


def match_detail(store, match_id, rules: Optional[Ruleset] = None) -> dict:
    """Match with per-set targets, strict set winners, live winner badge and active set."""
    match = Match.from_row(store.get('matches', match_id))
    snapshot = load_snapshot(store, match.tournament_id)
    sets = snapshot.sets_for(match_id)
    if len(sets) < len(SET_NUMBERS):
        raise ConsistencyError(f"Match {match_id} has {len(sets)} sets, expected {len(SET_NUMBERS)}")
    current = active_set(match, sets, rules)
    detail = _match_summary(snapshot, match)
    detail['stage'] = match.stage
    detail['sets'] = [{
        'id': s.id,
        'set_number': s.set_number,
        'team1_points': s.team1_points,
        'team2_points': s.team2_points,
        'target': points_to_win(s.set_number, match.stage, rules),
        'winner': evaluate_set(s, match.stage, rules),
        'in_play': evaluate_set(s, match.stage, rules) == NONE,
    } for s in sets]
    detail['strict_winner_id'] = strict_winner_id(match, sets, rules)
    detail['active_set'] = current.set_number if current else None
    return detail
