"""
Data model for teams, tournaments, pools, matches and sets.

Rows coming from the store are plain dicts; ``from_row`` resolves the
schema variants (``phase`` vs ``stage``, ``pool_id`` vs ``bracket_slot``)
exactly once so the rest of the core never inspects string tags.
"""
import re
from dataclasses import dataclass, field
from typing import Optional, List, Union

STATUS_SCHEDULED = 'scheduled'
STATUS_IN_PROGRESS = 'in_progress'
STATUS_COMPLETED = 'completed'
STATUSES = (STATUS_SCHEDULED, STATUS_IN_PROGRESS, STATUS_COMPLETED)

STAGE_POOL = 'pool'
STAGE_SEMI = 'semi'
STAGE_FINAL = 'final'
STAGES = (STAGE_POOL, STAGE_SEMI, STAGE_FINAL)

SLOT_SF1 = 'SF1'
SLOT_SF2 = 'SF2'
SLOT_FINAL = 'F'
SEMIFINAL_SLOTS = (SLOT_SF1, SLOT_SF2)

SET_NUMBERS = (1, 2, 3)

# Legacy "phase" values mapped onto stages
_PHASE_TO_STAGE = {
    'pool': STAGE_POOL,
    'cross_pool': STAGE_POOL,
    'semi': STAGE_SEMI,
    'semifinal': STAGE_SEMI,
    'final': STAGE_FINAL,
}


def slugify(name: str) -> str:
    """Lowercase, collapse non-alphanumeric runs to '-', strip edge hyphens."""
    slug = re.sub(r'[^a-z0-9]+', '-', name.lower().strip())
    return slug.strip('-')


@dataclass(frozen=True)
class PoolPlay:
    pool_id: Optional[str] = None
    stage = STAGE_POOL


@dataclass(frozen=True)
class Semifinal:
    slot: Optional[str] = None
    stage = STAGE_SEMI


@dataclass(frozen=True)
class Final:
    stage = STAGE_FINAL

    @property
    def slot(self):
        return SLOT_FINAL


MatchKind = Union[PoolPlay, Semifinal, Final]


def kind_from_row(row: dict) -> MatchKind:
    """Resolve the stage/phase/slot/pool columns of a match row into a MatchKind."""
    slot = row.get('bracket_slot')
    if slot == SLOT_FINAL:
        return Final()
    if slot in SEMIFINAL_SLOTS:
        return Semifinal(slot)

    tag = (row.get('stage') or row.get('phase') or STAGE_POOL).lower()
    stage = _PHASE_TO_STAGE.get(tag, STAGE_POOL)
    if stage == STAGE_FINAL:
        return Final()
    if stage == STAGE_SEMI:
        return Semifinal(None)
    return PoolPlay(row.get('pool_id'))


def kind_to_row(kind: MatchKind) -> dict:
    """Inverse of kind_from_row, producing the canonical stored columns."""
    if isinstance(kind, Final):
        return {'stage': STAGE_FINAL, 'bracket_slot': SLOT_FINAL, 'pool_id': None}
    if isinstance(kind, Semifinal):
        return {'stage': STAGE_SEMI, 'bracket_slot': kind.slot, 'pool_id': None}
    return {'stage': STAGE_POOL, 'bracket_slot': None, 'pool_id': kind.pool_id}


def kind_for_stage(stage: str, pool_id: Optional[str] = None, slot: Optional[str] = None) -> MatchKind:
    """Build a MatchKind from user-facing stage selection."""
    if stage == STAGE_FINAL:
        return Final()
    if stage == STAGE_SEMI:
        return Semifinal(slot)
    if stage == STAGE_POOL:
        return PoolPlay(pool_id)
    raise ValueError(f"Unknown stage: {stage}")


@dataclass
class Team:
    id: str
    name: str

    @classmethod
    def from_row(cls, row):
        return cls(id=row['id'], name=row['name'])


@dataclass
class Tournament:
    id: str
    name: str
    slug: str
    start_date: Optional[str] = None
    end_date: Optional[str] = None

    @classmethod
    def from_row(cls, row):
        return cls(
            id=row['id'],
            name=row['name'],
            slug=row.get('slug') or slugify(row['name']),
            start_date=row.get('start_date'),
            end_date=row.get('end_date'),
        )


@dataclass
class Pool:
    id: str
    tournament_id: str
    name: str
    order_index: Optional[int] = None

    @classmethod
    def from_row(cls, row):
        return cls(
            id=row['id'],
            tournament_id=row['tournament_id'],
            name=row['name'],
            order_index=row.get('order_index'),
        )

    def sort_key(self):
        # Pools without an explicit position follow the ordered ones
        has_index = self.order_index is not None
        return (not has_index, self.order_index if has_index else 0, self.name)


@dataclass
class Match:
    id: str
    tournament_id: str
    team1_id: Optional[str] = None
    team2_id: Optional[str] = None
    kind: MatchKind = field(default_factory=PoolPlay)
    status: str = STATUS_SCHEDULED
    scheduled_at: Optional[str] = None
    winner_team_id: Optional[str] = None

    @property
    def stage(self) -> str:
        return self.kind.stage

    @property
    def is_placeholder(self) -> bool:
        return self.team1_id is None or self.team2_id is None

    @property
    def is_completed(self) -> bool:
        return self.status == STATUS_COMPLETED

    def opponent_of(self, team_id):
        if team_id == self.team1_id:
            return self.team2_id
        if team_id == self.team2_id:
            return self.team1_id
        return None

    @classmethod
    def from_row(cls, row):
        return cls(
            id=row['id'],
            tournament_id=row['tournament_id'],
            team1_id=row.get('team1_id'),
            team2_id=row.get('team2_id'),
            kind=kind_from_row(row),
            status=row.get('status') or STATUS_SCHEDULED,
            scheduled_at=row.get('scheduled_at'),
            winner_team_id=row.get('winner_team_id'),
        )

    def to_row(self) -> dict:
        row = {
            'id': self.id,
            'tournament_id': self.tournament_id,
            'team1_id': self.team1_id,
            'team2_id': self.team2_id,
            'status': self.status,
            'scheduled_at': self.scheduled_at,
            'winner_team_id': self.winner_team_id,
        }
        row.update(kind_to_row(self.kind))
        return row


@dataclass
class SetScore:
    id: str
    match_id: str
    set_number: int
    team1_points: int = 0
    team2_points: int = 0

    @classmethod
    def from_row(cls, row):
        return cls(
            id=row['id'],
            match_id=row['match_id'],
            set_number=int(row['set_number']),
            team1_points=int(row.get('team1_points') or 0),
            team2_points=int(row.get('team2_points') or 0),
        )

    def to_row(self) -> dict:
        return {
            'id': self.id,
            'match_id': self.match_id,
            'set_number': self.set_number,
            'team1_points': self.team1_points,
            'team2_points': self.team2_points,
        }


def group_sets_by_match(sets: List[SetScore]) -> dict:
    """Index sets by match id, each list ordered by set number."""
    by_match = {}
    for s in sets:
        by_match.setdefault(s.match_id, []).append(s)
    for match_sets in by_match.values():
        match_sets.sort(key=lambda s: s.set_number)
    return by_match


def pool_members(pool_teams: List[dict]) -> dict:
    """Map pool id -> set of team ids from pool_teams join rows."""
    members = {}
    for row in pool_teams:
        members.setdefault(row['pool_id'], set()).add(row['team_id'])
    return members
