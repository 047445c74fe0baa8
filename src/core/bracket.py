"""
Semifinal seeding and final propagation for a two pool bracket.

Bracket shape is fixed: SF1 and SF2 feed F. Functions here never touch the
store; they return a list of Mutation objects that the caller applies as a
single batch, so a rejected plan leaves everything unchanged.
"""
from typing import Dict, List, Optional

from .errors import SeedingError
from .models import (
    Match, Semifinal, Final, STATUS_SCHEDULED, SLOT_SF1, SLOT_SF2, SLOT_FINAL,
    SEMIFINAL_SLOTS, kind_to_row,
)

BRACKET_SLOTS = (SLOT_SF1, SLOT_SF2, SLOT_FINAL)

INSERT = 'insert'
UPDATE = 'update'


class Mutation:
    """One pending write against the matches collection."""

    def __init__(self, action: str, values: dict, match_id: Optional[str] = None, slot: Optional[str] = None):
        self.action = action
        self.values = values
        self.match_id = match_id
        self.slot = slot

    def __eq__(self, other):
        return (isinstance(other, Mutation) and self.action == other.action
                and self.values == other.values and self.match_id == other.match_id)

    def __repr__(self):
        return f"Mutation(action={self.action}, slot={self.slot}, match_id={self.match_id}, values={self.values})"


def _slot_kind(slot: str):
    return Final() if slot == SLOT_FINAL else Semifinal(slot)


def _insert(tournament_id: str, slot: str, team1_id=None, team2_id=None, scheduled_at=None) -> Mutation:
    values = {
        'tournament_id': tournament_id,
        'team1_id': team1_id,
        'team2_id': team2_id,
        'status': STATUS_SCHEDULED,
        'scheduled_at': scheduled_at,
        'winner_team_id': None,
    }
    values.update(kind_to_row(_slot_kind(slot)))
    return Mutation(INSERT, values, slot=slot)


def find_bracket_matches(matches: List[Match]) -> Dict[str, Optional[Match]]:
    """
    Locate the SF1, SF2 and F matches.

    Semifinals stored without a slot (older rows only carry the stage)
    fill the free semifinal slots in the order they were created.
    """
    bracket = {slot: None for slot in BRACKET_SLOTS}
    unslotted = []
    for match in matches:
        kind = match.kind
        if isinstance(kind, Final):
            if bracket[SLOT_FINAL] is None:
                bracket[SLOT_FINAL] = match
        elif isinstance(kind, Semifinal):
            if kind.slot in SEMIFINAL_SLOTS and bracket[kind.slot] is None:
                bracket[kind.slot] = match
            else:
                unslotted.append(match)
    for slot in SEMIFINAL_SLOTS:
        if bracket[slot] is None and unslotted:
            bracket[slot] = unslotted.pop(0)
    return bracket


def plan_placeholders(matches: List[Match], tournament_id: str,
                      times: Optional[Dict[str, str]] = None) -> List[Mutation]:
    """
    Create whichever of SF1, SF2 and F is missing, with empty team slots.

    When all three already exist, any given times are applied to them
    instead. Returns an empty list when there is nothing to do.
    """
    times = times or {}
    bracket = find_bracket_matches(matches)
    missing = [slot for slot in BRACKET_SLOTS if bracket[slot] is None]
    if missing:
        return [_insert(tournament_id, slot, scheduled_at=times.get(slot)) for slot in missing]

    plan = []
    for slot in BRACKET_SLOTS:
        when = times.get(slot)
        if when:
            plan.append(Mutation(UPDATE, {'scheduled_at': when}, match_id=bracket[slot].id, slot=slot))
    return plan


def seed_pairings(pool_tables: List[dict]) -> Dict[str, tuple]:
    """
    Cross-seed the top two of pools A and B.

    SF1 = A1 vs B2, SF2 = B1 vs A2. ``pool_tables`` is the ordered output
    of compute_pool_standings; the first entry is pool A. A team that sits
    in both pools may not take two of the four seeds.
    """
    if len(pool_tables) != 2:
        raise SeedingError(
            f"Auto-seeding needs exactly 2 pools, found {len(pool_tables)}."
        )
    pool_a, pool_b = pool_tables
    for table in (pool_a, pool_b):
        if len(table['standings']) < 2:
            raise SeedingError(
                f"{table['pool'].name} has fewer than 2 ranked teams; need the top 2 from each pool."
            )
    a1, a2 = pool_a['standings'][0]['id'], pool_a['standings'][1]['id']
    b1, b2 = pool_b['standings'][0]['id'], pool_b['standings'][1]['id']
    if len({a1, a2, b1, b2}) < 4:
        raise SeedingError(
            "A team ranks in the top 2 of both pools; the four semifinal seeds must be different teams."
        )
    return {SLOT_SF1: (a1, b2), SLOT_SF2: (b1, a2)}


def plan_semifinal_seeding(pool_tables: List[dict], matches: List[Match], tournament_id: str) -> List[Mutation]:
    """
    Assign seeded teams to SF1 and SF2, overwriting any previous seeding.

    Existing semifinals are updated in place, missing ones are created, and
    an empty final is created if none exists yet. Raises SeedingError
    before planning anything when the pools do not allow seeding.
    """
    pairings = seed_pairings(pool_tables)
    bracket = find_bracket_matches(matches)

    plan = []
    for slot in SEMIFINAL_SLOTS:
        team1_id, team2_id = pairings[slot]
        existing = bracket[slot]
        if existing is None:
            plan.append(_insert(tournament_id, slot, team1_id, team2_id))
        else:
            values = {'team1_id': team1_id, 'team2_id': team2_id}
            values.update(kind_to_row(Semifinal(slot)))
            plan.append(Mutation(UPDATE, values, match_id=existing.id, slot=slot))

    if bracket[SLOT_FINAL] is None:
        plan.append(_insert(tournament_id, SLOT_FINAL))
    return plan


def plan_final_propagation(matches: List[Match], tournament_id: str) -> List[Mutation]:
    """
    Move semifinal winners into the final's empty slots.

    SF1's winner goes to team1, SF2's to team2. Slots that already hold a
    team are left alone, and a slot is never given the team already
    sitting in the other one. Returns an empty plan unless both semifinals
    are completed with a recorded winner.
    """
    bracket = find_bracket_matches(matches)
    sf1, sf2, final = bracket[SLOT_SF1], bracket[SLOT_SF2], bracket[SLOT_FINAL]
    if sf1 is None or sf2 is None:
        return []
    for semi in (sf1, sf2):
        if not semi.is_completed or not semi.winner_team_id:
            return []

    if final is None:
        return [_insert(tournament_id, SLOT_FINAL, sf1.winner_team_id, sf2.winner_team_id)]

    patch = {}
    if not final.team1_id and sf1.winner_team_id != final.team2_id:
        patch['team1_id'] = sf1.winner_team_id
    if not final.team2_id and sf2.winner_team_id != final.team1_id:
        patch['team2_id'] = sf2.winner_team_id
    if not patch:
        return []
    return [Mutation(UPDATE, patch, match_id=final.id, slot=SLOT_FINAL)]
