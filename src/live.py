"""
Live tournament view kept fresh by store change events.

The view holds the latest known matches and sets of one tournament.
Change events are folded in by small reducers, and loads are tagged with
the tournament id they were started for so a response that arrives after
the user switched tournaments is dropped instead of applied.
"""
import logging

import scorekeeper
from core.models import Match, SetScore
from core.rules import DEFAULT_RULESET
from core.standings import compute_standings, compute_pool_standings
from store import EVENT_INSERT, EVENT_UPDATE, EVENT_DELETE

logger = logging.getLogger(__name__)


def fold_set_event(sets: dict, match_ids: set, event: str, row: dict) -> dict:
    """Return ``sets`` updated with one change to the sets collection."""
    if row.get('match_id') not in match_ids:
        return sets
    folded = dict(sets)
    if event == EVENT_DELETE:
        folded.pop(row['id'], None)
    elif event == EVENT_INSERT and row['id'] in sets:
        return sets
    else:
        folded[row['id']] = SetScore.from_row(row)
    return folded


def fold_match_event(matches: dict, tournament_id, event: str, row: dict) -> dict:
    """Return ``matches`` updated with one change to the matches collection."""
    if row.get('tournament_id') != tournament_id:
        return matches
    folded = dict(matches)
    if event == EVENT_DELETE:
        folded.pop(row['id'], None)
    elif event == EVENT_INSERT and row['id'] in matches:
        return matches
    else:
        folded[row['id']] = Match.from_row(row)
    return folded


class LiveView:
    def __init__(self, tournament_id=None, rules=None, on_change=None):
        self.tournament_id = tournament_id
        self.rules = rules or DEFAULT_RULESET
        self.on_change = on_change
        self.teams = []
        self.roster_ids = set()
        self.pools = []
        self.pool_teams = []
        self.matches = {}
        self.sets = {}
        self._unsubscribers = []

    def switch_tournament(self, tournament_id):
        """Make ``tournament_id`` active and forget everything loaded for the previous one."""
        if tournament_id == self.tournament_id:
            return
        logger.debug('Switching live view from %s to %s', self.tournament_id, tournament_id)
        self.tournament_id = tournament_id
        self.teams = []
        self.roster_ids = set()
        self.pools = []
        self.pool_teams = []
        self.matches = {}
        self.sets = {}

    def apply_snapshot(self, tournament_id, snapshot) -> bool:
        """Install a loaded snapshot if it still belongs to the active tournament."""
        if tournament_id != self.tournament_id:
            logger.info('Discarding stale snapshot for tournament %s (active: %s)',
                        tournament_id, self.tournament_id)
            return False
        self.teams = list(snapshot.teams)
        self.roster_ids = set(snapshot.roster_ids)
        self.pools = list(snapshot.pools)
        self.pool_teams = list(snapshot.pool_teams)
        self.matches = {m.id: m for m in snapshot.matches}
        self.sets = {s.id: s for s in snapshot.sets}
        return True

    def refresh(self, store) -> bool:
        """Reload the active tournament from ``store``."""
        tournament_id = self.tournament_id
        return self.apply_snapshot(tournament_id, scorekeeper.load_snapshot(store, tournament_id))

    def handle_event(self, collection, event, row):
        matches, sets = self.matches, self.sets
        if collection == 'matches':
            self.matches = fold_match_event(self.matches, self.tournament_id, event, row)
        elif collection == 'sets':
            self.sets = fold_set_event(self.sets, set(self.matches), event, row)
        if self.on_change and (self.matches is not matches or self.sets is not sets):
            self.on_change()

    def attach(self, store):
        """Subscribe to set and match changes on ``store``."""
        self.detach()
        for collection in ('matches', 'sets'):
            for event in (EVENT_INSERT, EVENT_UPDATE, EVENT_DELETE):
                handler = (lambda c, e: lambda row: self.handle_event(c, e, row))(collection, event)
                self._unsubscribers.append(store.subscribe(collection, event, handler))

    def detach(self):
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def leaderboard(self):
        roster = [t for t in self.teams if t.id in self.roster_ids]
        return compute_standings(roster, self.matches.values(), self.sets.values(), rules=self.rules)

    def pool_leaderboards(self):
        return compute_pool_standings(self.pools, self.pool_teams, self.teams,
                                      list(self.matches.values()), list(self.sets.values()), rules=self.rules)

    def summary(self) -> dict:
        """Leaderboard and pool tables as plain data."""
        return {
            'tournament_id': self.tournament_id,
            'leaderboard': self.leaderboard(),
            'pools': [{'id': table['pool'].id, 'name': table['pool'].name, 'standings': table['standings']}
                      for table in self.pool_leaderboards()],
        }
