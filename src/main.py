# Command-line entry point: standings, bracket and admin accounts

import argparse
import os
import sys

import scorekeeper
from core.errors import VolleyTrackError
from core.rules import get_ruleset, RULESETS
from store import YamlStore


def default_data_dir():
    base_dir = os.path.dirname(os.path.dirname(__file__))
    return os.environ.get('VOLLEYTRACK_DATA_DIR', os.path.join(base_dir, 'data'))


def resolve_tournament(store, slug):
    tournament = scorekeeper.find_tournament_by_slug(store, slug)
    if tournament is None:
        raise VolleyTrackError(f"No tournament with slug '{slug}'")
    return tournament


def print_table(rows):
    print(f"{'#':>3} {'Team':<24} {'W':>3} {'L':>3} {'SW':>3} {'SL':>3} {'PF':>5} {'PA':>5} {'PD':>5} {'Pts':>4}")
    for rank, row in enumerate(rows, start=1):
        print(f"{rank:>3} {row['name']:<24} {row['wins']:>3} {row['losses']:>3} "
              f"{row['sets_won']:>3} {row['sets_lost']:>3} {row['points_for']:>5} "
              f"{row['points_against']:>5} {row['point_diff']:>5} {row['match_points']:>4}")


def cmd_standings(store, args):
    tournament = resolve_tournament(store, args.slug)
    rules = get_ruleset(args.ruleset)
    if args.pools:
        first_pool = True
        for table in scorekeeper.pool_leaderboards(store, tournament.id, rules):
            if not first_pool:
                print()
            print(f"# {table['pool'].name}")
            print_table(table['standings'])
            first_pool = False
    else:
        print(f"# {tournament.name}")
        print_table(scorekeeper.leaderboard(store, tournament.id, rules))
    return 0


def cmd_bracket(store, args):
    tournament = resolve_tournament(store, args.slug)
    bracket = scorekeeper.bracket_view(store, tournament.id)
    for slot, match in bracket.items():
        if match is None:
            print(f"{slot}: not created")
            continue
        print(f"{slot}: {match['team1']} vs {match['team2']} ({match['status']})")
    return 0


def cmd_create_admin(store, args):
    import app as app_module
    app_module.USERS_FILE = os.path.join(store.data_dir, 'users.yaml')
    app_module.DATA_DIR = store.data_dir
    ok, message = app_module.create_user(args.username, args.password)
    print(message, file=sys.stdout if ok else sys.stderr)
    return 0 if ok else 1


def main(argv=None):
    parser = argparse.ArgumentParser(description='VolleyTrack tournament tools')
    parser.add_argument('--data-dir', default=default_data_dir(), help='Data directory (default: data/)')
    subparsers = parser.add_subparsers(dest='command', required=True)

    standings = subparsers.add_parser('standings', help='Print the leaderboard of a tournament')
    standings.add_argument('slug')
    standings.add_argument('--pools', action='store_true', help='Print one table per pool')
    standings.add_argument('--ruleset', choices=sorted(RULESETS), default=None)
    standings.set_defaults(func=cmd_standings)

    bracket = subparsers.add_parser('bracket', help='Print the semifinals and final')
    bracket.add_argument('slug')
    bracket.set_defaults(func=cmd_bracket)

    admin = subparsers.add_parser('create-admin', help='Create an admin account')
    admin.add_argument('username')
    admin.add_argument('password')
    admin.set_defaults(func=cmd_create_admin)

    args = parser.parse_args(argv)
    store = YamlStore(args.data_dir)
    try:
        return args.func(store, args)
    except VolleyTrackError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
