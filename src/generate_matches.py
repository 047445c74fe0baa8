import sys
import os
from itertools import combinations

import yaml


def load_pools(file_path):
    """Read a YAML mapping of pool name -> list of team names."""
    with open(file_path, mode='r', encoding='utf-8') as file:
        pools_data = yaml.safe_load(file)
    return {str(pool): list(teams or []) for pool, teams in (pools_data or {}).items()}


def generate_pool_play_matches(pools, existing_pairs=None):
    """
    Round-robin pairings inside each pool.

    ``pools`` maps a pool key to its team keys (ids or names). Pairs listed
    in ``existing_pairs`` (any order) are skipped so regeneration only adds
    what is missing.
    """
    existing = {frozenset(pair) for pair in (existing_pairs or [])}
    matches = []
    for pool, members in pools.items():
        unique_members = list(dict.fromkeys(members))
        if len(unique_members) < 2:
            continue
        for team1, team2 in combinations(unique_members, 2):
            if frozenset((team1, team2)) in existing:
                continue
            matches.append({
                "teams": [team1, team2],
                "pool": pool
            })
    return matches


def main():
    script_dir = os.path.dirname(__file__)
    base_dir = os.path.dirname(script_dir)

    pools_file = sys.argv[1] if len(sys.argv) > 1 else os.path.join(base_dir, 'data', 'pools.yaml')
    pools = load_pools(pools_file)
    if not pools:
        return

    matches = generate_pool_play_matches(pools)

    matches_by_pool = {}
    for match in matches:
        matches_by_pool.setdefault(match["pool"], []).append(match)

    first_pool = True
    for pool, pool_matches in sorted(matches_by_pool.items()):
        if not first_pool:
            print()
        print(f"# {pool}")
        for match in pool_matches:
            team1, team2 = match["teams"]
            print(f"{team1} vs {team2}")
        first_pool = False


if __name__ == '__main__':
    main()
