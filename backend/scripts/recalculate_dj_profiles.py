#!/usr/bin/env python3
"""
Recalculate AI DJ Profiles

Rebuilds everything the AI DJ precomputes per listener:
- taste profile (library re-analysis)
- compound scores from recent listening history
- artist affinities
- purge of stale compound scores

Meant to run nightly from cron, or by hand for a single user after a large
library import.
"""

from dotenv import load_dotenv

from script_base import ScriptBase, run_script
from compound_scoring import CompoundScorer
from dj_db import (ArtistAffinityStore, CompoundScoreStore, ListeningHistoryStore,
                   SimilarityStore, TasteProfileStore)
from navidrome_client import NavidromeClient
from taste_profile import TasteProfileService
from user_profile import calculate_full_user_profile


def main() -> bool:
    load_dotenv()

    script = ScriptBase(
        name="recalculate_dj_profiles",
        description="Recalculate taste profiles, compound scores and artist affinities",
        epilog="""
Examples:
  # One listener
  python recalculate_dj_profiles.py --user-id abc123

  # Everyone with listening history
  python recalculate_dj_profiles.py --all-users

  # Only list who would be processed
  python recalculate_dj_profiles.py --all-users --dry-run
        """
    )

    script.add_user_args()
    script.add_dry_run_arg()
    script.add_debug_arg()

    script.parser.add_argument(
        '--skip-library',
        action='store_true',
        help='Skip the taste profile step (no library API calls)'
    )

    args = script.parse_args()

    script.print_header({
        "DRY RUN": args.dry_run,
        "SKIP LIBRARY": args.skip_library,
    })

    user_ids = script.find_user_ids(args)

    stats = {
        'users': len(user_ids),
        'users_succeeded': 0,
        'users_with_failures': 0,
        'compound_scores': 0,
        'artist_affinities': 0,
        'stale_scores_purged': 0,
    }

    if args.dry_run:
        for user_id in user_ids:
            script.logger.info(f"Would recalculate profile for user {user_id}")
        script.print_summary(stats)
        return True

    profile_service = None
    if not args.skip_library:
        profile_service = TasteProfileService(TasteProfileStore(), NavidromeClient())

    history_store = ListeningHistoryStore()
    compound_scorer = CompoundScorer(history_store, SimilarityStore(), CompoundScoreStore())
    affinity_store = ArtistAffinityStore()

    for i, user_id in enumerate(user_ids, 1):
        script.logger.info(f"[{i}/{len(user_ids)}] User {user_id}")

        summary = calculate_full_user_profile(
            user_id,
            profile_service=profile_service,
            compound_scorer=compound_scorer,
            history_store=history_store,
            affinity_store=affinity_store,
        )

        stats['compound_scores'] += summary['compound_scores']
        stats['artist_affinities'] += summary['artist_affinities']
        stats['stale_scores_purged'] += summary['stale_scores_purged']
        if summary['failed_steps']:
            stats['users_with_failures'] += 1
            script.logger.warning(f"  ✗ Failed steps: {', '.join(summary['failed_steps'])}")
        else:
            stats['users_succeeded'] += 1

    script.print_summary(stats)
    return stats['users_with_failures'] == 0


if __name__ == "__main__":
    run_script(main)
