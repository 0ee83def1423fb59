#!/usr/bin/env python3
"""
Script Base - Common infrastructure for CLI scripts

Provides a base class that handles:
- Path setup for imports from parent directory
- Logging configuration (stdout + file)
- Argument parsing with common options
- Header/summary printing with consistent formatting
- Exception handling and exit codes

Usage:
    from script_base import ScriptBase, run_script

    def main():
        script = ScriptBase(
            name="my_script",
            description="Does something useful",
            epilog="Examples:\\n  python my_script.py --user-id abc123"
        )

        # Add common argument groups as needed
        script.add_user_args()      # --user-id/--all-users for user selection
        script.add_dry_run_arg()    # --dry-run
        script.add_debug_arg()      # --debug

        # Add script-specific arguments
        script.parser.add_argument('--skip-library', action='store_true')

        # Parse and get args
        args = script.parse_args()

        # Print header with active modes
        script.print_header({
            "DRY RUN": args.dry_run,
        })

        # Do work...
        result = do_something(script.find_user_ids(args))

        # Print summary
        script.print_summary(result['stats'])

        return result['success']

    if __name__ == "__main__":
        run_script(main)
"""

import sys
import argparse
import logging
from pathlib import Path
from typing import Callable, List, Optional

# Add parent directory to path for imports (do this immediately)
sys.path.insert(0, str(Path(__file__).parent.parent))


class ScriptBase:
    """Base class providing common CLI script infrastructure."""

    def __init__(
        self,
        name: str,
        description: str,
        epilog: str = "",
        log_dir: Optional[Path] = None
    ):
        """
        Initialize the script base.

        Args:
            name: Script name (used for log file naming)
            description: Script description for --help
            epilog: Additional help text (examples, etc.)
            log_dir: Directory for log files (default: scripts/log/)
        """
        self.name = name
        self.log_dir = log_dir or Path(__file__).parent / 'log'
        self.logger = self._setup_logging()
        self.parser = self._create_parser(description, epilog)
        self._user_args_group = None

    def _setup_logging(self) -> logging.Logger:
        """Configure logging with stdout and file handlers."""
        self.log_dir.mkdir(exist_ok=True)

        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s - %(levelname)s - %(message)s',
            handlers=[
                logging.StreamHandler(sys.stdout),
                logging.FileHandler(self.log_dir / f'{self.name}.log')
            ]
        )
        return logging.getLogger(self.name)

    def _create_parser(self, description: str, epilog: str) -> argparse.ArgumentParser:
        """Create the argument parser."""
        return argparse.ArgumentParser(
            description=description,
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog=epilog
        )

    # =========================================================================
    # Common Argument Groups
    # =========================================================================

    def add_user_args(self, required: bool = True) -> argparse.ArgumentParser:
        """
        Add mutually exclusive --user-id/--all-users arguments for user selection.

        Args:
            required: Whether one of --user-id or --all-users is required

        Returns:
            The mutually exclusive group (for adding more options if needed)
        """
        group = self.parser.add_mutually_exclusive_group(required=required)
        group.add_argument('--user-id', help='Listener ID')
        group.add_argument('--all-users', action='store_true',
                           help='Process every user with listening history')
        self._user_args_group = group
        return group

    def add_dry_run_arg(self):
        """Add --dry-run argument."""
        self.parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would happen without making changes'
        )

    def add_debug_arg(self):
        """Add --debug argument."""
        self.parser.add_argument(
            '--debug',
            action='store_true',
            help='Enable debug logging'
        )

    # =========================================================================
    # Argument Parsing
    # =========================================================================

    def parse_args(self, args=None) -> argparse.Namespace:
        """
        Parse command line arguments and apply common settings.

        Args:
            args: Arguments to parse (default: sys.argv)

        Returns:
            Parsed arguments namespace
        """
        parsed = self.parser.parse_args(args)

        # Apply debug logging if requested
        if getattr(parsed, 'debug', False):
            logging.getLogger().setLevel(logging.DEBUG)
            self.logger.debug("Debug logging enabled")

        return parsed

    # =========================================================================
    # Output Formatting
    # =========================================================================

    def print_header(self, modes: dict = None, title: str = None):
        """
        Print a formatted header with optional mode indicators.

        Args:
            modes: Dict of mode_name -> is_active (e.g., {"DRY RUN": True})
            title: Custom title (default: script name formatted)
        """
        title = title or self.name.replace('_', ' ').title()

        self.logger.info("=" * 80)
        self.logger.info(title)
        self.logger.info("=" * 80)

        if modes:
            for mode_name, is_active in modes.items():
                if is_active:
                    self.logger.info(f"*** {mode_name} MODE ***")

        self.logger.info("")

    def print_summary(self, stats: dict, title: str = "SUMMARY"):
        """
        Print a formatted summary of operation statistics.

        Args:
            stats: Dict of stat_name -> value
            title: Summary section title
        """
        self.logger.info("")
        self.logger.info("=" * 80)
        self.logger.info(title)
        self.logger.info("=" * 80)

        if stats:
            # Find max key length for alignment
            max_key_len = max(len(str(k)) for k in stats.keys())

            for key, value in stats.items():
                # Format key: replace underscores, title case
                display_key = key.replace('_', ' ').title()
                self.logger.info(f"{display_key:<{max_key_len + 5}} {value}")

        self.logger.info("=" * 80)

    # =========================================================================
    # User Lookup Helper
    # =========================================================================

    def find_user_ids(self, args: argparse.Namespace) -> List[str]:
        """
        Resolve the users to process from parsed arguments.

        Args:
            args: Parsed arguments with 'user_id' and 'all_users' attributes

        Returns:
            List of user IDs

        Raises:
            SystemExit: If --all-users finds no listening history
        """
        if args.user_id:
            return [args.user_id]

        from db_utils import execute_query

        rows = execute_query("SELECT DISTINCT user_id FROM listening_history ORDER BY user_id")
        user_ids = [row['user_id'] for row in rows or []]

        if not user_ids:
            self.logger.error("No users with listening history found")
            sys.exit(1)

        self.logger.info(f"Found {len(user_ids)} users with listening history")
        return user_ids


def run_script(main_func: Callable[[], bool]):
    """
    Run a script's main function with standard exception handling.

    Args:
        main_func: Function that returns True on success, False on failure
    """
    try:
        success = main_func()
        sys.exit(0 if success else 1)
    except KeyboardInterrupt:
        print("\nCancelled by user")
        sys.exit(1)
    except Exception as e:
        logging.error(f"Unexpected error: {e}", exc_info=True)
        sys.exit(1)
