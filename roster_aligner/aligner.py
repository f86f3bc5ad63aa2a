import sys
import logging
import argparse
from dataclasses import replace

from .config import load_config, load_credentials
from .errors import AlignerError
from .platform import SlackGroupPlatform
from .roster import SheetsRosterSource
from .sync_service import post_report, run_sync

logger = logging.getLogger(__name__)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description='Align Slack usergroups to the Google Sheets member roster')
    parser.add_argument('--config', help='Path to config.yaml (default: ./config.yaml if present)')
    parser.add_argument('--dry-run', action='store_true', help='Compute and log the plan without making changes')
    parser.add_argument('--verbose', action='store_true', help='Enable debug logging')
    args = parser.parse_args(argv)

    # Setup Logging
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(asctime)s - %(levelname)s - %(message)s')

    try:
        config = load_config(args.config)
        if args.dry_run:
            config = replace(config, dry_run=True)
        creds = load_credentials()

        # Initialize Clients
        platform = SlackGroupPlatform(creds.slack_bot_token)
        roster = SheetsRosterSource.from_service_account_file(
            creds.google_service_account_file, creds.sheet_link, config.roster
        )

        summary = run_sync(config, platform, roster)
    except AlignerError as e:
        logger.error(f"Sync failed: {e}")
        return 1

    post_report(platform, config.notify_channel_id, summary)
    return 0 if summary.ok else 1


if __name__ == "__main__":
    sys.exit(main())
