import time
import logging
from typing import Callable, List, Optional

from .config import AlignerConfig
from .errors import AlignerError
from .models import MemberRecord, RunSummary
from .rate_limit import RateLimitedCaller
from .reconciler import MembershipReconciler
from .registry import GroupRegistry
from .resolver import IdentityResolver
from .targets import TargetSetBuilder, prioritized_emails

logger = logging.getLogger(__name__)


# --- LOGIC ---

def run_sync(config: AlignerConfig, platform, roster_source,
             sleep: Callable[[float], None] = time.sleep) -> RunSummary:
    """One full alignment run: roster -> targets -> identities -> groups -> reconcile.

    Roster and authentication failures propagate. Everything else is recorded in
    the returned summary.
    """
    dry_run = config.dry_run
    logger.info(f"--- Starting Sync Job (Dry Run: {dry_run}) ---")

    # 1. Source of truth. Read fully before touching Slack.
    members: List[MemberRecord] = roster_source.read_members()

    # 2. Desired state
    builder = TargetSetBuilder(config.groups)
    specs = builder.build_specs(members)
    targets = {s.handle: s.target_emails for s in specs}
    if dry_run:
        logger.info(f"[DRY RUN] Planned usergroups: {', '.join(targets)}")

    caller = RateLimitedCaller(config.rate_limits, sleep=sleep)
    summary = RunSummary(dry_run=dry_run)

    # 3. Identities (actives first)
    resolver = IdentityResolver(platform, caller, config.groups.protected_user_ids)
    priority, others = prioritized_emails(members, targets)
    users = resolver.resolve(priority, others)
    summary.unresolved = dict(resolver.unresolved)

    # 4. Groups that will end up with members must exist and be enabled
    wanted = [s.handle for s in specs if MembershipReconciler.target_ids(s, users)]
    registry = GroupRegistry(platform, caller, prefix=config.groups.prefix, dry_run=dry_run)
    handle_to_id = registry.ensure(wanted)
    summary.created = list(registry.created)
    summary.enabled = list(registry.enabled)
    summary.failures.extend(registry.failures)

    # 5. Diff and apply
    reconciler = MembershipReconciler(platform, caller, config.groups, dry_run=dry_run)
    reconciler.reconcile(specs, users, handle_to_id, registry.known, summary)

    log_summary(summary)
    return summary


# --- REPORT ---

def log_summary(summary: RunSummary):
    prefix = "[DRY RUN] " if summary.dry_run else ""
    logger.info(f"{prefix}Groups created: {len(summary.created)}, enabled: {len(summary.enabled)}, "
                f"disabled: {len(summary.disabled)}")
    logger.info(f"{prefix}Members added: {summary.added}, removed: {summary.removed}, "
                f"unresolved emails: {len(summary.unresolved)}")
    for stats in summary.group_stats:
        if stats.added or stats.removed or stats.skipped or stats.errors or stats.status == "Failed":
            logger.info(f"  {stats.handle}: {stats.status} (+{stats.added} / -{stats.removed}, "
                        f"skipped {stats.skipped})")
        for error in stats.errors:
            logger.error(f"  [X] {stats.handle}: {error}")
    for failure in summary.failures:
        logger.error(f"  [X] {failure}")
    logger.info("--- Sync Complete ---" if summary.ok else "--- Sync Complete (with failures) ---")


def report_blocks(summary: RunSummary) -> List[dict]:
    """Slack blocks for the end-of-run report."""
    icon = "✅" if summary.ok else "⚠️"
    blocks = [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": "🔄 Usergroup Sync Report"}
        },
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": (
                f"{icon} Added: {summary.added} | Removed: {summary.removed}\n"
                f"Groups created: {len(summary.created)} | enabled: {len(summary.enabled)} | "
                f"disabled: {len(summary.disabled)}"
            )}
        },
    ]

    changed = [s for s in summary.group_stats if s.added or s.removed or s.errors]
    for stats in changed:
        text = (f"*{stats.handle}*\n"
                f"Added: {stats.added} | Removed: {stats.removed} | Skipped: {stats.skipped}")
        if stats.errors:
            text += f"\n⛔ Errors: {', '.join(stats.errors)}"
        blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": text}})

    if summary.unresolved:
        blocks.append({"type": "section", "text": {"type": "mrkdwn",
                       "text": f"❓ Unresolved Slack accounts: {len(summary.unresolved)}"}})
    if summary.failures:
        blocks.append({"type": "section", "text": {"type": "mrkdwn",
                       "text": f"⛔ Failures: {', '.join(summary.failures)}"}})
    return blocks


def post_report(platform, channel_id: Optional[str], summary: RunSummary):
    """Posts the summary to the ops channel. Never fails the run."""
    if not channel_id or summary.dry_run:
        return
    try:
        platform.post_message(channel_id, report_blocks(summary), text="Usergroup Sync Report")
    except AlignerError as e:
        logger.error(f"Failed to post report: {e}")
