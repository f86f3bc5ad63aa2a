import logging
from typing import Iterable, List, Mapping, Optional, Set

from .config import GroupSettings
from .errors import AuthenticationError, describe
from .handles import with_prefix
from .models import GroupSpec, GroupStats, PlatformGroup, ResolvedUser, RunSummary
from .rate_limit import RateLimitedCaller

logger = logging.getLogger(__name__)


class MembershipReconciler:
    """Diffs each usergroup against its target set and applies the difference.

    Groups are processed one by one, actives first. A failure inside one group is
    recorded in its stats and never stops the others. Groups left without any
    resolved member are disabled at the end, never deleted.
    """

    def __init__(self, platform, caller: RateLimitedCaller, settings: GroupSettings, dry_run: bool = False):
        self.platform = platform
        self.caller = caller
        self.settings = settings
        self.dry_run = dry_run
        self.actives_handle = with_prefix(settings.prefix, settings.actives)
        self.alumni_handle = with_prefix(settings.prefix, settings.alumni)
        self.protected_ids = set(settings.protected_user_ids)

    def reconcile(self, specs: List[GroupSpec], users: Mapping[str, ResolvedUser],
                  handle_to_id: Mapping[str, str], known: Mapping[str, PlatformGroup],
                  summary: Optional[RunSummary] = None) -> RunSummary:
        summary = summary or RunSummary(dry_run=self.dry_run)
        users_by_id = {u.platform_id: u for u in users.values()}
        populated: Set[str] = set()

        ordered = sorted(specs, key=lambda s: s.handle != self.actives_handle)
        for spec in ordered:
            stats = GroupStats(handle=spec.handle)
            summary.group_stats.append(stats)
            target_ids = self.target_ids(spec, users)

            if not target_ids:
                logger.info(f"Skipping empty usergroup: {spec.handle}")
                stats.status = "Empty"
                continue
            populated.add(spec.handle)

            group_id = handle_to_id.get(spec.handle)
            if not group_id:
                if self.dry_run:
                    logger.info(f"  [DRY RUN] Would add {len(target_ids)} users to new usergroup {spec.handle}")
                    stats.added = len(target_ids)
                    stats.status = "Dry Run"
                else:
                    logger.warning(f"  [!] Missing usergroup ID for {spec.handle}")
                    stats.status = "Skipped"
                continue

            logger.info(f"Processing: {spec.handle} ({group_id})")
            try:
                self._reconcile_group(spec.handle, group_id, target_ids, users_by_id, stats)
                if self.dry_run:
                    stats.status = "Dry Run"
            except AuthenticationError:
                raise
            except Exception as e:
                logger.error(f"Usergroup {spec.handle} failed: {e!r}")
                stats.status = "Failed"
                stats.errors.append(describe(e))
            self.caller.pause(self.caller.settings.mutation_pause)

        self.disable_stale(known, populated, specs, summary)
        return summary

    @staticmethod
    def target_ids(spec: GroupSpec, users: Mapping[str, ResolvedUser]) -> Set[str]:
        ids = set()
        for email in spec.target_emails:
            user = users.get(email)
            if user and not user.deleted:
                ids.add(user.platform_id)
        return ids

    def _reconcile_group(self, handle: str, group_id: str, target_ids: Set[str],
                         users_by_id: Mapping[str, ResolvedUser], stats: GroupStats):
        current = self.caller.call(self.platform.get_group_members, group_id,
                                   description=f"usergroups.users.list({handle})")
        to_add = target_ids - current
        to_remove = current - target_ids
        logger.info(f"  Current: {len(current)}, target: {len(target_ids)}. "
                    f"Analysis: {len(to_add)} to add, {len(to_remove)} to remove.")

        if to_add:
            if self.dry_run:
                logger.info(f"  [DRY RUN] Would add: {sorted(to_add)}")
            else:
                self.caller.call(self.platform.invite_users_to_group, group_id, sorted(to_add),
                                 description=f"usergroups.users.update({handle})")
                logger.info(f"  [+] Added {len(to_add)} users to {handle}")
                self.caller.pause(self.caller.settings.mutation_pause)
            stats.added = len(to_add)

        removable = [uid for uid in sorted(to_remove) if not self._is_protected(uid, users_by_id, stats)]
        for uid in removable:
            if self.remove_user(handle, group_id, uid, stats):
                stats.removed += 1

    def _is_protected(self, uid: str, users_by_id: Mapping[str, ResolvedUser], stats: GroupStats) -> bool:
        if uid in self.protected_ids:
            logger.info(f"  [Skip] {uid} is in protected list.")
            stats.skipped += 1
            return True

        known = users_by_id.get(uid)
        if known and not known.is_removable:
            logger.info(f"  [Skip] {known.email} is a Bot/Workflow.")
            stats.skipped += 1
            return True

        try:
            info = self.caller.call(self.platform.get_user_info, uid, description=f"users.info({uid})")
        except AuthenticationError:
            raise
        except Exception as e:
            logger.error(f"  [X] Could not check {uid} before removal, keeping: {e!r}")
            stats.skipped += 1
            stats.errors.append(f"users.info {uid}: {describe(e)}")
            return True

        if info.is_protected:
            logger.info(f"  [Skip] Preserving bot/workflow {uid}.")
            stats.skipped += 1
            return True
        if info.deleted:
            logger.info(f"  Removing deleted user {uid}")
        return False

    def remove_user(self, handle: str, group_id: str, uid: str, stats: GroupStats) -> bool:
        if self.dry_run:
            logger.info(f"  [DRY RUN] Would remove user {uid} from {handle}")
            return True
        try:
            self.caller.call(self.platform.remove_user_from_group, group_id, uid,
                             description=f"remove {uid} from {handle}")
        except AuthenticationError:
            raise
        except Exception as e:
            logger.error(f"  [X] Failed to remove {uid} from {handle}: {describe(e)}")
            stats.errors.append(f"remove {uid}: {describe(e)}")
            return False
        logger.info(f"  [-] Removed user {uid} from {handle}")
        self.caller.pause(self.caller.settings.removal_spacing)
        return True

    def stale_handles(self, known: Mapping[str, PlatformGroup], populated: Iterable[str],
                      specs: List[GroupSpec]) -> List[str]:
        """Enabled usergroups that no longer have a resolved member (or are no longer wanted)."""
        populated = set(populated)
        targets = {s.handle: s.target_emails for s in specs}
        prefix = self.settings.prefix
        preserve = set(self.settings.preserve_handles)

        stale = []
        for handle, group in sorted(known.items()):
            if not group.enabled or handle in populated or handle in preserve:
                continue
            if prefix and not handle.startswith(prefix):
                continue
            if handle == self.alumni_handle and targets.get(handle):
                continue
            stale.append(handle)
        return stale

    def disable_stale(self, known: Mapping[str, PlatformGroup], populated: Iterable[str],
                      specs: List[GroupSpec], summary: RunSummary):
        stale = self.stale_handles(known, populated, specs)
        if not stale:
            return
        logger.info(f"Disabling {len(stale)} empty/inactive usergroups")
        for handle in stale:
            group = known[handle]
            if self.dry_run:
                logger.info(f"  [DRY RUN] Would disable {handle}")
                summary.disabled.append(handle)
                continue
            try:
                self.caller.call(self.platform.disable_group, group.id,
                                 description=f"usergroups.disable({handle})")
            except AuthenticationError:
                raise
            except Exception as e:
                logger.error(f"  [X] Failed to disable {handle}: {describe(e)}")
                summary.failures.append(f"disable {handle}: {describe(e)}")
                continue
            logger.info(f"  [-] Disabled {handle}")
            summary.disabled.append(handle)
            self.caller.pause(self.caller.settings.mutation_pause)
