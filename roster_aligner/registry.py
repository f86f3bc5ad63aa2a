import logging
from typing import Dict, Iterable, List

from .handles import display_name
from .errors import AuthenticationError, NameConflictError, describe
from .models import PlatformGroup
from .rate_limit import RateLimitedCaller

logger = logging.getLogger(__name__)


class GroupRegistry:
    """Makes sure every desired usergroup exists and is enabled."""

    def __init__(self, platform, caller: RateLimitedCaller, prefix: str = "", dry_run: bool = False):
        self.platform = platform
        self.caller = caller
        self.prefix = prefix
        self.dry_run = dry_run
        self.known: Dict[str, PlatformGroup] = {}
        self.created: List[str] = []
        self.enabled: List[str] = []
        self.failures: List[str] = []

    def refresh(self) -> Dict[str, PlatformGroup]:
        groups = self.caller.call(self.platform.list_groups, include_disabled=True,
                                  description="usergroups.list")
        self.known = {g.handle: g for g in groups}
        return self.known

    def ensure(self, handles: Iterable[str]) -> Dict[str, str]:
        """Returns ``handle -> group id`` for every handle that exists (or now exists)."""
        self.refresh()

        handle_to_id: Dict[str, str] = {}
        for handle in handles:
            existing = self.known.get(handle)
            if existing:
                handle_to_id[handle] = existing.id
                if not existing.enabled:
                    self._enable(existing)
                continue

            group_id = self._create(handle)
            if group_id:
                handle_to_id[handle] = group_id
        return handle_to_id

    def _enable(self, group: PlatformGroup):
        if self.dry_run:
            logger.info(f"  [DRY RUN] Would re-enable usergroup {group.handle}")
            return
        try:
            self.caller.call(self.platform.enable_group, group.id,
                             description=f"usergroups.enable({group.handle})")
        except AuthenticationError:
            raise
        except Exception as e:
            logger.error(f"  [X] Failed to enable {group.handle}: {e!r}")
            self.failures.append(f"enable {group.handle}: {describe(e)}")
            return
        logger.info(f"  [+] Re-enabled usergroup {group.handle}")
        self.known[group.handle] = PlatformGroup(group.handle, group.id, enabled=True)
        self.enabled.append(group.handle)

    def _create(self, handle: str):
        name = display_name(handle, self.prefix)
        if self.dry_run:
            logger.info(f"  [DRY RUN] Would create usergroup {handle} ('{name}')")
            return None

        try:
            group_id = self.caller.call(self.platform.create_group, name, handle,
                                        description=f"usergroups.create({handle})")
        except NameConflictError:
            logger.warning(f"  [!] Usergroup {handle} already exists (name conflict). Proceeding.")
            group_id = self._find_after_conflict(handle)
        except AuthenticationError:
            raise
        except Exception as e:
            logger.error(f"  [X] Failed to create usergroup {handle}: {e!r}")
            self.failures.append(f"create {handle}: {describe(e)}")
            group_id = None
        else:
            logger.info(f"  [+] Created usergroup {handle}")
            self.known[handle] = PlatformGroup(handle, group_id, enabled=True)
            self.created.append(handle)

        self.caller.pause(self.caller.settings.create_pause)
        return group_id

    def _find_after_conflict(self, handle: str):
        try:
            self.refresh()
        except AuthenticationError:
            raise
        except Exception as e:
            logger.warning(f"  [!] Could not re-list usergroups after conflict on {handle}: {e!r}")
            self.failures.append(f"create {handle}: {describe(e)}")
            return None
        group = self.known.get(handle)
        if group is None:
            # The clash was on the display name of a group with another handle.
            logger.error(f"  [X] Usergroup name for {handle} is taken by another handle; not reconciled.")
            self.failures.append(f"create {handle}: name taken by another usergroup")
            return None
        if not group.enabled:
            self._enable(group)
        return group.id
