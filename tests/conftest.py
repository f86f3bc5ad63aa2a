from dataclasses import replace
from typing import Dict, List, Set

import pytest
from slack_sdk.errors import SlackApiError
from slack_sdk.web import SlackResponse

from roster_aligner.config import AlignerConfig, GroupSettings, RateLimitSettings
from roster_aligner.errors import NameConflictError, PlatformError
from roster_aligner.models import Found, MemberRecord, NotFound, PlatformGroup, PlatformUser, UserInfo
from roster_aligner.rate_limit import RateLimitedCaller

MUTATING_CALLS = {'create_group', 'enable_group', 'disable_group', 'invite_users_to_group', 'remove_user_from_group'}


class FakePlatform:
    """In-memory usergroup platform that records every call."""

    def __init__(self):
        self.users: Dict[str, PlatformUser] = {}      # email -> user
        self.user_info: Dict[str, UserInfo] = {}      # id -> info
        self.groups: Dict[str, PlatformGroup] = {}    # handle -> group
        self.members: Dict[str, Set[str]] = {}        # group id -> user ids
        self.calls: List[tuple] = []
        self.lookup_results: Dict[str, list] = {}     # email -> queued results
        self.fail_removal: Set[str] = set()
        self.fail_info: Set[str] = set()
        self.conflict_on_create: Set[str] = set()
        self._next_id = 1

    def add_user(self, email, uid, **flags):
        self.users[email] = PlatformUser(id=uid, **flags)
        self.user_info[uid] = UserInfo(id=uid, is_bot=flags.get('is_bot', False),
                                       is_workflow_bot=flags.get('is_workflow_bot', False),
                                       deleted=flags.get('deleted', False))

    def add_bot(self, uid, workflow=False):
        self.user_info[uid] = UserInfo(id=uid, is_bot=not workflow, is_workflow_bot=workflow)

    def add_group(self, handle, members=(), enabled=True):
        gid = f"S{self._next_id:04d}"
        self._next_id += 1
        self.groups[handle] = PlatformGroup(handle, gid, enabled)
        self.members[gid] = set(members)
        return gid

    def mutations(self):
        return [c for c in self.calls if c[0] in MUTATING_CALLS]

    def members_of(self, handle):
        return self.members[self.groups[handle].id]

    # platform interface

    def lookup_user_by_email(self, email):
        self.calls.append(('lookup_user_by_email', email))
        queued = self.lookup_results.get(email)
        if queued:
            return queued.pop(0)
        if email in self.users:
            return Found(self.users[email])
        return NotFound()

    def list_groups(self, include_disabled=True):
        self.calls.append(('list_groups', include_disabled))
        return [g for g in self.groups.values() if include_disabled or g.enabled]

    def create_group(self, name, handle):
        self.calls.append(('create_group', name, handle))
        if handle in self.conflict_on_create:
            raise NameConflictError(f"usergroups.create({handle})", 'name_already_exists')
        return self.add_group(handle)

    def enable_group(self, group_id):
        self.calls.append(('enable_group', group_id))
        self._set_enabled(group_id, True)

    def disable_group(self, group_id):
        self.calls.append(('disable_group', group_id))
        self._set_enabled(group_id, False)

    def _set_enabled(self, group_id, enabled):
        for handle, g in self.groups.items():
            if g.id == group_id:
                self.groups[handle] = PlatformGroup(g.handle, g.id, enabled)

    def get_group_members(self, group_id):
        self.calls.append(('get_group_members', group_id))
        return set(self.members[group_id])

    def invite_users_to_group(self, group_id, user_ids):
        self.calls.append(('invite_users_to_group', group_id, list(user_ids)))
        self.members[group_id] |= set(user_ids)

    def remove_user_from_group(self, group_id, user_id):
        self.calls.append(('remove_user_from_group', group_id, user_id))
        if user_id in self.fail_removal:
            raise PlatformError(f"usergroups.users.update({group_id})", 'permission_denied')
        self.members[group_id].discard(user_id)

    def get_user_info(self, user_id):
        self.calls.append(('get_user_info', user_id))
        if user_id in self.fail_info:
            raise PlatformError(f"users.info({user_id})", 'user_not_found')
        return self.user_info.get(user_id, UserInfo(id=user_id))

    def post_message(self, channel_id, blocks, text=""):
        self.calls.append(('post_message', channel_id))


def slack_error(error, headers=None, status_code=200):
    response = SlackResponse(
        client=None, http_verb="POST", api_url="https://slack.com/api/test",
        req_args={}, data={"ok": False, "error": error},
        headers=headers or {}, status_code=status_code,
    )
    return SlackApiError(f"The request to the Slack API failed. ({error})", response)


class FakeRoster:
    def __init__(self, members):
        self.members = list(members)

    def read_members(self):
        return list(self.members)


def member(email, department="", position="", status="Active", projects="", campus=""):
    return MemberRecord(email=email, department=department, position=position,
                        status=status, projects=projects, campus=campus)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def rate_limits():
    return RateLimitSettings(lookup_batch_size=2, lookup_spacing=0.3, batch_pause=1.5,
                             max_retries=3, base_backoff=1.5, create_pause=0.2,
                             mutation_pause=0.25, removal_spacing=0.1)


@pytest.fixture
def caller(rate_limits, sleeps):
    return RateLimitedCaller(rate_limits, sleep=sleeps.append)


@pytest.fixture
def group_settings():
    return GroupSettings()


@pytest.fixture
def config(rate_limits, group_settings):
    return AlignerConfig(groups=group_settings, rate_limits=rate_limits)


@pytest.fixture
def dry_config(config):
    return replace(config, dry_run=True)


@pytest.fixture
def platform():
    return FakePlatform()
