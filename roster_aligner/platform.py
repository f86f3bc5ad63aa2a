import logging
from typing import Dict, Iterable, List, Optional, Set

from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError

from .errors import AuthenticationError, NameConflictError, PlatformError, RateLimitedError
from .models import AuthError, Found, LookupResult, NotFound, PlatformGroup, PlatformUser, RateLimited, UserInfo

logger = logging.getLogger(__name__)

# Token is bad, or lacks the scopes or workspace access the run needs. Fatal.
AUTH_ERRORS = {
    'invalid_auth', 'not_authed', 'account_inactive', 'token_revoked', 'token_expired',
    'missing_scope', 'not_allowed_token_type', 'no_permission', 'ekm_access_denied',
    'team_access_not_granted',
}
NAME_CONFLICT_ERRORS = {'name_already_exists', 'handle_already_exists'}


def _error_code(e: SlackApiError) -> str:
    try:
        return e.response.get('error') or 'unknown_error'
    except AttributeError:
        return 'unknown_error'


def _retry_after(e: SlackApiError) -> Optional[float]:
    headers = getattr(e.response, 'headers', None) or {}
    for key, value in headers.items():
        if key.lower() == 'retry-after':
            try:
                return float(value)
            except (TypeError, ValueError):
                return None
    return None


def translate_error(e: SlackApiError, operation: str) -> Exception:
    """Maps a SlackApiError onto the aligner's error taxonomy."""
    error = _error_code(e)
    if error == 'ratelimited':
        return RateLimitedError(operation, _retry_after(e))
    if error in AUTH_ERRORS:
        return AuthenticationError(error, operation)
    if error in NAME_CONFLICT_ERRORS:
        return NameConflictError(operation, error)
    return PlatformError(operation, error)


class SlackGroupPlatform:
    """Slack usergroups as the group platform."""

    def __init__(self, token: str = "", client: Optional[WebClient] = None):
        self.client = client or WebClient(token=token)
        # Cache: { usergroup id: member ids } as last read or written by us
        self.member_cache: Dict[str, Set[str]] = {}

    def lookup_user_by_email(self, email: str) -> LookupResult:
        try:
            response = self.client.users_lookupByEmail(email=email)
        except SlackApiError as e:
            error = _error_code(e)
            if error == 'users_not_found':
                return NotFound()
            if error == 'ratelimited':
                return RateLimited(_retry_after(e))
            if error in AUTH_ERRORS:
                return AuthError(error)
            raise PlatformError(f"users.lookupByEmail({email})", error)

        user = response['user']
        return Found(PlatformUser(
            id=user['id'],
            deleted=bool(user.get('deleted', False)),
            is_bot=bool(user.get('is_bot', False)),
            is_workflow_bot=bool(user.get('is_workflow_bot', False)),
        ))

    def list_groups(self, include_disabled: bool = True) -> List[PlatformGroup]:
        try:
            response = self.client.usergroups_list(include_disabled=include_disabled)
        except SlackApiError as e:
            raise translate_error(e, "usergroups.list")

        groups = []
        for ug in response.get('usergroups') or []:
            if ug.get('handle') and ug.get('id'):
                groups.append(PlatformGroup(
                    handle=ug['handle'],
                    id=ug['id'],
                    enabled=not ug.get('date_delete'),
                ))
        return groups

    def create_group(self, name: str, handle: str) -> str:
        try:
            response = self.client.usergroups_create(name=name, handle=handle)
        except SlackApiError as e:
            raise translate_error(e, f"usergroups.create({handle})")
        return response['usergroup']['id']

    def enable_group(self, group_id: str):
        self._toggle(self.client.usergroups_enable, group_id, 'already_enabled', "usergroups.enable")

    def disable_group(self, group_id: str):
        self._toggle(self.client.usergroups_disable, group_id, 'already_disabled', "usergroups.disable")

    def _toggle(self, method, group_id: str, harmless: str, operation: str):
        try:
            method(usergroup=group_id)
        except SlackApiError as e:
            if _error_code(e) != harmless:
                raise translate_error(e, f"{operation}({group_id})")

    def get_group_members(self, group_id: str) -> Set[str]:
        try:
            response = self.client.usergroups_users_list(usergroup=group_id, include_disabled=True)
        except SlackApiError as e:
            raise translate_error(e, f"usergroups.users.list({group_id})")
        members = set(response.get('users') or [])
        self.member_cache[group_id] = set(members)
        return members

    def invite_users_to_group(self, group_id: str, user_ids: Iterable[str]):
        current = self._current_members(group_id)
        self._update_members(group_id, current | set(user_ids))

    def remove_user_from_group(self, group_id: str, user_id: str):
        current = self._current_members(group_id)
        if user_id not in current:
            return
        remaining = current - {user_id}
        if not remaining:
            # Slack rejects an empty member list; an empty group gets disabled instead.
            raise PlatformError(f"usergroups.users.update({group_id})", "cannot remove last member")
        self._update_members(group_id, remaining)

    def _current_members(self, group_id: str) -> Set[str]:
        if group_id not in self.member_cache:
            return self.get_group_members(group_id)
        return set(self.member_cache[group_id])

    def _update_members(self, group_id: str, user_ids: Set[str]):
        try:
            self.client.usergroups_users_update(usergroup=group_id, users=",".join(sorted(user_ids)))
        except SlackApiError as e:
            raise translate_error(e, f"usergroups.users.update({group_id})")
        self.member_cache[group_id] = set(user_ids)

    def get_user_info(self, user_id: str) -> UserInfo:
        try:
            response = self.client.users_info(user=user_id)
        except SlackApiError as e:
            raise translate_error(e, f"users.info({user_id})")
        user = response['user']
        return UserInfo(
            id=user.get('id', user_id),
            is_bot=bool(user.get('is_bot', False)),
            is_workflow_bot=bool(user.get('is_workflow_bot', False)),
            deleted=bool(user.get('deleted', False)),
        )

    def post_message(self, channel_id: str, blocks: List[dict], text: str = ""):
        try:
            self.client.chat_postMessage(channel=channel_id, blocks=blocks, text=text)
        except SlackApiError as e:
            raise translate_error(e, f"chat.postMessage({channel_id})")
