from unittest.mock import MagicMock

import pytest

from roster_aligner.errors import AuthenticationError, NameConflictError, PlatformError, RateLimitedError
from roster_aligner.models import AuthError, Found, NotFound, PlatformGroup, RateLimited
from roster_aligner.platform import SlackGroupPlatform

from conftest import slack_error


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def slack(client):
    return SlackGroupPlatform(client=client)


# ============================================
# Lookup
# ============================================

def test_lookup_found(slack, client):
    client.users_lookupByEmail.return_value = {
        "ok": True, "user": {"id": "U1", "deleted": False, "is_bot": False}}
    result = slack.lookup_user_by_email("a@x.com")
    assert isinstance(result, Found)
    assert result.user.id == "U1"
    client.users_lookupByEmail.assert_called_once_with(email="a@x.com")


@pytest.mark.parametrize("error, expected", [
    ("users_not_found", NotFound()),
    ("invalid_auth", AuthError("invalid_auth")),
    ("account_inactive", AuthError("account_inactive")),
    ("missing_scope", AuthError("missing_scope")),
    ("not_allowed_token_type", AuthError("not_allowed_token_type")),
    ("team_access_not_granted", AuthError("team_access_not_granted")),
])
def test_lookup_tagged_results(slack, client, error, expected):
    client.users_lookupByEmail.side_effect = slack_error(error)
    assert slack.lookup_user_by_email("a@x.com") == expected


def test_lookup_rate_limited_reads_retry_after(slack, client):
    client.users_lookupByEmail.side_effect = slack_error("ratelimited", {"Retry-After": "7"}, 429)
    assert slack.lookup_user_by_email("a@x.com") == RateLimited(7.0)


def test_lookup_unexpected_error_raises(slack, client):
    client.users_lookupByEmail.side_effect = slack_error("fatal_error")
    with pytest.raises(PlatformError):
        slack.lookup_user_by_email("a@x.com")


# ============================================
# Usergroups
# ============================================

def test_list_groups_marks_disabled(slack, client):
    client.usergroups_list.return_value = {"ok": True, "usergroups": [
        {"id": "S1", "handle": "actives", "date_delete": 0},
        {"id": "S2", "handle": "old", "date_delete": 1700000000},
        {"id": "S3"},
    ]}
    assert slack.list_groups() == [PlatformGroup("actives", "S1", True), PlatformGroup("old", "S2", False)]
    client.usergroups_list.assert_called_once_with(include_disabled=True)


def test_create_group(slack, client):
    client.usergroups_create.return_value = {"ok": True, "usergroup": {"id": "S9"}}
    assert slack.create_group("Green Energy", "green-energy") == "S9"
    client.usergroups_create.assert_called_once_with(name="Green Energy", handle="green-energy")


def test_create_group_name_conflict(slack, client):
    client.usergroups_create.side_effect = slack_error("name_already_exists")
    with pytest.raises(NameConflictError):
        slack.create_group("Events", "events")


def test_enable_disable_tolerate_no_op_errors(slack, client):
    client.usergroups_enable.side_effect = slack_error("already_enabled")
    client.usergroups_disable.side_effect = slack_error("already_disabled")
    slack.enable_group("S1")
    slack.disable_group("S1")


def test_disable_rate_limited_raises(slack, client):
    client.usergroups_disable.side_effect = slack_error("ratelimited", {"retry-after": "3"}, 429)
    with pytest.raises(RateLimitedError) as exc:
        slack.disable_group("S1")
    assert exc.value.retry_after == 3.0


def test_auth_error_on_mutation_is_fatal(slack, client):
    client.usergroups_enable.side_effect = slack_error("token_revoked")
    with pytest.raises(AuthenticationError):
        slack.enable_group("S1")


@pytest.mark.parametrize("error", ["missing_scope", "no_permission", "ekm_access_denied"])
def test_authorization_error_on_mutation_is_fatal(slack, client, error):
    client.usergroups_disable.side_effect = slack_error(error)
    with pytest.raises(AuthenticationError) as exc:
        slack.disable_group("S1")
    assert exc.value.error == error


def test_invite_and_remove_update_full_list(slack, client):
    client.usergroups_users_list.return_value = {"ok": True, "users": ["U1", "U2"]}

    assert slack.get_group_members("S1") == {"U1", "U2"}
    slack.invite_users_to_group("S1", ["U3"])
    client.usergroups_users_update.assert_called_with(usergroup="S1", users="U1,U2,U3")

    slack.remove_user_from_group("S1", "U1")
    client.usergroups_users_update.assert_called_with(usergroup="S1", users="U2,U3")
    assert client.usergroups_users_list.call_count == 1


def test_remove_last_member_is_refused(slack, client):
    client.usergroups_users_list.return_value = {"ok": True, "users": ["U1"]}
    with pytest.raises(PlatformError):
        slack.remove_user_from_group("S1", "U1")
    client.usergroups_users_update.assert_not_called()


def test_failed_update_keeps_cache(slack, client):
    client.usergroups_users_list.return_value = {"ok": True, "users": ["U1", "U2"]}
    client.usergroups_users_update.side_effect = slack_error("permission_denied")
    with pytest.raises(PlatformError):
        slack.remove_user_from_group("S1", "U1")
    assert slack.member_cache["S1"] == {"U1", "U2"}


def test_get_user_info(slack, client):
    client.users_info.return_value = {"ok": True, "user": {"id": "B1", "is_bot": True}}
    info = slack.get_user_info("B1")
    assert info.is_protected
    assert not info.deleted
