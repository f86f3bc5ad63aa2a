import os
import logging
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Optional, Tuple

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config.yaml"


@dataclass(frozen=True)
class RateLimitSettings:
    """Request pacing against the platform. All durations are in seconds."""
    lookup_batch_size: int = 40
    lookup_spacing: float = 0.3
    batch_pause: float = 1.5
    max_retries: int = 5
    base_backoff: float = 1.5
    create_pause: float = 0.2
    mutation_pause: float = 0.25
    removal_spacing: float = 0.1


@dataclass(frozen=True)
class RosterColumns:
    email: str = "Email 180"
    department: str = "Department"
    position: str = "Position"
    status: str = "Status"
    projects: str = "Projects"
    campus: str = "Campus"


@dataclass(frozen=True)
class RosterSettings:
    sheet_name: str = "Member Database"
    columns: RosterColumns = field(default_factory=RosterColumns)


@dataclass(frozen=True)
class GroupSettings:
    prefix: str = ""

    # Fixed handles
    actives: str = "actives"
    alumni: str = "alumni"
    president_vp: str = "p-vp"
    project_leaders: str = "project-leaders"
    leadership: str = "leadership"

    manage_leadership: bool = True
    departments_require_active: bool = True
    manage_project_groups: bool = True
    projects_require_active: bool = True
    project_separator: str = ","
    manage_campus_groups: bool = True
    campus_require_active: bool = True

    always_include: Tuple[str, ...] = ()
    preserve_handles: Tuple[str, ...] = ()
    protected_user_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class AlignerConfig:
    dry_run: bool = False
    notify_channel_id: Optional[str] = None
    roster: RosterSettings = field(default_factory=RosterSettings)
    groups: GroupSettings = field(default_factory=GroupSettings)
    rate_limits: RateLimitSettings = field(default_factory=RateLimitSettings)


@dataclass(frozen=True)
class Credentials:
    slack_bot_token: str
    google_service_account_file: str
    sheet_link: str


def _build(cls, data: Optional[Dict[str, Any]], section: str):
    """Instantiates a settings dataclass, rejecting keys it does not know."""
    data = data or {}
    if not isinstance(data, dict):
        raise ConfigError(f"'{section}' must be a mapping")
    known = {f.name: f for f in fields(cls)}
    unknown = set(data) - set(known)
    if unknown:
        raise ConfigError(f"Unknown keys in '{section}': {', '.join(sorted(unknown))}")
    values = {}
    for key, value in data.items():
        default = getattr(cls(), key)
        if isinstance(default, tuple):
            value = tuple(value or ())
        values[key] = value
    return cls(**values)


def config_from_dict(data: Optional[Dict[str, Any]]) -> AlignerConfig:
    data = data or {}
    settings = data.get('settings', {}) or {}
    roster = dict(data.get('roster', {}) or {})
    columns = _build(RosterColumns, roster.pop('columns', None), 'roster.columns')

    groups = _build(GroupSettings, data.get('groups'), 'groups')
    groups = replace(
        groups,
        always_include=tuple(e.strip().lower() for e in groups.always_include),
    )

    rate_limits = _build(RateLimitSettings, data.get('rate_limits'), 'rate_limits')
    if rate_limits.lookup_batch_size < 1:
        raise ConfigError("rate_limits.lookup_batch_size must be at least 1")
    if rate_limits.max_retries < 0:
        raise ConfigError("rate_limits.max_retries must not be negative")

    return AlignerConfig(
        dry_run=bool(settings.get('dry_run', False)),
        notify_channel_id=settings.get('notify_channel_id') or None,
        roster=replace(_build(RosterSettings, roster, 'roster'), columns=columns),
        groups=groups,
        rate_limits=rate_limits,
    )


def load_config(config_path: Optional[str] = None) -> AlignerConfig:
    """Loads config.yaml (if present) and applies environment overrides."""
    path = config_path or DEFAULT_CONFIG_PATH
    data: Dict[str, Any] = {}
    if os.path.exists(path):
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
        logger.debug(f"Loaded configuration from {path}")
    elif config_path:
        raise ConfigError(f"Config file not found: {config_path}")
    else:
        logger.info(f"No {DEFAULT_CONFIG_PATH} found, using built-in defaults.")

    config = config_from_dict(data)

    # Overrides from Env Vars (useful for CI)
    if os.getenv('DRY_RUN'):
        config = replace(config, dry_run=os.getenv('DRY_RUN').lower() == 'true')
    return config


def load_credentials() -> Credentials:
    slack_token = os.getenv('SLACK_BOT_TOKEN')
    sa_file = os.getenv('GOOGLE_SERVICE_ACCOUNT_FILE', 'credentials.json')
    sheet_link = os.getenv('GSHEET_MEMBERS_LINK')

    missing = [name for name, value in (
        ('SLACK_BOT_TOKEN', slack_token),
        ('GSHEET_MEMBERS_LINK', sheet_link),
    ) if not value]
    if missing:
        raise ConfigError(f"Missing environment variables: {', '.join(missing)}")
    return Credentials(slack_token, sa_file, sheet_link)
