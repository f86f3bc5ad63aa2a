from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Union


# --- ROSTER ---

@dataclass(frozen=True)
class MemberRecord:
    """One roster row. Email is normalized (trimmed, lowercase) by the roster source."""
    email: str
    department: str = ""
    position: str = ""
    status: str = ""
    projects: str = ""
    campus: str = ""

    @property
    def is_alumni(self) -> bool:
        return self.status.lower() == "alumni"

    @property
    def is_active(self) -> bool:
        return self.status.lower() == "active"


@dataclass
class GroupSpec:
    handle: str
    display_name: str
    target_emails: Set[str] = field(default_factory=set)


# --- PLATFORM ---

@dataclass(frozen=True)
class PlatformUser:
    id: str
    deleted: bool = False
    is_bot: bool = False
    is_workflow_bot: bool = False


@dataclass(frozen=True)
class UserInfo:
    id: str
    is_bot: bool = False
    is_workflow_bot: bool = False
    deleted: bool = False

    @property
    def is_protected(self) -> bool:
        return self.is_bot or self.is_workflow_bot


@dataclass(frozen=True)
class PlatformGroup:
    handle: str
    id: str
    enabled: bool = True


@dataclass(frozen=True)
class ResolvedUser:
    email: str
    platform_id: str
    is_removable: bool = True
    deleted: bool = False


# Outcomes of an email lookup. Expected conditions are values, not exceptions.

@dataclass(frozen=True)
class Found:
    user: PlatformUser


@dataclass(frozen=True)
class NotFound:
    pass


@dataclass(frozen=True)
class RateLimited:
    retry_after: Optional[float] = None


@dataclass(frozen=True)
class AuthError:
    error: str


LookupResult = Union[Found, NotFound, RateLimited, AuthError]


# --- REPORTING ---

@dataclass
class GroupStats:
    handle: str
    added: int = 0
    removed: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)
    status: str = "Success"


@dataclass
class RunSummary:
    dry_run: bool = False
    created: List[str] = field(default_factory=list)
    enabled: List[str] = field(default_factory=list)
    disabled: List[str] = field(default_factory=list)
    unresolved: Dict[str, str] = field(default_factory=dict)
    group_stats: List[GroupStats] = field(default_factory=list)
    failures: List[str] = field(default_factory=list)

    @property
    def added(self) -> int:
        return sum(s.added for s in self.group_stats)

    @property
    def removed(self) -> int:
        return sum(s.removed for s in self.group_stats)

    @property
    def ok(self) -> bool:
        return not self.failures and all(s.status != "Failed" and not s.errors for s in self.group_stats)
