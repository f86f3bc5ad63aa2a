"""Desired usergroup membership, computed from roster rows.

Membership is decided by an ordered list of rules. Each rule maps a member to
the handles it belongs to; an exclusive rule that matches stops evaluation for
that member. The alumni rule is exclusive and always first, so an alumnus can
never land in any group other than the alumni group.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .config import GroupSettings
from .handles import display_name, with_prefix
from .models import GroupSpec, MemberRecord

logger = logging.getLogger(__name__)

PROJECT_LEADER = "Project Leader"
PRESIDENCY = "Presidency"
PRESIDENT_POSITIONS = ("President", "Vice-President")


# --- RULES ---

@dataclass(frozen=True)
class FixedRule:
    """Adds every member matching ``predicate`` to one fixed handle."""
    handle: str
    predicate: Callable[[MemberRecord], bool]
    exclusive: bool = False

    def __call__(self, member: MemberRecord) -> Set[str]:
        return {self.handle} if self.predicate(member) else set()


@dataclass(frozen=True)
class AttributeRule:
    """One group per distinct slugified value of a roster attribute."""
    attribute: str
    prefix: str = ""
    separator: Optional[str] = None
    require_active: bool = True
    exclusive: bool = False

    def __call__(self, member: MemberRecord) -> Set[str]:
        if self.require_active and not member.is_active:
            return set()
        raw = getattr(member, self.attribute) or ""
        values = raw.split(self.separator) if self.separator else [raw]
        handles = set()
        for value in values:
            value = value.strip()
            if not value:
                continue
            handle = with_prefix(self.prefix, value)
            if handle:
                handles.add(handle)
        return handles


def is_president_vp(member: MemberRecord) -> bool:
    return member.department == PRESIDENCY or member.position in PRESIDENT_POSITIONS


def is_leadership(member: MemberRecord) -> bool:
    return (is_president_vp(member)
            or member.position.startswith("Head of")
            or member.position == "Associate Director")


# --- BUILDER ---

class TargetSetBuilder:
    def __init__(self, settings: GroupSettings):
        self.settings = settings
        prefix = settings.prefix

        self.alumni_handle = with_prefix(prefix, settings.alumni)
        self.actives_handle = with_prefix(prefix, settings.actives)
        self.pvp_handle = with_prefix(prefix, settings.president_vp)
        self.project_leaders_handle = with_prefix(prefix, settings.project_leaders)
        self.leadership_handle = with_prefix(prefix, settings.leadership)

        # Always present, even when empty, so they get disabled rather than forgotten.
        self.fixed_handles = [
            self.actives_handle, self.alumni_handle,
            self.pvp_handle, self.project_leaders_handle,
        ]
        if settings.manage_leadership:
            self.fixed_handles.append(self.leadership_handle)

        self.rules = self._default_rules()

    def _default_rules(self) -> List[Callable[[MemberRecord], Set[str]]]:
        s = self.settings
        rules = [
            FixedRule(self.alumni_handle, lambda m: m.is_alumni, exclusive=True),
            FixedRule(self.actives_handle, lambda m: True),
            AttributeRule('department', s.prefix, require_active=s.departments_require_active),
            FixedRule(self.project_leaders_handle, lambda m: m.position == PROJECT_LEADER),
            FixedRule(self.pvp_handle, is_president_vp),
        ]
        if s.manage_leadership:
            rules.append(FixedRule(self.leadership_handle, is_leadership))
        if s.manage_project_groups:
            rules.append(AttributeRule('projects', s.prefix, separator=s.project_separator,
                                       require_active=s.projects_require_active))
        if s.manage_campus_groups:
            rules.append(AttributeRule('campus', s.prefix, require_active=s.campus_require_active))
        return rules

    def handles_for(self, member: MemberRecord) -> Set[str]:
        handles: Set[str] = set()
        for rule in self.rules:
            matched = rule(member)
            handles |= matched
            if matched and getattr(rule, 'exclusive', False):
                break
        if not member.is_alumni:
            handles.discard(self.alumni_handle)
        return handles

    def build(self, members: Iterable[MemberRecord]) -> Dict[str, Set[str]]:
        """Returns ``handle -> target emails``; handles appear in first-seen order."""
        groups: Dict[str, Set[str]] = {h: set() for h in self.fixed_handles}

        for member in members:
            if not member.email:
                continue
            for handle in sorted(self.handles_for(member)):
                groups.setdefault(handle, set()).add(member.email)

        administrative = [h for h in self.fixed_handles if h != self.alumni_handle]
        for email in self.settings.always_include:
            for handle in administrative:
                groups[handle].add(email)

        sizes = {h: len(e) for h, e in groups.items()}
        logger.info(f"Group sizes (pre-resolve): {sizes}")
        return groups

    def build_specs(self, members: Iterable[MemberRecord]) -> List[GroupSpec]:
        """Like ``build`` but as GroupSpecs, with the actives group first."""
        groups = self.build(members)
        ordered = [self.actives_handle] + [h for h in groups if h != self.actives_handle]
        return [
            GroupSpec(handle=h, display_name=display_name(h, self.settings.prefix), target_emails=groups[h])
            for h in ordered
        ]


def prioritized_emails(members: Sequence[MemberRecord], groups: Dict[str, Set[str]]) -> Tuple[List[str], Set[str]]:
    """Splits every targeted email into (active members in roster order, everyone else)."""
    needed = set().union(*groups.values()) if groups else set()
    priority: List[str] = []
    seen: Set[str] = set()
    for member in members:
        if member.is_active and member.email in needed and member.email not in seen:
            priority.append(member.email)
            seen.add(member.email)
    return priority, needed - seen
