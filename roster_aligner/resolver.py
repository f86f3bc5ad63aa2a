import logging
from typing import Dict, Iterable, List, Sequence

from .errors import AuthenticationError, PlatformError, RetriesExhaustedError
from .models import AuthError, Found, NotFound, ResolvedUser
from .rate_limit import RateLimitedCaller

logger = logging.getLogger(__name__)


class IdentityResolver:
    """Resolves roster emails to platform users, one paced lookup at a time.

    Results are cached for the lifetime of the resolver (one run). Emails that
    cannot be resolved are collected in ``unresolved`` with the reason.
    """

    def __init__(self, platform, caller: RateLimitedCaller, protected_user_ids: Iterable[str] = ()):
        self.platform = platform
        self.caller = caller
        self.protected_user_ids = set(protected_user_ids)
        self.resolved: Dict[str, ResolvedUser] = {}
        self.unresolved: Dict[str, str] = {}

    @staticmethod
    def order(priority: Sequence[str], others: Iterable[str]) -> List[str]:
        """Priority emails first (deduplicated, in order), then the rest sorted."""
        ordered = list(dict.fromkeys(e for e in priority if e))
        seen = set(ordered)
        ordered.extend(sorted(e for e in set(others) if e and e not in seen))
        return ordered

    def resolve(self, priority: Sequence[str], others: Iterable[str] = ()) -> Dict[str, ResolvedUser]:
        ordered = [e for e in self.order(priority, others)
                   if e not in self.resolved and e not in self.unresolved]
        logger.info(f"Will resolve {len(ordered)} emails ({len(priority)} prioritized)")

        for n, batch in enumerate(self.caller.batches(ordered), start=1):
            logger.info(f"Resolving batch {n}: {len(batch)} users")
            for email in batch:
                self._resolve_one(email)
                self.caller.space()

        if self.unresolved:
            logger.warning(f"Could not resolve {len(self.unresolved)} emails: "
                           f"{', '.join(sorted(self.unresolved))}")
        logger.info(f"Resolved {len(self.resolved)} users.")
        return dict(self.resolved)

    def _resolve_one(self, email: str):
        try:
            result = self.caller.call(self.platform.lookup_user_by_email, email,
                                      description=f"users.lookupByEmail for {email}")
        except RetriesExhaustedError:
            self.unresolved[email] = "rate_limited"
            return
        except PlatformError as e:
            logger.warning(f"  [!] Lookup error for {email}: {e.error}")
            self.unresolved[email] = e.error
            return

        if isinstance(result, Found):
            user = result.user
            self.resolved[email] = ResolvedUser(
                email=email,
                platform_id=user.id,
                is_removable=not (user.is_bot or user.is_workflow_bot or user.id in self.protected_user_ids),
                deleted=user.deleted,
            )
        elif isinstance(result, NotFound):
            logger.warning(f"  [!] No Slack account found for {email}")
            self.unresolved[email] = "not_found"
        elif isinstance(result, AuthError):
            raise AuthenticationError(result.error, "users.lookupByEmail")
        else:
            self.unresolved[email] = f"unexpected lookup result {result!r}"
