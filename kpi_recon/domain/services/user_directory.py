"""
Actor resolution and user directory.

The session layer hands over whatever identity it has; `resolve_actor`
turns it into the audit string written to Approved By / Rejected By and
never fails for a missing identity.

`UserDirectory` looks up creator display information through an injected
`UserInfoCache` rather than a module-level dict, so tests and long-running
processes control expiry and invalidation explicitly.
"""
import logging
import time
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from kpi_recon.domain.entities import SessionIdentity, UserInfo
from kpi_recon.infrastructure.store import Eq, In, RecordStore

logger = logging.getLogger(__name__)

PLACEHOLDER_USERS = frozenset({"system", "unknown"})


def resolve_actor(identity: Optional[SessionIdentity], default: str = "admin") -> str:
    """
    Audit string for the acting user.

    Precedence: session email > alternate email > user id > `default`.
    """
    if identity is not None:
        for candidate in (identity.email, identity.alternate_email, identity.user_id):
            if candidate and str(candidate).strip():
                return str(candidate).strip()
    return default


class UserInfoCache:
    """
    Time-bounded cache of user display info keyed by id or email.

    Args:
        ttl_seconds: Entry lifetime
        clock: Monotonic time source (injectable for tests)
    """

    def __init__(self, ttl_seconds: float = 300, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[float, UserInfo]] = {}

    def get(self, key: str) -> Optional[UserInfo]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, info = entry
        if self._clock() - stored_at >= self.ttl_seconds:
            del self._entries[key]
            return None
        return info

    def put(self, key: str, info: UserInfo) -> None:
        self._entries[key] = (self._clock(), info)

    def invalidate(self, key: Optional[str] = None) -> None:
        """Drop one entry, or everything when no key is given."""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


class UserDirectory:
    """Resolves creator ids/emails to display information."""

    def __init__(self, users: RecordStore, cache: UserInfoCache):
        self.users = users
        self.cache = cache

    @staticmethod
    def _to_info(row: dict) -> UserInfo:
        email = row.get("email") or ""
        return UserInfo(
            name=row.get("full_name") or email or str(row.get("id", "")),
            email=email,
            phone=row.get("phone_1"),
            role=row.get("role"),
            division=row.get("division"),
        )

    async def lookup(self, identifier: Optional[str]) -> Optional[UserInfo]:
        """
        Display info for a user id or email.

        Placeholder creators ("System", "Unknown") and unknown users
        resolve to None.
        """
        if not identifier or identifier.strip().lower() in PLACEHOLDER_USERS:
            return None
        key = identifier.strip()
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        column = "email" if "@" in key else self.users.id_column
        rows = await self.users.select([Eq(column, key)], limit=1)
        if not rows:
            logger.debug(f"No user found for '{key}'")
            return None
        info = self._to_info(rows[0])
        self.cache.put(key, info)
        return info

    async def lookup_many(self, identifiers: Iterable[Optional[str]]) -> Dict[str, UserInfo]:
        """Resolve several identifiers, fetching uncached ones in two queries."""
        wanted: List[str] = []
        found: Dict[str, UserInfo] = {}
        for identifier in identifiers:
            if not identifier or identifier.strip().lower() in PLACEHOLDER_USERS:
                continue
            key = identifier.strip()
            cached = self.cache.get(key)
            if cached is not None:
                found[key] = cached
            elif key not in wanted:
                wanted.append(key)

        emails = [k for k in wanted if "@" in k]
        ids = [k for k in wanted if "@" not in k]
        if emails:
            for row in await self.users.select([In("email", emails)]):
                info = self._to_info(row)
                self.cache.put(row["email"], info)
                found[row["email"]] = info
        if ids:
            for row in await self.users.select([In(self.users.id_column, ids)]):
                info = self._to_info(row)
                key = str(row[self.users.id_column])
                self.cache.put(key, info)
                found[key] = info
        return found
