"""
Identity Cache
==============

Mirrors the resolved user snapshot into local storage so a restart can
optimistically show the last identity before the strict server-side check
completes, and tracks the client-side session expiry used when the user
declines "remember me".
"""

import logging
import time
from typing import List, Optional

from pydantic import ValidationError as PydanticValidationError

from blueprint.core.storage import KeyValueStorage
from blueprint.gateway.auth import SESSION_KEY_PREFIX
from blueprint.schemas.profile import UserSnapshot

logger = logging.getLogger(__name__)

# Session tier keys
IS_ADMIN_KEY = "isAdmin"
USER_ID_KEY = "userId"
USER_EMAIL_KEY = "userEmail"
USER_ROLE_KEY = "userRole"
USER_STATUS_KEY = "userStatus"
USER_FIRST_NAME_KEY = "userFirstName"
USER_LAST_NAME_KEY = "userLastName"

IDENTITY_KEYS = (
    IS_ADMIN_KEY,
    USER_ID_KEY,
    USER_EMAIL_KEY,
    USER_ROLE_KEY,
    USER_STATUS_KEY,
    USER_FIRST_NAME_KEY,
    USER_LAST_NAME_KEY,
)

# Local tier keys
SESSION_EXPIRY_KEY = "sessionExpiry"


class IdentityCache:
    """
    Two-tier identity persistence.

    Args:
        session_storage: Tier holding the identity snapshot
        local_storage: Tier holding the session expiry and backend session artifacts
        clock: Returns the current epoch time in seconds
    """

    def __init__(
        self,
        session_storage: KeyValueStorage,
        local_storage: KeyValueStorage,
        clock=time.time,
    ):
        self.session_storage = session_storage
        self.local_storage = local_storage
        self._clock = clock

    def save(self, user: UserSnapshot) -> None:
        values = {
            IS_ADMIN_KEY: "true",
            USER_ID_KEY: user.id,
            USER_EMAIL_KEY: user.email,
            USER_ROLE_KEY: user.role,
            USER_STATUS_KEY: user.status,
            USER_FIRST_NAME_KEY: user.first_name,
            USER_LAST_NAME_KEY: user.last_name,
        }
        for key, value in values.items():
            if value is None:
                self.session_storage.remove_item(key)
            else:
                self.session_storage.set_item(key, value)

    def load(self) -> Optional[UserSnapshot]:
        """Cached identity, or None when nothing usable is stored."""
        if self.session_storage.get_item(IS_ADMIN_KEY) is None:
            return None
        user_id = self.session_storage.get_item(USER_ID_KEY)
        if not user_id:
            return None
        try:
            return UserSnapshot(
                id=user_id,
                email=self.session_storage.get_item(USER_EMAIL_KEY),
                role=self.session_storage.get_item(USER_ROLE_KEY) or "user",
                status=self.session_storage.get_item(USER_STATUS_KEY) or "approved",
                first_name=self.session_storage.get_item(USER_FIRST_NAME_KEY),
                last_name=self.session_storage.get_item(USER_LAST_NAME_KEY),
            )
        except PydanticValidationError as e:
            logger.warning(f"Discarding malformed cached identity: {e}")
            return None

    @property
    def email(self) -> Optional[str]:
        return self.session_storage.get_item(USER_EMAIL_KEY)

    def clear(self, aggressive: bool = False) -> List[str]:
        """
        Remove cached identity entries.

        With ``aggressive`` also removes the session expiry and every backend
        session artifact from the local tier.

        Returns:
            Keys removed from the local tier
        """
        for key in IDENTITY_KEYS:
            self.session_storage.remove_item(key)
        if not aggressive:
            return []
        removed: List[str] = []
        if self.local_storage.get_item(SESSION_EXPIRY_KEY) is not None:
            self.local_storage.remove_item(SESSION_EXPIRY_KEY)
            removed.append(SESSION_EXPIRY_KEY)
        removed.extend(self.local_storage.remove_prefixed(SESSION_KEY_PREFIX))
        if removed:
            logger.debug(f"Cleared local session keys: {removed}")
        return removed

    # =========================================================================
    # Client-side expiry ("remember me" off)
    # =========================================================================

    def set_expiry(self, ttl_seconds: float) -> int:
        expiry_ms = int((self._clock() + ttl_seconds) * 1000)
        self.local_storage.set_item(SESSION_EXPIRY_KEY, str(expiry_ms))
        return expiry_ms

    def clear_expiry(self) -> None:
        self.local_storage.remove_item(SESSION_EXPIRY_KEY)

    def expiry(self) -> Optional[int]:
        raw = self.local_storage.get_item(SESSION_EXPIRY_KEY)
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError:
            logger.warning(f"Ignoring malformed session expiry {raw!r}")
            return None

    def is_expired(self) -> bool:
        expiry = self.expiry()
        return expiry is not None and self._clock() * 1000 > expiry
