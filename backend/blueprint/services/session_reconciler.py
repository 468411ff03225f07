"""
Session Reconciler
==================

Keeps the store's user snapshot consistent with the backend auth session
and the user's profile. Consumes the gateway's auth event stream, resolves
each signed-in credential to its profile, and only admits ``approved``
profiles; everything else ends without a user snapshot.

Also owns the login page operations (sign in with optional "remember me",
registration) and the periodic client-side session expiry check.
"""

import asyncio
import logging
from enum import Enum
from typing import TYPE_CHECKING, Optional

from pydantic import ValidationError as PydanticValidationError

from blueprint.core.config import Settings, settings as default_config
from blueprint.gateway.exceptions import (
    AuthenticationError,
    ConflictError,
    RateLimitError,
    ValidationError,
)
from blueprint.gateway.models import AuthEvent, AuthEventType, AuthUser
from blueprint.middleware.prometheus import record_auth_attempt
from blueprint.schemas.profile import UserProfile, UserSnapshot
from blueprint.schemas.results import OperationResult
from blueprint.services.identity_cache import IdentityCache
from blueprint.services.state_store import WRITE_ERRORS, AppState

if TYPE_CHECKING:
    from blueprint.gateway.auth import AuthEventStream
    from blueprint.gateway.client import SupabaseGateway

logger = logging.getLogger(__name__)

PENDING_MESSAGE = "Your account is pending approval."
REJECTED_MESSAGE = "Your account has been rejected. Please contact an administrator."
MISSING_PROFILE_MESSAGE = "No profile was found for this account. It has been created and is pending approval."
PROFILE_ERROR_MESSAGE = "Could not verify your account. Please try again."
EXPIRED_MESSAGE = "Your session has expired. Please sign in again."
REGISTERED_MESSAGE = "Registration successful! Please wait for an admin to approve your account."


class AuthState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    RESOLVING_PROFILE = "resolving_profile"
    APPROVED = "authenticated_approved"
    PENDING = "authenticated_pending"
    REJECTED_OR_MISSING = "authenticated_rejected_or_missing"


class SessionReconciler:
    """
    Auth state machine over the gateway's auth event stream.

    Args:
        gateway: Backend gateway
        state: Application state store whose user snapshot is reconciled
        identity: Identity cache shared with the store
        config: Application settings
    """

    def __init__(
        self,
        gateway: "SupabaseGateway",
        state: AppState,
        identity: IdentityCache,
        *,
        config: Settings = default_config,
    ):
        self.gateway = gateway
        self.state = state
        self.identity = identity
        self.config = config

        self.auth_state = AuthState.UNAUTHENTICATED
        self.last_message: Optional[str] = None

        self._stream: Optional["AuthEventStream"] = None
        self._consumer: Optional[asyncio.Task] = None
        self._expiry_task: Optional[asyncio.Task] = None

    @property
    def user(self) -> Optional[UserSnapshot]:
        return self.state.user

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self, *, watch_expiry: bool = True) -> None:
        """
        Restore identity and begin consuming auth events.

        The cached identity is adopted first so readers see the last known
        user immediately, then replaced by the strict server-side check.
        """
        cached = self.identity.load()
        if cached is not None:
            logger.debug(f"Restoring cached identity for {cached.email}")
            self.state.user = cached

        if not await self.check_expiry():
            await self._strict_check()

        self._stream = self.gateway.auth.subscribe()
        self._consumer = asyncio.create_task(self._consume(self._stream))
        if watch_expiry and self.config.SESSION_EXPIRY_CHECK_SECONDS > 0:
            self._expiry_task = asyncio.create_task(self._expiry_loop())

    async def stop(self) -> None:
        tasks = [t for t in (self._consumer, self._expiry_task) if t is not None]
        for task in tasks:
            task.cancel()
        if self._stream is not None:
            self._stream.close()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._consumer = self._expiry_task = self._stream = None

    async def _strict_check(self) -> None:
        try:
            auth_user = await self.gateway.auth.get_user()
        except WRITE_ERRORS as e:
            logger.warning(f"Strict session check failed: {e}")
            auth_user = None
        if auth_user is None:
            if self.state.user is not None:
                logger.info("Stored session is no longer valid; clearing cached identity")
            self.state.clear_identity(aggressive=True)

    async def _consume(self, stream: "AuthEventStream") -> None:
        async for event in stream:
            try:
                await self.handle_event(event)
            except Exception:
                logger.exception(f"Failed to handle auth event {event.type.value}")
            finally:
                stream.task_done()

    async def settle(self, event: Optional[AuthEvent] = None) -> None:
        """Wait until the consumer has handled every published event."""
        if self._stream is not None and not self._stream.closed:
            await self._stream.join()
        elif event is not None:
            await self.handle_event(event)

    # =========================================================================
    # Event handling
    # =========================================================================

    async def handle_event(self, event: AuthEvent) -> AuthState:
        logger.debug(f"Auth event {event.type.value}")
        if event.type == AuthEventType.SIGNED_OUT:
            # Remote session is already gone; only local state remains.
            self.auth_state = AuthState.UNAUTHENTICATED
            self.state.clear_identity(aggressive=True)
        elif event.type in (AuthEventType.SIGNED_IN, AuthEventType.INITIAL_SESSION):
            if event.session is None:
                self.auth_state = AuthState.UNAUTHENTICATED
                await self.state.fetch_data()
            else:
                await self.resolve_profile(event.session.user)
        return self.auth_state

    async def resolve_profile(self, auth_user: AuthUser) -> AuthState:
        """Admit ``auth_user`` only when its profile is approved."""
        self.auth_state = AuthState.RESOLVING_PROFILE
        try:
            row = await self.gateway.select("profiles", filters={"id": auth_user.id}, maybe_single=True)
            profile = UserProfile.model_validate(row) if row else None
        except (*WRITE_ERRORS, PydanticValidationError) as e:
            logger.error(f"Profile lookup failed for {auth_user.id}: {e}")
            self.last_message = PROFILE_ERROR_MESSAGE
            self.state.clear_identity(aggressive=False)
            self.auth_state = AuthState.UNAUTHENTICATED
            return self.auth_state

        if profile is None:
            await self._create_pending_profile(auth_user)
            self.last_message = MISSING_PROFILE_MESSAGE
            self.state.clear_identity(aggressive=False)
            self.auth_state = AuthState.REJECTED_OR_MISSING
        elif profile.status == "pending":
            logger.info(f"Signing out pending user {auth_user.email}")
            self.last_message = PENDING_MESSAGE
            self.auth_state = AuthState.PENDING
            await self.state.logout()
            self.auth_state = AuthState.UNAUTHENTICATED
        elif profile.status == "rejected":
            logger.info(f"Refusing rejected user {auth_user.email}")
            self.last_message = REJECTED_MESSAGE
            self.state.clear_identity(aggressive=False)
            self.auth_state = AuthState.REJECTED_OR_MISSING
        else:
            self.state.login(UserSnapshot.from_profile(profile, auth_user.email))
            self.last_message = None
            self.auth_state = AuthState.APPROVED
            await self.state.fetch_data()
        return self.auth_state

    async def _create_pending_profile(self, auth_user: AuthUser) -> None:
        row = {
            "id": auth_user.id,
            "email": auth_user.email,
            "role": "moderator",
            "status": "pending",
        }
        try:
            await self.gateway.insert("profiles", row)
            logger.info(f"Created pending profile for {auth_user.email}")
        except WRITE_ERRORS as e:
            logger.error(f"Failed to create profile for {auth_user.id}: {e}")

    # =========================================================================
    # Login page operations
    # =========================================================================

    async def sign_in(self, email: str, password: str, remember_me: bool = True) -> OperationResult:
        """
        Sign in and wait for the profile to be reconciled.

        Without ``remember_me`` the session expires client-side after
        ``SESSION_TTL_MINUTES``.
        """
        try:
            response = await self.gateway.auth.sign_in_with_password(email, password)
        except (AuthenticationError, ValidationError) as e:
            logger.info(f"Sign-in rejected for {email}: {e.message}")
            record_auth_attempt("password", False)
            return OperationResult.fail("Invalid email or password.", reason="invalid")
        except RateLimitError as e:
            record_auth_attempt("password", False)
            return OperationResult.fail(f"Too many attempts. {e.message}", reason="backend_error")
        except WRITE_ERRORS as e:
            logger.error(f"Sign-in failed for {email}: {e}")
            record_auth_attempt("password", False)
            return OperationResult.fail(f"Sign-in failed: {e}", reason="backend_error")

        await self.settle(AuthEvent(type=AuthEventType.SIGNED_IN, session=response.session))

        if self.auth_state != AuthState.APPROVED or self.state.user is None:
            message = self.last_message or "Sign-in failed."
            # Only approved users may keep a backend session.
            await self.state.logout()
            await self.settle(AuthEvent(type=AuthEventType.SIGNED_OUT))
            self.last_message = message
            record_auth_attempt("password", False)
            return OperationResult.fail(message, reason="forbidden")

        if remember_me:
            self.identity.clear_expiry()
        else:
            self.identity.set_expiry(self.config.SESSION_TTL_MINUTES * 60)
        record_auth_attempt("password", True)
        logger.info(f"Signed in {email} as {self.state.user.role}")
        return OperationResult.ok(self.state.user, "Signed in.")

    async def register(
        self,
        email: str,
        password: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> OperationResult:
        """Create a credential plus a pending profile awaiting admin approval."""
        metadata = {"first_name": first_name, "last_name": last_name}
        try:
            response = await self.gateway.auth.sign_up(email, password, data=metadata)
        except ConflictError:
            record_auth_attempt("signup", False)
            return OperationResult.fail("An account with this email already exists.", reason="conflict")
        except ValidationError as e:
            record_auth_attempt("signup", False)
            return OperationResult.fail(e.message, reason="invalid")
        except WRITE_ERRORS as e:
            logger.error(f"Registration failed for {email}: {e}")
            record_auth_attempt("signup", False)
            return OperationResult.fail(f"Registration failed: {e}", reason="backend_error")

        auth_user = response.user or (response.session.user if response.session else None)
        if auth_user is None:
            record_auth_attempt("signup", False)
            return OperationResult.fail("Registration did not return an account.", reason="backend_error")

        profile = {
            "id": auth_user.id,
            "email": email,
            "role": "moderator",
            "status": "pending",
            "first_name": first_name,
            "last_name": last_name,
        }
        try:
            await self.gateway.upsert("profiles", profile, on_conflict="id")
        except WRITE_ERRORS as e:
            logger.error(f"Profile creation failed for {email}: {e}")
            record_auth_attempt("signup", False)
            return OperationResult.fail(f"Account created but profile setup failed: {e}", reason="backend_error")

        if response.session is not None:
            # Auto-confirmed sign-ups get a session the pending user may not keep.
            await self.settle()
            await self.state.logout()
            await self.settle(AuthEvent(type=AuthEventType.SIGNED_OUT))

        self.auth_state = AuthState.UNAUTHENTICATED
        self.last_message = REGISTERED_MESSAGE
        record_auth_attempt("signup", True)
        logger.info(f"Registered {email}; awaiting approval")
        return OperationResult.ok({"id": auth_user.id, "email": email}, REGISTERED_MESSAGE)

    async def logout(self) -> OperationResult:
        await self.state.logout()
        await self.settle(AuthEvent(type=AuthEventType.SIGNED_OUT))
        self.auth_state = AuthState.UNAUTHENTICATED
        self.last_message = None
        return OperationResult.ok(message="Signed out.")

    # =========================================================================
    # Client-side expiry
    # =========================================================================

    async def check_expiry(self) -> bool:
        """Force a logout when the stored session expiry has passed."""
        if not self.identity.is_expired():
            return False
        logger.info("Client-side session expired; signing out")
        await self.state.logout()
        self.auth_state = AuthState.UNAUTHENTICATED
        self.last_message = EXPIRED_MESSAGE
        return True

    async def _expiry_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.SESSION_EXPIRY_CHECK_SECONDS)
            try:
                await self.check_expiry()
            except Exception:
                logger.exception("Session expiry check failed")
