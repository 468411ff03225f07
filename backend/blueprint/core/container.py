"""
Application Container
=====================

Composition root: owns the process-wide pieces (backend HTTP client,
long-lived storage, client session registry) and builds the per-client
gateway, identity cache, state store, session reconciler, lookup flow and
admin dashboard each client session runs with.
"""

import logging
from typing import Any, Callable, Optional

import httpx

from blueprint.core.config import Settings, settings as default_config
from blueprint.core.sessions import ClientSession, ScopedStorage, SessionRegistry
from blueprint.core.storage import KeyValueStorage, MemoryStorage, create_local_storage
from blueprint.gateway.client import SupabaseGateway
from blueprint.services.admin_dashboard import AdminDashboard
from blueprint.services.identity_cache import IdentityCache
from blueprint.services.lookup import LookupFlow
from blueprint.services.session_reconciler import SessionReconciler
from blueprint.services.state_store import AppState

logger = logging.getLogger(__name__)

GatewayFactory = Callable[[KeyValueStorage], Any]


class AppContainer:
    """
    Args:
        config: Application settings
        gateway_factory: Builds a client's gateway over its scoped storage
            (tests); a ``SupabaseGateway`` on the shared HTTP client otherwise
        local_storage: Shared long-lived tier; from ``LOCAL_STORAGE_PATH`` by default
        transport: httpx transport for the shared HTTP client
        watch_expiry: Run each client's periodic session expiry check
    """

    def __init__(
        self,
        config: Settings = default_config,
        *,
        gateway_factory: Optional[GatewayFactory] = None,
        local_storage: Optional[KeyValueStorage] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        watch_expiry: bool = True,
    ):
        self.config = config
        self.local_storage = (
            local_storage if local_storage is not None else create_local_storage(config.LOCAL_STORAGE_PATH)
        )
        self._http: Optional[httpx.AsyncClient] = None
        if gateway_factory is None:
            self._http = httpx.AsyncClient(
                base_url=config.SUPABASE_URL.rstrip("/"),
                timeout=config.BACKEND_REQUEST_TIMEOUT_SECONDS,
                transport=transport,
            )
            gateway_factory = self._build_gateway
        self._gateway_factory = gateway_factory
        self.sessions = SessionRegistry(
            self.build_client,
            backing=self.local_storage,
            idle_seconds=config.CLIENT_SESSION_IDLE_MINUTES * 60,
            watch_expiry=watch_expiry,
        )

    def _build_gateway(self, storage: KeyValueStorage) -> SupabaseGateway:
        return SupabaseGateway(
            self.config.SUPABASE_URL,
            self.config.SUPABASE_ANON_KEY,
            storage=storage,
            project_ref=self.config.project_ref,
            http=self._http,
        )

    def build_client(self, session_id: str) -> ClientSession:
        """Wire an unstarted client session over its own slice of storage."""
        local = ScopedStorage(self.local_storage, session_id)
        gateway = self._gateway_factory(local)
        identity = IdentityCache(MemoryStorage(), local)
        state = AppState(gateway, identity, config=self.config)
        return ClientSession(
            session_id,
            identity=identity,
            state=state,
            reconciler=SessionReconciler(gateway, state, identity, config=self.config),
            lookup=LookupFlow(state),
            dashboard=AdminDashboard(state, gateway, config=self.config),
        )

    async def start(self) -> None:
        logger.info(f"Starting {self.config.APP_NAME} against {self.config.SUPABASE_URL}")

    async def aclose(self) -> None:
        await self.sessions.close_all()
        if self._http is not None:
            await self._http.aclose()
        logger.info("Client sessions and backend client closed")
