"""
Services module initialization.
"""

from blueprint.services.state_store import AppState, StateSnapshot
from blueprint.services.session_reconciler import AuthState, SessionReconciler
from blueprint.services.identity_cache import IdentityCache
from blueprint.services.lookup import LookupFlow, LookupView
from blueprint.services.admin_dashboard import AdminDashboard
from blueprint.services.fetch import fetch_with_retry

__all__ = [
    "AppState",
    "StateSnapshot",
    "AuthState",
    "SessionReconciler",
    "IdentityCache",
    "LookupFlow",
    "LookupView",
    "AdminDashboard",
    "fetch_with_retry",
]
