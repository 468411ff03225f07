"""
Application State Store
=======================

Single owner of the in-memory copies of every entity. The backend is the
durable owner; each mutator performs the remote write first and patches the
in-memory collection only on success.

Mutators never raise backend errors: they return an ``OperationResult`` the
UI layer renders as a dismissible notice. Readers use ``snapshot()`` and get
an immutable view.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, TypeVar

import httpx
from pydantic import BaseModel

from blueprint.core.config import Settings, settings as default_config
from blueprint.gateway.exceptions import GatewayError
from blueprint.middleware.prometheus import record_mutation
from blueprint.schemas.base import RowId
from blueprint.schemas.catalog import Category, FieldDefinition, Setting
from blueprint.schemas.engagement import VOTE_PERIOD_KEY, Vote
from blueprint.schemas.feedback import Feedback, FeedbackCreate
from blueprint.schemas.profile import UserSnapshot
from blueprint.schemas.results import OperationResult
from blueprint.services.fetch import fetch_with_retry
from blueprint.services.identity_cache import IdentityCache
from blueprint.services.setting_shaping import (
    diff_setting,
    field_from_row,
    field_to_row,
    flatten_setting_row,
    setting_to_row,
    split_setting_input,
)

if TYPE_CHECKING:
    from blueprint.gateway.client import SupabaseGateway

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

# Failures a remote write may surface.
WRITE_ERRORS = (GatewayError, httpx.HTTPError)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def same_id(a: Any, b: Any) -> bool:
    """Row ids arrive as ints from the backend and as strings from URLs."""
    return a is not None and b is not None and str(a) == str(b)


def find_by_id(items: Sequence[M], item_id: Any) -> Optional[M]:
    for item in items:
        if same_id(getattr(item, "id", None), item_id):
            return item
    return None


@dataclass(frozen=True)
class SearchState:
    leg: str = ""
    sku: str = ""
    case_size: Optional[str] = None


@dataclass(frozen=True)
class StateSnapshot:
    """Immutable view of the store handed to readers and listeners."""

    settings: Tuple[Setting, ...] = ()
    fields: Tuple[FieldDefinition, ...] = ()
    categories: Tuple[Category, ...] = ()
    feedback: Tuple[Feedback, ...] = ()
    votes: Tuple[Vote, ...] = ()
    app_config: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    user: Optional[UserSnapshot] = None
    loading: bool = False
    load_error: Optional[str] = None
    search: SearchState = SearchState()


Listener = Callable[[StateSnapshot], Any]


class AppState:
    """
    Application state store.

    Args:
        gateway: Backend gateway (tables + auth)
        identity: Two-tier identity cache
        config: Application settings (timeouts, retries, defaults)
        clock: Returns the current aware UTC datetime
    """

    def __init__(
        self,
        gateway: "SupabaseGateway",
        identity: IdentityCache,
        *,
        config: Settings = default_config,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.gateway = gateway
        self.identity = identity
        self.config = config
        self._now = clock or (lambda: datetime.now(timezone.utc))

        self.settings: List[Setting] = []
        self.fields: List[FieldDefinition] = []
        self.categories: List[Category] = []
        self.feedback: List[Feedback] = []
        self.votes: List[Vote] = []
        self.app_config: Dict[str, str] = {}
        self.user: Optional[UserSnapshot] = None

        self.loading = False
        self.load_error: Optional[str] = None
        self.search = SearchState()

        self._fetch_in_flight = False
        self._listeners: List[Listener] = []
        # Sign-out calls that lost the race against the timeout.
        self._abandoned: set[asyncio.Task] = set()

    # =========================================================================
    # Snapshots and subscriptions
    # =========================================================================

    def snapshot(self) -> StateSnapshot:
        return StateSnapshot(
            settings=tuple(self.settings),
            fields=tuple(self.fields),
            categories=tuple(self.categories),
            feedback=tuple(self.feedback),
            votes=tuple(self.votes),
            app_config=MappingProxyType(dict(self.app_config)),
            user=self.user,
            loading=self.loading,
            load_error=self.load_error,
            search=self.search,
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; returns a callable that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.warning(f"State listener {listener!r} failed: {e}")

    # =========================================================================
    # Search scratch state
    # =========================================================================

    def set_search(
        self,
        *,
        leg: Optional[str] = None,
        sku: Optional[str] = None,
        case_size: Any = ...,
    ) -> SearchState:
        """Update any of the search fields; ``case_size=None`` clears the selection."""
        current = self.search
        self.search = SearchState(
            leg=current.leg if leg is None else leg,
            sku=current.sku if sku is None else sku,
            case_size=current.case_size if case_size is ... else case_size,
        )
        return self.search

    def reset_search(self) -> None:
        self.search = SearchState()
        self._notify()

    # =========================================================================
    # Bulk loader
    # =========================================================================

    def _set_load_error(self, message: str) -> None:
        self.load_error = message

    async def _load(self, table: str, *, critical: bool) -> Optional[List[Dict[str, Any]]]:
        return await fetch_with_retry(
            table,
            lambda: self.gateway.select(table),
            critical=critical,
            retries=self.config.FETCH_RETRIES,
            initial_delay=self.config.FETCH_INITIAL_DELAY_SECONDS,
            timeout=self.config.FETCH_TIMEOUT_SECONDS,
            on_critical_failure=self._set_load_error,
        )

    @staticmethod
    def _parse_rows(table: str, rows: Sequence[Mapping[str, Any]], parse: Callable[[Mapping[str, Any]], M]) -> List[M]:
        parsed: List[M] = []
        for row in rows:
            try:
                parsed.append(parse(row))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed {table} row {row.get('id')!r}: {e}")
        return parsed

    async def fetch_data(self) -> bool:
        """
        Load every collection from the backend.

        Critical tables (categories, settings, fields) load first and stop the
        load on terminal failure, leaving ``load_error`` set. Feedback, votes
        and app config follow; their failures leave the previous slice in place.
        A call made while another load is in flight returns immediately.

        Returns:
            True when a load ran and every critical table loaded
        """
        if self._fetch_in_flight:
            logger.debug("Bulk load already in flight; skipping")
            return False

        self._fetch_in_flight = True
        self.loading = True
        self.load_error = None
        try:
            critical = {}
            for table in ("categories", "settings", "fields"):
                rows = await self._load(table, critical=True)
                if rows is None:
                    return False
                critical[table] = rows

            self.categories = self._parse_rows("categories", critical["categories"], Category.model_validate)
            self.settings = self._parse_rows("settings", critical["settings"], flatten_setting_row)
            self.fields = self._parse_rows("fields", critical["fields"], field_from_row)

            feedback_rows = await self._load("feedback", critical=False)
            if feedback_rows is not None:
                self.feedback = self._sorted_feedback(
                    self._parse_rows("feedback", feedback_rows, Feedback.model_validate)
                )
            vote_rows = await self._load("votes", critical=False)
            if vote_rows is not None:
                self.votes = self._parse_rows("votes", vote_rows, Vote.model_validate)
            config_rows = await self._load("app_config", critical=False)
            if config_rows is not None:
                self.app_config = {
                    str(row["key"]): str(row.get("value") if row.get("value") is not None else "")
                    for row in config_rows
                    if row.get("key") is not None
                }

            logger.info(
                f"Loaded {len(self.settings)} settings, {len(self.fields)} fields, "
                f"{len(self.categories)} categories, {len(self.feedback)} feedback, "
                f"{len(self.votes)} votes"
            )
            return True
        finally:
            self._fetch_in_flight = False
            self.loading = False
            self._notify()

    refresh_data = fetch_data

    @staticmethod
    def _sorted_feedback(items: List[Feedback]) -> List[Feedback]:
        return sorted(items, key=lambda f: f.date or _EPOCH, reverse=True)

    async def repair(self) -> bool:
        """Clear every local cache and reload from the backend."""
        logger.warning("Repairing local state: clearing caches and reloading")
        self.identity.session_storage.clear()
        self.identity.local_storage.clear()
        self.settings, self.fields, self.categories = [], [], []
        self.feedback, self.votes, self.app_config = [], [], {}
        self.user = None
        self.load_error = None
        self.search = SearchState()
        return await self.fetch_data()

    # =========================================================================
    # Helpers
    # =========================================================================

    def _failed(self, operation: str, message: str, error: Exception) -> OperationResult:
        logger.error(f"{operation} failed: {error}")
        record_mutation(operation, False)
        return OperationResult.fail(f"{message}: {error}", reason="backend_error")

    def _rejected(self, operation: str, message: str, reason: str) -> OperationResult:
        logger.info(f"{operation} rejected: {message}")
        record_mutation(operation, False)
        return OperationResult.fail(message, reason=reason)

    def _succeeded(self, operation: str, data: Any = None, message: Optional[str] = None) -> OperationResult:
        record_mutation(operation, True)
        self._notify()
        return OperationResult.ok(data, message)

    async def _actor_email(self) -> str:
        email = self.identity.email or (self.user.email if self.user else None)
        if email:
            return email
        try:
            auth_user = await self.gateway.auth.get_user()
        except WRITE_ERRORS as e:
            logger.warning(f"Could not resolve history actor: {e}")
            auth_user = None
        return (auth_user.email if auth_user else None) or "unknown"

    async def log_history(self, action: str, details: Dict[str, Any]) -> None:
        """Append a history entry; failures are logged, never raised."""
        email = await self._actor_email()
        try:
            await self.gateway.insert("history", {"user_email": email, "action": action, "details": details})
        except WRITE_ERRORS as e:
            logger.error(f"Failed to record {action} history for {details.get('sku')!r}: {e}")

    @property
    def vote_period_days(self) -> int:
        raw = self.app_config.get(VOTE_PERIOD_KEY)
        try:
            days = int(str(raw).strip())
        except (TypeError, ValueError):
            return self.config.DEFAULT_VOTE_PERIOD_DAYS
        return days if days > 0 else self.config.DEFAULT_VOTE_PERIOD_DAYS

    # =========================================================================
    # Settings
    # =========================================================================

    @staticmethod
    def _missing_fixed(fixed: Mapping[str, Any]) -> Optional[str]:
        labels = {"sku": "SKU", "legNumber": "Leg Number", "caseSize": "Case Size"}
        missing = [label for key, label in labels.items() if not fixed.get(key)]
        if missing:
            return f"{', '.join(missing)} required."
        return None

    async def add_setting(self, data: Mapping[str, Any]) -> OperationResult:
        fixed, dynamic = split_setting_input(data)
        problem = self._missing_fixed(fixed)
        if problem:
            return self._rejected("add_setting", problem, "invalid")

        try:
            rows = await self.gateway.insert("settings", setting_to_row(fixed, dynamic, self._now()))
        except WRITE_ERRORS as e:
            return self._failed("add_setting", "Failed to add setting", e)
        if not rows:
            return self._rejected("add_setting", "The backend did not return the new setting.", "backend_error")

        setting = flatten_setting_row(rows[0])
        self.settings.append(setting)
        await self.log_history("create", {
            "sku": setting.sku,
            "legNumber": setting.leg_number,
            "caseSize": setting.case_size,
            "data": dict(dynamic),
        })
        logger.info(f"Added setting {setting.sku} (leg {setting.leg_number})")
        return self._succeeded("add_setting", setting)

    async def update_setting(self, setting_id: RowId, data: Mapping[str, Any]) -> OperationResult:
        old = find_by_id(self.settings, setting_id)
        if old is None:
            return self._rejected("update_setting", "Setting not found.", "not_found")
        fixed, dynamic = split_setting_input(data)
        problem = self._missing_fixed(fixed)
        if problem:
            return self._rejected("update_setting", problem, "invalid")

        now = self._now()
        try:
            rows = await self.gateway.update(
                "settings", setting_to_row(fixed, dynamic, now), match={"id": old.id}
            )
        except WRITE_ERRORS as e:
            return self._failed("update_setting", "Failed to update setting", e)

        if rows:
            updated = flatten_setting_row(rows[0])
        else:
            updated = Setting(
                id=old.id,
                sku=fixed["sku"],
                leg_number=fixed["legNumber"],
                case_size=fixed["caseSize"],
                last_updated=now,
                values=dict(dynamic),
            )
        self.settings = [updated if same_id(s.id, old.id) else s for s in self.settings]

        await self.log_history("update", {
            "id": old.id,
            "sku": updated.sku,
            "legNumber": updated.leg_number,
            "changes": diff_setting(old, fixed, dynamic),
        })
        return self._succeeded("update_setting", updated)

    async def delete_setting(self, setting_id: RowId) -> OperationResult:
        old = find_by_id(self.settings, setting_id)
        if old is None:
            return self._rejected("delete_setting", "Setting not found.", "not_found")
        try:
            await self.gateway.delete("settings", match={"id": old.id})
        except WRITE_ERRORS as e:
            return self._failed("delete_setting", "Failed to delete setting", e)

        self.settings = [s for s in self.settings if not same_id(s.id, old.id)]
        await self.log_history("delete", {
            "sku": old.sku,
            "legNumber": old.leg_number,
            "backup": old.flatten(),
        })
        logger.info(f"Deleted setting {old.sku} (leg {old.leg_number})")
        return self._succeeded("delete_setting", old)

    # =========================================================================
    # Fields
    # =========================================================================

    async def add_field(self, data: Mapping[str, Any]) -> OperationResult:
        row = field_to_row(data)
        row.setdefault("type", "text")
        if not row.get("name") or not row.get("key"):
            return self._rejected("add_field", "Field name and key are required.", "invalid")
        if row["type"] not in ("text", "number"):
            return self._rejected("add_field", f"Unknown field type {row['type']!r}.", "invalid")
        category = find_by_id(self.categories, row.get("category_id"))
        if category is None:
            return self._rejected("add_field", "Field must belong to an existing category.", "invalid")
        if any(f.key == row["key"] for f in self.fields):
            return self._rejected("add_field", f"A field with key '{row['key']}' already exists.", "conflict")
        row["category_id"] = category.id

        try:
            rows = await self.gateway.insert("fields", row)
        except WRITE_ERRORS as e:
            return self._failed("add_field", "Failed to add field", e)
        if not rows:
            return self._rejected("add_field", "The backend did not return the new field.", "backend_error")

        new_field = field_from_row(rows[0])
        self.fields.append(new_field)
        return self._succeeded("add_field", new_field)

    async def update_field(self, field_id: RowId, updates: Mapping[str, Any]) -> OperationResult:
        current = find_by_id(self.fields, field_id)
        if current is None:
            return self._rejected("update_field", "Field not found.", "not_found")
        row = field_to_row(updates)
        if not row:
            return self._rejected("update_field", "Nothing to update.", "invalid")
        if "type" in row and row["type"] not in ("text", "number"):
            return self._rejected("update_field", f"Unknown field type {row['type']!r}.", "invalid")
        if "category_id" in row:
            category = find_by_id(self.categories, row["category_id"])
            if category is None:
                return self._rejected("update_field", "Field must belong to an existing category.", "invalid")
            row["category_id"] = category.id

        try:
            await self.gateway.update("fields", row, match={"id": current.id})
        except WRITE_ERRORS as e:
            return self._failed("update_field", "Failed to update field", e)

        updated = current.model_copy(update=row)
        self.fields = [updated if same_id(f.id, current.id) else f for f in self.fields]
        return self._succeeded("update_field", updated)

    async def remove_field(self, field_id: RowId) -> OperationResult:
        current = find_by_id(self.fields, field_id)
        match_id = current.id if current else field_id
        try:
            await self.gateway.delete("fields", match={"id": match_id})
        except WRITE_ERRORS as e:
            return self._failed("remove_field", "Failed to delete field", e)
        self.fields = [f for f in self.fields if not same_id(f.id, match_id)]
        return self._succeeded("remove_field", current)

    # =========================================================================
    # Categories
    # =========================================================================

    async def add_category(self, name: str) -> OperationResult:
        name = (name or "").strip()
        if not name:
            return self._rejected("add_category", "Category name is required.", "invalid")
        try:
            rows = await self.gateway.insert("categories", {"name": name})
        except WRITE_ERRORS as e:
            return self._failed("add_category", "Failed to add category", e)
        if not rows:
            return self._rejected("add_category", "The backend did not return the new category.", "backend_error")

        category = Category.model_validate(rows[0])
        self.categories.append(category)
        return self._succeeded("add_category", category)

    async def update_category(self, category_id: RowId, name: str) -> OperationResult:
        current = find_by_id(self.categories, category_id)
        if current is None:
            return self._rejected("update_category", "Category not found.", "not_found")
        name = (name or "").strip()
        if not name:
            return self._rejected("update_category", "Category name is required.", "invalid")
        try:
            await self.gateway.update("categories", {"name": name}, match={"id": current.id})
        except WRITE_ERRORS as e:
            return self._failed("update_category", "Failed to update category", e)

        updated = current.model_copy(update={"name": name})
        self.categories = [updated if same_id(c.id, current.id) else c for c in self.categories]
        return self._succeeded("update_category", updated)

    async def delete_category(self, category_id: RowId) -> OperationResult:
        if any(same_id(f.category_id, category_id) for f in self.fields):
            return self._rejected(
                "delete_category",
                "Cannot delete a category that still has fields. Move or delete its fields first.",
                "conflict",
            )
        current = find_by_id(self.categories, category_id)
        match_id = current.id if current else category_id
        try:
            await self.gateway.delete("categories", match={"id": match_id})
        except WRITE_ERRORS as e:
            return self._failed("delete_category", "Failed to delete category", e)
        self.categories = [c for c in self.categories if not same_id(c.id, match_id)]
        return self._succeeded("delete_category", current)

    # =========================================================================
    # Feedback
    # =========================================================================

    async def add_feedback(self, item: FeedbackCreate) -> OperationResult:
        row = {
            "type": item.type,
            "name": item.name,
            "message": item.message,
            "sku": item.sku or None,
            "leg_number": item.leg_number or None,
            "status": "pending",
        }
        try:
            await self.gateway.insert("feedback", row)
        except WRITE_ERRORS as e:
            return self._failed("add_feedback", "Failed to submit feedback", e)

        # Row ids are server-generated; re-read instead of patching.
        try:
            rows = await self.gateway.select("feedback")
        except WRITE_ERRORS as e:
            logger.warning(f"Feedback saved but re-reading feedback failed: {e}")
        else:
            self.feedback = self._sorted_feedback(self._parse_rows("feedback", rows, Feedback.model_validate))
        return self._succeeded("add_feedback", message="Thank you! Your feedback has been submitted.")

    async def resolve_feedback(self, feedback_id: RowId) -> OperationResult:
        current = find_by_id(self.feedback, feedback_id)
        match_id = current.id if current else feedback_id
        try:
            await self.gateway.update("feedback", {"status": "resolved"}, match={"id": match_id})
        except WRITE_ERRORS as e:
            return self._failed("resolve_feedback", "Failed to resolve feedback", e)
        self.feedback = [
            f.model_copy(update={"status": "resolved"}) if same_id(f.id, match_id) else f
            for f in self.feedback
        ]
        return self._succeeded("resolve_feedback", find_by_id(self.feedback, match_id))

    async def delete_feedback(self, feedback_id: RowId) -> OperationResult:
        current = find_by_id(self.feedback, feedback_id)
        match_id = current.id if current else feedback_id
        try:
            await self.gateway.delete("feedback", match={"id": match_id})
        except WRITE_ERRORS as e:
            return self._failed("delete_feedback", "Failed to delete feedback", e)
        self.feedback = [f for f in self.feedback if not same_id(f.id, match_id)]
        return self._succeeded("delete_feedback", current)

    # =========================================================================
    # Votes and app config
    # =========================================================================

    def latest_vote(self, user_id: str, setting_id: RowId) -> Optional[Vote]:
        mine = [v for v in self.votes if v.user_id == user_id and same_id(v.setting_id, setting_id)]
        return max(mine, key=lambda v: v.created_at) if mine else None

    async def add_vote(self, setting_id: RowId) -> OperationResult:
        """Mark a setting as working for the signed-in user, once per cooldown window."""
        if self.user is None:
            return self._rejected(
                "add_vote", "You must be logged in to mark a setting as working.", "login_required"
            )
        setting = find_by_id(self.settings, setting_id)
        if setting is None:
            return self._rejected("add_vote", "Setting not found.", "not_found")

        now = self._now()
        period = self.vote_period_days
        previous = self.latest_vote(self.user.id, setting.id)
        if previous is not None and previous.created_at > now - timedelta(days=period):
            return self._rejected(
                "add_vote",
                f"You already marked this setting as working in the last {period} day(s).",
                "cooldown",
            )

        row = {"user_id": self.user.id, "setting_id": setting.id, "created_at": now.isoformat()}
        try:
            rows = await self.gateway.insert("votes", row)
        except WRITE_ERRORS as e:
            return self._failed("add_vote", "Failed to record vote", e)

        vote = Vote.model_validate(rows[0]) if rows else Vote(id=f"local-{len(self.votes) + 1}", **row)
        self.votes.append(vote)
        return self._succeeded("add_vote", vote, "Marked as working. Thanks!")

    async def update_app_config(self, key: str, value: Any) -> OperationResult:
        text = "" if value is None else str(value)
        try:
            await self.gateway.upsert("app_config", {"key": key, "value": text}, on_conflict="key")
        except WRITE_ERRORS as e:
            return self._failed("update_app_config", f"Failed to save {key}", e)
        self.app_config[key] = text
        return self._succeeded("update_app_config", {key: text})

    # =========================================================================
    # Identity
    # =========================================================================

    def login(self, user: UserSnapshot) -> None:
        """Adopt ``user`` as the current identity and mirror it to the cache."""
        self.identity.save(user)
        self.user = user
        self._notify()

    def clear_identity(self, aggressive: bool = True) -> None:
        """Drop the current identity locally without contacting the backend."""
        self.identity.clear(aggressive=aggressive)
        self.user = None
        self._notify()

    async def logout(self) -> None:
        """
        Sign out remotely, then clear every local identity artifact.

        The remote call races ``SIGN_OUT_TIMEOUT_SECONDS``; on timeout it is
        abandoned (left running) and local state is cleared regardless.
        """
        sign_out = asyncio.ensure_future(self.gateway.auth.sign_out())
        done, _ = await asyncio.wait({sign_out}, timeout=self.config.SIGN_OUT_TIMEOUT_SECONDS)
        if sign_out in done:
            error = sign_out.exception()
            if error is not None:
                logger.warning(f"Remote sign-out failed: {error}")
        else:
            logger.warning(
                f"Remote sign-out still pending after {self.config.SIGN_OUT_TIMEOUT_SECONDS}s; "
                "clearing local session anyway"
            )
            self._abandoned.add(sign_out)
            sign_out.add_done_callback(self._reap_abandoned)
        self.clear_identity(aggressive=True)

    def _reap_abandoned(self, task: asyncio.Task) -> None:
        self._abandoned.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"Abandoned sign-out finished with error: {task.exception()}")
