"""
Admin Dashboard
===============

Role-gated management operations behind the dashboard tabs. Moderators
manage settings, structure (categories and fields) and feedback; admins
additionally manage users, history, votes and configuration.

Store-backed operations delegate to ``AppState``; users, history and the
joined vote list are read straight from the backend since the store does
not hold them.
"""

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

from pydantic import ValidationError as PydanticValidationError

from blueprint.core.config import Settings, settings as default_config
from blueprint.middleware.prometheus import record_mutation
from blueprint.schemas.base import RowId
from blueprint.schemas.engagement import VOTE_PERIOD_KEY, VoteRecord
from blueprint.schemas.history import HistoryEntry
from blueprint.schemas.profile import ROLE_RANK, UserProfile
from blueprint.schemas.results import OperationResult
from blueprint.services.setting_shaping import (
    derive_field_key,
    split_setting_input,
    validate_dynamic_values,
)
from blueprint.services.state_store import WRITE_ERRORS, AppState, find_by_id, same_id

if TYPE_CHECKING:
    from blueprint.gateway.client import SupabaseGateway

logger = logging.getLogger(__name__)

MODERATOR_TABS = ["settings", "structure", "feedback"]
ADMIN_TABS = MODERATOR_TABS + ["users", "history", "votes", "config"]

USER_STATUSES = ("pending", "approved", "rejected")


def tabs_for(role: Optional[str]) -> List[str]:
    """Dashboard tabs visible to ``role``; plain users get none."""
    if role == "admin":
        return list(ADMIN_TABS)
    if role == "moderator":
        return list(MODERATOR_TABS)
    return []


def summarize(entry: HistoryEntry) -> str:
    """One-line description of a history entry."""
    sku = entry.details.get("sku") or "?"
    changes = entry.details.get("changes")
    if entry.action == "update" and changes:
        return f"Updated {len(changes)} field(s) for SKU {sku}"
    return f"{entry.action}d SKU {sku}"


class AdminDashboard:
    def __init__(
        self,
        state: AppState,
        gateway: "SupabaseGateway",
        *,
        config: Settings = default_config,
    ):
        self.state = state
        self.gateway = gateway
        self.config = config

    def _require(self, minimum: str) -> Optional[OperationResult]:
        """Failure result when the current user lacks ``minimum``, else None."""
        user = self.state.user
        if user is None:
            return OperationResult.fail("You must be logged in.", reason="login_required")
        if not user.has_role(minimum):
            message = "Admin access required." if minimum == "admin" else "Moderator access required."
            logger.info(f"Denied {user.email} ({user.role}) a {minimum} operation")
            return OperationResult.fail(message, reason="forbidden")
        return None

    def tabs(self) -> List[str]:
        return tabs_for(self.state.user.role if self.state.user else None)

    # =========================================================================
    # Settings
    # =========================================================================

    async def save_setting(self, form: Mapping[str, Any], setting_id: Optional[RowId] = None) -> OperationResult:
        """
        Create or update a setting from a dashboard form.

        Dynamic values are checked against the field catalog: number fields
        must parse, and keys unknown to the catalog are only accepted when
        the stored setting already carries them.
        """
        denied = self._require("moderator")
        if denied is not None:
            return denied

        existing = None
        if setting_id is not None:
            existing = find_by_id(self.state.settings, setting_id)
            if existing is None:
                return OperationResult.fail("Setting not found.", reason="not_found")

        fixed, dynamic = split_setting_input(form)
        cleaned, unknown, errors = validate_dynamic_values(dynamic, self.state.fields)
        stale = {k: dynamic[k] for k in unknown if existing is not None and k in existing.values}
        rejected = [k for k in unknown if k not in stale]
        if rejected:
            errors.append(f"Unknown field(s): {', '.join(sorted(rejected))}")
        if errors:
            return OperationResult.fail("; ".join(errors), reason="invalid")

        payload = {**fixed, "values": {**stale, **cleaned}}
        if existing is None:
            return await self.state.add_setting(payload)
        return await self.state.update_setting(existing.id, payload)

    async def delete_setting(self, setting_id: RowId) -> OperationResult:
        denied = self._require("moderator")
        return denied if denied is not None else await self.state.delete_setting(setting_id)

    # =========================================================================
    # Structure
    # =========================================================================

    async def add_category(self, name: str) -> OperationResult:
        denied = self._require("moderator")
        return denied if denied is not None else await self.state.add_category(name)

    async def rename_category(self, category_id: RowId, name: str) -> OperationResult:
        denied = self._require("moderator")
        return denied if denied is not None else await self.state.update_category(category_id, name)

    async def delete_category(self, category_id: RowId) -> OperationResult:
        denied = self._require("moderator")
        return denied if denied is not None else await self.state.delete_category(category_id)

    async def add_field(
        self,
        name: str,
        category_id: RowId,
        key: Optional[str] = None,
        type: str = "text",
    ) -> OperationResult:
        denied = self._require("moderator")
        if denied is not None:
            return denied
        key = (key or "").strip() or derive_field_key(name or "")
        return await self.state.add_field({
            "name": (name or "").strip(),
            "key": key,
            "type": type,
            "categoryId": category_id,
        })

    async def update_field(self, field_id: RowId, updates: Mapping[str, Any]) -> OperationResult:
        denied = self._require("moderator")
        return denied if denied is not None else await self.state.update_field(field_id, updates)

    async def remove_field(self, field_id: RowId) -> OperationResult:
        denied = self._require("moderator")
        return denied if denied is not None else await self.state.remove_field(field_id)

    async def move_field_to_next_category(self, field_id: RowId) -> OperationResult:
        """Move a field to the category after its current one, wrapping around."""
        denied = self._require("moderator")
        if denied is not None:
            return denied
        target = find_by_id(self.state.fields, field_id)
        if target is None:
            return OperationResult.fail("Field not found.", reason="not_found")
        categories = self.state.categories
        if len(categories) < 2:
            return OperationResult.fail("There is no other category to move this field to.", reason="invalid")

        index = next((i for i, c in enumerate(categories) if same_id(c.id, target.category_id)), -1)
        destination = categories[(index + 1) % len(categories)]
        return await self.state.update_field(target.id, {"categoryId": destination.id})

    # =========================================================================
    # Feedback
    # =========================================================================

    def pending_feedback(self) -> OperationResult:
        denied = self._require("moderator")
        if denied is not None:
            return denied
        return OperationResult.ok([f for f in self.state.feedback if f.status == "pending"])

    async def resolve_feedback(self, feedback_id: RowId) -> OperationResult:
        denied = self._require("moderator")
        return denied if denied is not None else await self.state.resolve_feedback(feedback_id)

    async def delete_feedback(self, feedback_id: RowId) -> OperationResult:
        denied = self._require("moderator")
        return denied if denied is not None else await self.state.delete_feedback(feedback_id)

    # =========================================================================
    # Users
    # =========================================================================

    async def list_users(self) -> OperationResult:
        denied = self._require("admin")
        if denied is not None:
            return denied
        try:
            rows = await self.gateway.select("profiles", order="created_at", descending=True)
            users = [UserProfile.model_validate(row) for row in rows]
        except (*WRITE_ERRORS, PydanticValidationError) as e:
            logger.error(f"Failed to load users: {e}")
            return OperationResult.fail(f"Failed to load users: {e}", reason="backend_error")
        return OperationResult.ok(users)

    async def _update_profile(self, operation: str, user_id: str, values: Dict[str, Any]) -> OperationResult:
        try:
            rows = await self.gateway.update("profiles", values, match={"id": user_id})
        except WRITE_ERRORS as e:
            logger.error(f"{operation} failed for {user_id}: {e}")
            record_mutation(operation, False)
            return OperationResult.fail(f"Failed to update user: {e}", reason="backend_error")
        record_mutation(operation, True)
        logger.info(f"{operation} {user_id}: {values}")
        profile = UserProfile.model_validate(rows[0]) if rows else None
        return OperationResult.ok(profile)

    async def set_user_status(self, user_id: str, status: str) -> OperationResult:
        denied = self._require("admin")
        if denied is not None:
            return denied
        if status not in USER_STATUSES:
            return OperationResult.fail(f"Unknown status {status!r}.", reason="invalid")
        return await self._update_profile("set_user_status", user_id, {"status": status})

    async def set_user_role(self, user_id: str, role: str) -> OperationResult:
        denied = self._require("admin")
        if denied is not None:
            return denied
        if role not in ROLE_RANK:
            return OperationResult.fail(f"Unknown role {role!r}.", reason="invalid")
        return await self._update_profile("set_user_role", user_id, {"role": role})

    # =========================================================================
    # History
    # =========================================================================

    async def list_history(self, limit: Optional[int] = None) -> OperationResult:
        denied = self._require("admin")
        if denied is not None:
            return denied
        try:
            rows = await self.gateway.select(
                "history",
                order="created_at",
                descending=True,
                limit=limit or self.config.HISTORY_PAGE_LIMIT,
            )
            entries = [HistoryEntry.model_validate(row) for row in rows]
        except (*WRITE_ERRORS, PydanticValidationError) as e:
            logger.error(f"Failed to load history: {e}")
            return OperationResult.fail(f"Failed to load history: {e}", reason="backend_error")
        return OperationResult.ok(entries)

    async def delete_history_entry(self, entry_id: RowId) -> OperationResult:
        denied = self._require("admin")
        if denied is not None:
            return denied
        try:
            await self.gateway.delete("history", match={"id": entry_id})
        except WRITE_ERRORS as e:
            logger.error(f"Failed to delete history entry {entry_id}: {e}")
            record_mutation("delete_history_entry", False)
            return OperationResult.fail(f"Failed to delete history entry: {e}", reason="backend_error")
        record_mutation("delete_history_entry", True)
        return OperationResult.ok()

    # =========================================================================
    # Votes and configuration
    # =========================================================================

    async def list_votes(self) -> OperationResult:
        """Every vote with its voter and setting, newest first."""
        denied = self._require("admin")
        if denied is not None:
            return denied
        try:
            vote_rows = await self.gateway.select("votes", order="created_at", descending=True)
            profiles = {
                str(p["id"]): UserProfile.model_validate(p)
                for p in await self.gateway.select("profiles")
            }
        except (*WRITE_ERRORS, PydanticValidationError) as e:
            logger.error(f"Failed to load votes: {e}")
            return OperationResult.fail(f"Failed to load votes: {e}", reason="backend_error")

        records = []
        for row in vote_rows:
            profile = profiles.get(str(row.get("user_id")))
            setting = find_by_id(self.state.settings, row.get("setting_id"))
            try:
                records.append(VoteRecord(
                    id=row["id"],
                    created_at=row["created_at"],
                    user_id=row["user_id"],
                    user_name=profile.display_name if profile else None,
                    user_email=profile.email if profile else None,
                    setting_id=row["setting_id"],
                    sku=setting.sku if setting else None,
                    leg_number=setting.leg_number if setting else None,
                ))
            except (KeyError, PydanticValidationError) as e:
                logger.warning(f"Skipping malformed vote row {row.get('id')!r}: {e}")
        records.sort(key=lambda r: r.created_at, reverse=True)
        return OperationResult.ok(records)

    def get_config(self) -> OperationResult:
        denied = self._require("admin")
        if denied is not None:
            return denied
        return OperationResult.ok({**self.state.app_config, VOTE_PERIOD_KEY: str(self.state.vote_period_days)})

    async def save_vote_period(self, days: Any) -> OperationResult:
        denied = self._require("admin")
        if denied is not None:
            return denied
        try:
            value = int(str(days).strip())
        except (TypeError, ValueError):
            value = 0
        if value <= 0:
            return OperationResult.fail("Vote period must be a positive whole number of days.", reason="invalid")
        return await self.state.update_app_config(VOTE_PERIOD_KEY, value)
