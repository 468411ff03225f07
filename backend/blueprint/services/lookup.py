"""
Settings Lookup
===============

Search and browse derivations over the store's settings and votes:

1. a Leg Number is selected;
2. with no Case Size and no SKU text, the distinct Case Sizes on that leg
   are offered;
3. choosing a Case Size, or typing SKU text, lists matching settings with
   their most recent "worked" vote;
4. a selected setting opens a detail view tabbed by category.

The functions here are pure. ``LookupFlow`` binds them to the store's
search scratch state.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Literal, Optional, Sequence
from urllib.parse import urlencode

from blueprint.schemas.base import RowId
from blueprint.schemas.catalog import Category, FieldDefinition, Setting
from blueprint.schemas.engagement import Vote
from blueprint.schemas.results import OperationResult
from blueprint.services.state_store import AppState, find_by_id

SortKey = Literal["sku", "updated", "last_worked"]
ViewMode = Literal["idle", "case_sizes", "results"]

SORT_KEYS = ("sku", "updated", "last_worked")
PLACEHOLDER = "-"

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class SettingMatch:
    setting: Setting
    last_worked: Optional[datetime] = None


@dataclass(frozen=True)
class FieldValue:
    field: FieldDefinition
    value: object


@dataclass(frozen=True)
class CategoryTab:
    category: Optional[Category]
    values: List[FieldValue] = field(default_factory=list)

    @property
    def title(self) -> str:
        return self.category.name if self.category else "Other"


@dataclass(frozen=True)
class SettingDetail:
    setting: Setting
    tabs: List[CategoryTab]
    last_worked: Optional[datetime] = None
    feedback_link: str = ""


@dataclass(frozen=True)
class LookupView:
    mode: ViewMode
    leg: str = ""
    sku: str = ""
    case_size: Optional[str] = None
    case_sizes: List[str] = field(default_factory=list)
    results: List[SettingMatch] = field(default_factory=list)


def _norm(value: Optional[str]) -> str:
    return (value or "").strip()


def case_size_options(settings: Iterable[Setting], leg: str) -> List[str]:
    """Distinct, non-empty case sizes available on ``leg``, sorted."""
    leg = _norm(leg)
    return sorted({s.case_size for s in settings if s.leg_number == leg and s.case_size})


def last_worked_index(votes: Iterable[Vote]) -> Dict[str, datetime]:
    """Most recent vote time per setting id (keys are stringified ids)."""
    latest: Dict[str, datetime] = {}
    for vote in votes:
        key = str(vote.setting_id)
        if key not in latest or vote.created_at > latest[key]:
            latest[key] = vote.created_at
    return latest


def sort_matches(matches: List[SettingMatch], sort_by: SortKey) -> List[SettingMatch]:
    """
    Order matches by SKU, most recent update, or most recent worked vote.

    For the two time orders, newest comes first and matches without a
    timestamp come last.
    """
    by_sku = sorted(matches, key=lambda m: m.setting.sku.lower())
    if sort_by == "sku":
        return by_sku
    if sort_by == "updated":
        stamp = lambda m: m.setting.last_updated  # noqa: E731
    elif sort_by == "last_worked":
        stamp = lambda m: m.last_worked  # noqa: E731
    else:
        raise ValueError(f"Unknown sort key {sort_by!r}")
    dated = [m for m in by_sku if stamp(m) is not None]
    undated = [m for m in by_sku if stamp(m) is None]
    # sorted() is stable, so equal timestamps keep SKU order.
    return sorted(dated, key=lambda m: stamp(m) or _EPOCH, reverse=True) + undated


def find_settings(
    settings: Iterable[Setting],
    votes: Iterable[Vote],
    *,
    leg: str = "",
    case_size: Optional[str] = None,
    sku_query: str = "",
    sort_by: SortKey = "sku",
) -> List[SettingMatch]:
    """
    Settings matching the current search, annotated with their last worked vote.

    SKU text matches case-insensitively anywhere in the SKU and takes
    precedence over ``case_size``. With a leg the search is confined to it.
    """
    leg = _norm(leg)
    query = _norm(sku_query).lower()
    candidates = [s for s in settings if not leg or s.leg_number == leg]
    if query:
        candidates = [s for s in candidates if query in s.sku.lower()]
    elif case_size:
        candidates = [s for s in candidates if s.case_size == case_size]
    elif not leg:
        return []

    worked = last_worked_index(votes)
    matches = [SettingMatch(s, worked.get(str(s.id))) for s in candidates]
    return sort_matches(matches, sort_by)


def find_exact(settings: Iterable[Setting], leg: str, sku: str) -> Optional[Setting]:
    """The setting whose SKU equals ``sku`` (ignoring case) on ``leg``."""
    leg, sku = _norm(leg), _norm(sku).lower()
    if not leg or not sku:
        return None
    for setting in settings:
        if setting.leg_number == leg and setting.sku.lower() == sku:
            return setting
    return None


def feedback_link(setting: Setting) -> str:
    """Link to the feedback form pre-filled with the setting's SKU and leg."""
    return "/feedback?" + urlencode({"sku": setting.sku, "leg": setting.leg_number})


def build_detail(
    setting: Setting,
    categories: Sequence[Category],
    fields: Sequence[FieldDefinition],
    *,
    votes: Iterable[Vote] = (),
    placeholder: str = PLACEHOLDER,
) -> SettingDetail:
    """Detail view with one tab per category listing every field's value."""
    tabs: List[CategoryTab] = []
    placed = set()
    for category in categories:
        values = []
        for f in fields:
            if f.category_id is not None and str(f.category_id) == str(category.id):
                values.append(FieldValue(f, _display(setting.values.get(f.key), placeholder)))
                placed.add(f.key)
        tabs.append(CategoryTab(category, values))

    orphans = [f for f in fields if f.key not in placed]
    if orphans:
        tabs.append(CategoryTab(None, [FieldValue(f, _display(setting.values.get(f.key), placeholder)) for f in orphans]))

    return SettingDetail(
        setting=setting,
        tabs=tabs,
        last_worked=last_worked_index(votes).get(str(setting.id)),
        feedback_link=feedback_link(setting),
    )


def _display(value: object, placeholder: str) -> object:
    if value is None or value == "":
        return placeholder
    return value


class LookupFlow:
    """Search/browse controller over the store's shared search state."""

    def __init__(self, state: AppState):
        self.state = state

    def select_leg(self, leg: str) -> LookupView:
        self.state.set_search(leg=_norm(leg), case_size=None)
        return self.view()

    def type_sku(self, text: str) -> LookupView:
        # Typing takes precedence over a chosen case size.
        self.state.set_search(sku=text or "", case_size=None)
        return self.view()

    def select_case_size(self, case_size: str) -> LookupView:
        self.state.set_search(sku="", case_size=case_size)
        return self.view()

    def clear_case_size(self) -> LookupView:
        self.state.set_search(case_size=None)
        return self.view()

    def reset(self) -> LookupView:
        self.state.reset_search()
        return self.view()

    def view(self, sort_by: SortKey = "sku") -> LookupView:
        search = self.state.search
        leg, sku = _norm(search.leg), _norm(search.sku)
        if not leg and not sku:
            return LookupView(mode="idle")
        if not sku and not search.case_size:
            return LookupView(
                mode="case_sizes",
                leg=leg,
                case_sizes=case_size_options(self.state.settings, leg),
            )
        results = find_settings(
            self.state.settings,
            self.state.votes,
            leg=leg,
            case_size=search.case_size,
            sku_query=sku,
            sort_by=sort_by,
        )
        return LookupView(
            mode="results",
            leg=leg,
            sku=sku,
            case_size=None if sku else search.case_size,
            results=results,
        )

    def detail(self, setting_id: RowId) -> Optional[SettingDetail]:
        setting = find_by_id(self.state.settings, setting_id)
        if setting is None:
            return None
        return build_detail(
            setting,
            self.state.categories,
            self.state.fields,
            votes=self.state.votes,
        )

    async def mark_working(self, setting_id: RowId) -> OperationResult:
        return await self.state.add_vote(setting_id)
