"""
Neighbour-help board.

Loads every help request together with its response count, and exposes the
filters, statistics and actions of the help page. Response counts are loaded
one request at a time; a failed count degrades to zero rather than failing the
whole board.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

from . import client
from .constants import BUILDING_SEARCH_LIMIT, DEFAULT_HELP_CATEGORY, HOT_HELP_WINDOW_HOURS
from .errors import StoreError, ValidationFailure
from .models import Building, HelpDraft, HelpRequest, HelpStatus
from .session import SessionStore, get_session_store

logger = logging.getLogger(__name__)

SORT_NEWEST = "newest"
SORT_NO_RESPONSES = "noResponses"
SORT_HOT = "hot"

CATEGORY_ALL = "all"

MSG_FIELDS_REQUIRED = "Fill in building, title, description and a contact"
MSG_CREATE_FAILED = "Could not create the help request"
MSG_CLOSE_FAILED = "Could not close the help request"
MSG_RESPOND_FAILED = "Could not send your response"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def time_ago(created_at: datetime, now: Optional[datetime] = None) -> str:
    now = now or _now()
    seconds = int((now - created_at).total_seconds())
    if seconds < 60:
        return "just now"
    if seconds < 3600:
        return f"{seconds // 60} min ago"
    if seconds < 86400:
        return f"{seconds // 3600} h ago"
    return f"{seconds // 86400} d ago"


def is_hot(item: HelpRequest, now: Optional[datetime] = None) -> bool:
    now = now or _now()
    return now - item.created_at < timedelta(hours=HOT_HELP_WINDOW_HOURS)


def building_label(building: Building) -> str:
    return building.title


def search_buildings(query: str, buildings: Iterable[Building], limit: int = BUILDING_SEARCH_LIMIT) -> List[Building]:
    """Case-insensitive substring match on the building label."""
    needle = query.strip().lower()
    if not needle:
        return []
    found = []
    for building in buildings:
        if needle in building_label(building).lower():
            found.append(building)
            if len(found) >= limit:
                break
    return found


class HelpBoard:
    """State of the help page: items, response counts and the create form."""

    def __init__(self, api=None, session: Optional[SessionStore] = None) -> None:
        self._api = api if api is not None else client
        self._session = session
        self.items: List[HelpRequest] = []
        self.responses: Dict[int, int] = {}
        self.draft = HelpDraft()
        self.error = ""

    def _user_hash(self) -> str:
        session = self._session if self._session is not None else get_session_store()
        return session.user_hash()

    async def _count(self, help_id: int) -> int:
        try:
            return await self._api.get_help_responses(help_id)
        except StoreError as exc:
            logger.warning("Could not load response count for help %s: %s", help_id, exc)
            return 0

    async def load(self, building_id: Optional[int] = None) -> List[HelpRequest]:
        self.items = list(await self._api.get_help(building_id))
        responses = {}
        for item in self.items:
            responses[item.id] = await self._count(item.id)
        self.responses = responses
        logger.debug("Help board loaded %d requests", len(self.items))
        return self.items

    def response_count(self, help_id: int) -> int:
        return self.responses.get(help_id, 0)

    # -- views -----------------------------------------------------------------

    def filtered(
        self,
        building_id: Optional[int] = None,
        category: str = CATEGORY_ALL,
        no_responses_only: bool = False,
        sort: str = SORT_NEWEST,
        now: Optional[datetime] = None,
    ) -> List[HelpRequest]:
        items = [
            item for item in self.items
            if (building_id is None or item.building_id == building_id)
            and (category == CATEGORY_ALL or item.category == category)
            and (not no_responses_only or self.response_count(item.id) == 0)
        ]
        if sort == SORT_NEWEST:
            items.sort(key=lambda i: i.created_at, reverse=True)
        elif sort == SORT_NO_RESPONSES:
            items.sort(key=lambda i: self.response_count(i.id))
        elif sort == SORT_HOT:
            items.sort(key=lambda i: not is_hot(i, now))
        return items

    def stats(self, building_id: Optional[int] = None, now: Optional[datetime] = None) -> Dict[str, int]:
        now = now or _now()
        items = self.filtered(building_id=building_id, now=now)
        return {
            "total": len(items),
            "no_response": sum(1 for i in items if self.response_count(i.id) == 0),
            "today": sum(1 for i in items if i.created_at.date() == now.date()),
        }

    # -- form ------------------------------------------------------------------

    def prefill_building(self, building_id: int, buildings: Iterable[Building]) -> Optional[Building]:
        """Preselect the building named by a deep link, if it exists."""
        for building in buildings:
            if building.id == building_id:
                self.draft = self.draft.model_copy(update={"building_id": building.id})
                return building
        return None

    def update_draft(self, **fields) -> None:
        self.draft = self.draft.model_copy(update=fields)

    def _validate(self, draft: HelpDraft) -> HelpDraft:
        required = (draft.title, draft.description, draft.contact)
        if draft.building_id is None or not all(value.strip() for value in required):
            raise ValidationFailure(MSG_FIELDS_REQUIRED)
        return draft.model_copy(
            update={
                "title": draft.title.strip(),
                "description": draft.description.strip(),
                "contact": draft.contact.strip(),
            }
        )

    async def submit(self) -> Optional[HelpRequest]:
        self.error = ""
        try:
            draft = self._validate(self.draft)
        except ValidationFailure as exc:
            self.error = str(exc)
            return None
        try:
            created = await self._api.create_help(draft)
        except StoreError as exc:
            self.error = getattr(exc, "detail", None) or MSG_CREATE_FAILED
            logger.warning("Help request creation failed: %s", exc)
            return None
        self.draft = HelpDraft(category=DEFAULT_HELP_CATEGORY)
        await self.load()
        return created

    # -- item actions ----------------------------------------------------------

    async def close(self, help_id: int) -> bool:
        self.error = ""
        try:
            await self._api.close_help(help_id)
        except StoreError as exc:
            self.error = getattr(exc, "detail", None) or MSG_CLOSE_FAILED
            logger.warning("Closing help request %s failed: %s", help_id, exc)
            return False
        self.items = [
            item.model_copy(update={"status": HelpStatus.closed}) if item.id == help_id else item
            for item in self.items
        ]
        return True

    async def respond(self, help_id: int) -> Optional[int]:
        self.error = ""
        try:
            await self._api.respond_to_help(help_id, self._user_hash())
        except StoreError as exc:
            self.error = getattr(exc, "detail", None) or MSG_RESPOND_FAILED
            logger.warning("Responding to help request %s failed: %s", help_id, exc)
            return None
        self.responses[help_id] = await self._count(help_id)
        return self.responses[help_id]
