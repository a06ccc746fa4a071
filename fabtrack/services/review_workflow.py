from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from schemas.payloads import ApprovalItemDto, ApprovalSubmission
from schemas.records import BorrowedItemRecord, BorrowRequestRecord
from services.list_snapshot import ListSnapshot


REVIEW_LOGGER = logging.getLogger("fabtrack.review")

ListLoader = Callable[[], Awaitable[list[BorrowRequestRecord]]]
ItemLoader = Callable[[int], Awaitable[list[BorrowedItemRecord]]]
ApprovalSender = Callable[[int, ApprovalSubmission], Awaitable[Any]]
ReturnSender = Callable[[int], Awaitable[Any]]


class DraftValidationError(ValueError):
    def __init__(self, messages: list[str]):
        super().__init__("; ".join(messages))
        self.messages = messages


class ItemsNotLoaded(LookupError):
    pass


class SubmissionInProgress(RuntimeError):
    pass


@dataclass
class ItemDraft:
    approve: bool = True
    serial_number: str = ""
    description: str = ""


@dataclass
class ReviewState:
    """Admin review state for one browser session."""

    pending: ListSnapshot = field(default_factory=ListSnapshot)
    approved: ListSnapshot = field(default_factory=ListSnapshot)
    item_cache: dict[int, list[BorrowedItemRecord]] = field(default_factory=dict)
    drafts: dict[int, dict[int, ItemDraft]] = field(default_factory=dict)
    return_dates: dict[int, str] = field(default_factory=dict)
    expanded: set[int] = field(default_factory=set)
    submitting: set[int] = field(default_factory=set)
    returning: set[int] = field(default_factory=set)

    async def refresh_pending(self, load: ListLoader) -> bool:
        ok = await self.pending.refresh(load, "Failed to load pending requests.")
        if ok:
            live_ids = {record.id for record in self.pending.rows}
            for request_id in list(self.item_cache):
                if request_id not in live_ids:
                    self.forget(request_id)
        return ok

    async def refresh_approved(self, load: ListLoader) -> bool:
        return await self.approved.refresh(load, "Failed to load approved requests.")

    async def expand(self, request_id: int, load_items: ItemLoader) -> None:
        if request_id not in self.item_cache:
            items = await load_items(request_id)
            self.item_cache[request_id] = list(items)
            self.drafts[request_id] = {
                item.id: ItemDraft(
                    approve=True,
                    serial_number=(item.serialNumber or "").strip(),
                    description=item.description,
                )
                for item in items
            }
        self.expanded.add(request_id)

    def collapse(self, request_id: int) -> None:
        self.expanded.discard(request_id)

    def is_expanded(self, request_id: int) -> bool:
        return request_id in self.expanded and request_id in self.item_cache

    def _draft(self, request_id: int) -> dict[int, ItemDraft]:
        draft = self.drafts.get(request_id)
        if draft is None:
            raise ItemsNotLoaded(f"Items for request {request_id} are not loaded.")
        return draft

    def toggle_item(self, request_id: int, item_id: int) -> bool:
        draft = self._draft(request_id)
        if item_id not in draft:
            raise ItemsNotLoaded(f"Item {item_id} is not part of request {request_id}.")
        draft[item_id].approve = not draft[item_id].approve
        return draft[item_id].approve

    def set_all(self, request_id: int, approve: bool) -> None:
        for item in self._draft(request_id).values():
            item.approve = approve

    def set_serial_number(self, request_id: int, item_id: int, serial_number: str) -> None:
        draft = self._draft(request_id)
        if item_id in draft:
            draft[item_id].serial_number = (serial_number or "").strip()

    def apply_form(
        self,
        request_id: int,
        *,
        serial_numbers: Mapping[int, str],
        descriptions: Mapping[int, str],
        return_date: str | None = None,
    ) -> None:
        draft = self._draft(request_id)
        for item_id, serial in serial_numbers.items():
            self.set_serial_number(request_id, item_id, serial)
        for item_id, description in descriptions.items():
            if item_id in draft:
                draft[item_id].description = description or ""
        if return_date is not None:
            self.return_dates[request_id] = return_date.strip()

    def validate(self, request_id: int, return_date: str | None) -> list[str]:
        errors: list[str] = []
        draft = self.drafts.get(request_id) or {}
        if not any(item.approve for item in draft.values()):
            errors.append("Select at least one item to approve.")
        value = (return_date or "").strip()
        if not value:
            errors.append("Select a return date.")
        else:
            try:
                datetime.fromisoformat(value)
            except ValueError:
                errors.append("Return date is not a valid date.")
        return errors

    def build_submission(self, request_id: int, return_date: str) -> ApprovalSubmission:
        draft = self._draft(request_id)
        items = [
            ApprovalItemDto(
                borrowedItemID=item.id,
                allow=draft[item.id].approve,
                serialNumber=draft[item.id].serial_number,
                description=draft[item.id].description,
            )
            for item in self.item_cache.get(request_id, [])
            if item.id in draft
        ]
        return ApprovalSubmission(returnDate=return_date.strip(), items=items)

    async def submit_approval(
        self,
        request_id: int,
        return_date: str | None,
        send: ApprovalSender,
        reload_approved: ListLoader,
    ) -> None:
        errors = self.validate(request_id, return_date)
        if errors:
            raise DraftValidationError(errors)
        if request_id in self.submitting:
            raise SubmissionInProgress(f"Request {request_id} is already being submitted.")

        submission = self.build_submission(request_id, return_date or "")
        self.submitting.add(request_id)
        try:
            await send(request_id, submission)
        finally:
            self.submitting.discard(request_id)

        approved_count = sum(1 for item in submission.items if item.allow)
        REVIEW_LOGGER.info(
            "Approval submitted request_id=%s approved_items=%s total_items=%s",
            request_id,
            approved_count,
            len(submission.items),
        )
        self.pending.rows = [record for record in self.pending.rows if record.id != request_id]
        self.forget(request_id)
        await self.refresh_approved(reload_approved)

    async def mark_returned(self, request_id: int, send: ReturnSender, reload_approved: ListLoader) -> None:
        if request_id in self.returning:
            raise SubmissionInProgress(f"Request {request_id} is already being returned.")
        self.returning.add(request_id)
        try:
            await send(request_id)
        finally:
            self.returning.discard(request_id)

        REVIEW_LOGGER.info("Request marked returned request_id=%s", request_id)
        if not await self.refresh_approved(reload_approved):
            self.approved.rows = [
                record.model_copy(update={"status": "Returned"}) if record.id == request_id else record
                for record in self.approved.rows
            ]

    def forget(self, request_id: int) -> None:
        self.item_cache.pop(request_id, None)
        self.drafts.pop(request_id, None)
        self.return_dates.pop(request_id, None)
        self.expanded.discard(request_id)
