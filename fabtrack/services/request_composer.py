from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from schemas.payloads import BorrowItemDto, BorrowRequestCreate
from schemas.records import EquipmentRecord
from services.review_workflow import DraftValidationError, SubmissionInProgress


LOGGER = logging.getLogger("fabtrack.portal")
MIN_QUANTITY = 1
MAX_QUANTITY = 10

RequestSender = Callable[[BorrowRequestCreate], Awaitable[Any]]


def clamp_quantity(raw: Any) -> int:
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        return MIN_QUANTITY
    if value < MIN_QUANTITY:
        return MIN_QUANTITY
    return min(value, MAX_QUANTITY)


def filter_catalog(items: Iterable[EquipmentRecord], query: str | None) -> list[EquipmentRecord]:
    needle = (query or "").strip().lower()
    if not needle:
        return list(items)
    return [
        item
        for item in items
        if needle in item.name.lower() or needle in (item.category or "").lower()
    ]


@dataclass
class ComposerLine:
    quantity: int = MIN_QUANTITY
    description: str = ""


@dataclass
class ComposerDraft:
    lines: dict[int, ComposerLine] = field(default_factory=dict)
    collection_datetime: str = ""
    submitting: bool = False

    def remove(self, equipment_id: int) -> None:
        self.lines.pop(equipment_id, None)

    def apply_form(
        self,
        selected_ids: Iterable[int],
        *,
        quantities: Mapping[int, Any],
        descriptions: Mapping[int, str],
        collection_datetime: str | None,
    ) -> None:
        selected = list(dict.fromkeys(selected_ids))
        self.lines = {
            equipment_id: ComposerLine(
                quantity=clamp_quantity(quantities.get(equipment_id, MIN_QUANTITY)),
                description=(descriptions.get(equipment_id) or "").strip(),
            )
            for equipment_id in selected
        }
        self.collection_datetime = (collection_datetime or "").strip()

    def validate(self) -> list[str]:
        errors: list[str] = []
        if not self.lines:
            errors.append("Please select at least one item to borrow.")
        if not self.collection_datetime:
            errors.append("Please choose a collection date and time.")
        else:
            try:
                datetime.fromisoformat(self.collection_datetime)
            except ValueError:
                errors.append("Collection date and time is not valid.")
        return errors

    def build_payload(self) -> BorrowRequestCreate:
        collection = datetime.fromisoformat(self.collection_datetime).isoformat()
        return BorrowRequestCreate(
            items=[
                BorrowItemDto(equipmentID=equipment_id, quantity=line.quantity, description=line.description)
                for equipment_id, line in self.lines.items()
            ],
            collectionDateTime=collection,
        )

    async def submit(self, send: RequestSender) -> Any:
        errors = self.validate()
        if errors:
            raise DraftValidationError(errors)
        if self.submitting:
            raise SubmissionInProgress("Your request is already being submitted.")
        payload = self.build_payload()
        self.submitting = True
        try:
            result = await send(payload)
        finally:
            self.submitting = False
        LOGGER.info("Borrow request submitted items=%s", len(payload.items))
        self.clear()
        return result

    def clear(self) -> None:
        self.lines = {}
        self.collection_datetime = ""
