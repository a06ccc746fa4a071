from __future__ import annotations

import logging
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from schemas.payloads import (
    ApprovalSubmission,
    BorrowRequestCreate,
    EquipmentUpsert,
    LoginPayload,
    SignupPayload,
)
from schemas.records import (
    BorrowedItemRecord,
    BorrowRequestRecord,
    CurrentUser,
    EquipmentRecord,
    LoginResponse,
)
from services.backend_client import BackendClient, BackendError


LOGGER = logging.getLogger("fabtrack.backend")
RecordT = TypeVar("RecordT", bound=BaseModel)

_LIST_KEYS = ("equipmentList", "requests", "items", "data", "results")


def _unwrap_list(payload: Any, *extra_keys: str) -> list[Any]:
    if payload is None:
        return []
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in (*extra_keys, *_LIST_KEYS):
            value = payload.get(key)
            if isinstance(value, list):
                return value
    raise BackendError("Unexpected response from server.")


def _parse_rows(model: type[RecordT], rows: list[Any]) -> list[RecordT]:
    records: list[RecordT] = []
    for row in rows:
        try:
            records.append(model.model_validate(row))
        except ValidationError as exc:
            LOGGER.warning("Skipping malformed %s row: %s", model.__name__, exc.errors()[:1])
    return records


def _parse_one(model: type[RecordT], payload: Any) -> RecordT:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise BackendError("Unexpected response from server.") from exc


async def login(client: BackendClient, email: str, password: str) -> LoginResponse:
    payload = LoginPayload(email=email, password=password)
    return _parse_one(LoginResponse, await client.post("/api/auth/login", payload.model_dump()))


async def signup(client: BackendClient, payload: SignupPayload) -> dict:
    body = await client.post("/api/auth/signup", payload.model_dump())
    return body if isinstance(body, dict) else {}


async def get_current_user(client: BackendClient) -> CurrentUser:
    body = await client.get("/api/auth/me")
    if isinstance(body, dict) and isinstance(body.get("user"), dict):
        body = body["user"]
    return _parse_one(CurrentUser, body)


async def list_equipment(client: BackendClient) -> list[EquipmentRecord]:
    rows = _unwrap_list(await client.get("/api/equipment"), "equipment")
    return _parse_rows(EquipmentRecord, rows)


async def create_equipment(client: BackendClient, name: str) -> Any:
    return await client.post("/api/equipment", EquipmentUpsert(name=name).model_dump())


async def update_equipment(client: BackendClient, equipment_id: int, name: str) -> Any:
    return await client.put(f"/api/equipment/{int(equipment_id)}", EquipmentUpsert(name=name).model_dump())


async def delete_equipment(client: BackendClient, equipment_id: int) -> Any:
    return await client.delete(f"/api/equipment/{int(equipment_id)}")


async def submit_borrow_request(client: BackendClient, payload: BorrowRequestCreate) -> Any:
    return await client.post("/api/borrow/request", payload.model_dump())


async def list_pending_requests(client: BackendClient) -> list[BorrowRequestRecord]:
    rows = _unwrap_list(await client.get("/api/borrow/pending-requests"), "pendingRequests")
    return _parse_rows(BorrowRequestRecord, rows)


async def list_all_requests(client: BackendClient) -> list[BorrowRequestRecord]:
    rows = _unwrap_list(await client.get("/api/borrow/all-requests"), "allRequests")
    return _parse_rows(BorrowRequestRecord, rows)


async def list_approved_requests(client: BackendClient) -> list[BorrowRequestRecord]:
    return [record for record in await list_all_requests(client) if not record.is_pending]


async def list_request_items(client: BackendClient, request_id: int) -> list[BorrowedItemRecord]:
    rows = _unwrap_list(await client.get(f"/api/borrow/{int(request_id)}/items"), "borrowedItems")
    return _parse_rows(BorrowedItemRecord, rows)


async def approve_request(client: BackendClient, request_id: int, payload: ApprovalSubmission) -> Any:
    return await client.put(f"/api/borrow/approve/{int(request_id)}", payload.model_dump())


async def mark_returned(client: BackendClient, request_id: int) -> Any:
    return await client.put(f"/api/borrow/return/{int(request_id)}")


async def send_reminders(client: BackendClient) -> Any:
    return await client.post("/api/borrow/send-reminder")


async def fetch_logs(client: BackendClient) -> Any:
    return await client.get("/api/borrow/logs")
