from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


STATUS_LABELS = {
    "pending": "Pending",
    "approved": "Approved",
    "rejected": "Rejected",
    "returned": "Returned",
    "overdue": "Overdue",
}
_TRUE_AVAILABILITY = {"1", "true", "yes", "available", "in-stock", "instock"}


def normalize_status(raw: Any) -> str:
    value = str(raw or "").strip()
    if not value:
        return "Pending"
    return STATUS_LABELS.get(value.lower(), value)


def parse_timestamp(value: Any) -> Optional[datetime]:
    text = str(value or "").strip()
    if not text:
        return None
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None


def _flatten_user(data: Any, *keys: str) -> Any:
    if not isinstance(data, dict):
        return data
    for key in keys:
        nested = data.get(key)
        if isinstance(nested, dict):
            merged = dict(data)
            merged.setdefault("userName", nested.get("name") or nested.get("Name"))
            merged.setdefault("userEmail", nested.get("email") or nested.get("Email"))
            return merged
    return data


class EquipmentRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: int = Field(validation_alias=AliasChoices("id", "equipmentID", "EquipmentID", "equipmentId"))
    name: str = Field(validation_alias=AliasChoices("name", "Name", "equipmentName", "EquipmentName"))
    category: Optional[str] = Field(None, validation_alias=AliasChoices("category", "Category"))
    quantity: Optional[int] = Field(
        None,
        validation_alias=AliasChoices("quantity", "Quantity", "availableQuantity", "AvailableQuantity"),
    )
    available: bool = Field(
        True,
        validation_alias=AliasChoices("available", "Available", "isAvailable", "IsAvailable", "availability", "Availability"),
    )

    @field_validator("available", mode="before")
    @classmethod
    def _coerce_available(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower() in _TRUE_AVAILABILITY
        if value is None:
            return True
        return value


class BorrowRequestRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: int = Field(
        validation_alias=AliasChoices("id", "requestID", "RequestID", "borrowRequestID", "BorrowRequestID", "requestId")
    )
    requester: str = Field(
        "",
        validation_alias=AliasChoices("requester", "Requester", "userName", "UserName", "studentName", "requestedBy", "name"),
    )
    requesterEmail: Optional[str] = Field(None, validation_alias=AliasChoices("userEmail", "UserEmail", "email", "Email"))
    status: str = Field("Pending", validation_alias=AliasChoices("status", "Status"))
    borrowDate: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("borrowDate", "BorrowDate", "requestDate", "RequestDate", "createdAt"),
    )
    collectionDateTime: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("collectionDateTime", "CollectionDateTime", "collectionDate"),
    )
    returnDate: Optional[str] = Field(None, validation_alias=AliasChoices("returnDate", "ReturnDate", "dueDate"))

    @model_validator(mode="before")
    @classmethod
    def _flatten_requester(cls, data: Any) -> Any:
        return _flatten_user(data, "user", "User", "student", "Student")

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> str:
        return normalize_status(value)

    @field_validator("requester", mode="before")
    @classmethod
    def _requester_text(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("borrowDate", "collectionDateTime", "returnDate", mode="before")
    @classmethod
    def _date_text(cls, value: Any) -> Any:
        if value is None or value == "":
            return None
        return str(value)

    @property
    def is_pending(self) -> bool:
        return self.status.lower() == "pending"

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        due = parse_timestamp(self.returnDate)
        if due is None or self.status != "Approved":
            return False
        if due.tzinfo is None:
            due = due.replace(tzinfo=timezone.utc)
        return due < (now or datetime.now(timezone.utc))


class BorrowedItemRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: int = Field(
        validation_alias=AliasChoices("id", "borrowedItemID", "BorrowedItemID", "borrowedItemId", "itemID", "ItemID")
    )
    equipmentID: Optional[int] = Field(
        None,
        validation_alias=AliasChoices("equipmentID", "EquipmentID", "equipmentId"),
    )
    equipmentName: str = Field(
        "",
        validation_alias=AliasChoices("equipmentName", "EquipmentName", "name", "Name"),
    )
    quantity: int = Field(1, validation_alias=AliasChoices("quantity", "Quantity"))
    description: str = Field("", validation_alias=AliasChoices("description", "Description"))
    serialNumber: Optional[str] = Field(None, validation_alias=AliasChoices("serialNumber", "SerialNumber"))
    allow: Optional[bool] = Field(None, validation_alias=AliasChoices("allow", "Allow", "approved", "isApproved"))

    @field_validator("equipmentName", "description", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return "" if value is None else str(value)


class CurrentUser(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = Field(None, validation_alias=AliasChoices("id", "userID", "UserID", "userId"))
    name: str = Field("", validation_alias=AliasChoices("name", "Name", "fullName"))
    email: str = Field("", validation_alias=AliasChoices("email", "Email"))
    role: Optional[str] = Field(None, validation_alias=AliasChoices("role", "Role"))

    @field_validator("id", mode="before")
    @classmethod
    def _id_text(cls, value: Any) -> Any:
        return None if value is None else str(value)

    @field_validator("name", "email", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return "" if value is None else str(value)


class LoginResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    token: str = Field(validation_alias=AliasChoices("token", "Token", "accessToken", "access_token"))
    role: Optional[str] = Field(None, validation_alias=AliasChoices("role", "Role"))
    user: Optional[CurrentUser] = Field(None, validation_alias=AliasChoices("user", "User"))
