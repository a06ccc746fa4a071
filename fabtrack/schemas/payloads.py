from typing import List

from pydantic import BaseModel, ConfigDict


class LoginPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: str
    password: str


class SignupPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    email: str
    password: str
    role: str = "Student"
    major: str
    yearGroup: str


class EquipmentUpsert(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str


class BorrowItemDto(BaseModel):
    model_config = ConfigDict(extra="forbid")

    equipmentID: int
    quantity: int = 1
    description: str = ""


class BorrowRequestCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    items: List[BorrowItemDto] = []
    collectionDateTime: str


class ApprovalItemDto(BaseModel):
    model_config = ConfigDict(extra="forbid")

    borrowedItemID: int
    allow: bool
    serialNumber: str = ""
    description: str = ""


class ApprovalSubmission(BaseModel):
    model_config = ConfigDict(extra="forbid")

    returnDate: str
    items: List[ApprovalItemDto] = []
