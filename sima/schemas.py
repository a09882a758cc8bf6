# sima/schemas.py
from datetime import datetime
from pydantic import BaseModel, Field, EmailStr, field_validator
from typing import Optional, Literal

AccountType = Literal["ambulance", "police", "firefighter", "admin"]
InstanceType = Literal["ambulance", "police", "firefighter"]
ReportStatus = Literal["pending", "process", "success", "error", "fiktif"]


class UserCreate(BaseModel):
    full_name: str = Field(min_length=2, max_length=255)
    email: EmailStr
    password: str = Field(min_length=6)
    phone: Optional[str] = None
    account_type: AccountType = "admin"


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class OrganizationUpsert(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    lat_long: str = Field(description='"latitude, longitude"')
    instance_type: InstanceType


class StatusChange(BaseModel):
    status: ReportStatus
    confirmed: bool = False


class TransferRequest(BaseModel):
    organization_id: int = Field(ge=1)
    confirmed: bool = False


class SoundPreference(BaseModel):
    enabled: bool


class ReportIntake(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    address: Optional[str] = None
    image_url: Optional[str] = None
    type: InstanceType
    user_id: Optional[int] = None


# ---- Record yang sudah divalidasi di batas backend ----

class ReporterRecord(BaseModel):
    id: int
    full_name: str
    phone: Optional[str] = None


class ReportRecord(BaseModel):
    id: int
    title: str
    description: Optional[str] = None
    status: str
    latitude: float
    longitude: float
    address: Optional[str] = None
    image_url: Optional[str] = None
    type: Optional[str] = None
    user_id: Optional[int] = None
    reporter: Optional[ReporterRecord] = None


class OrganizationRecord(BaseModel):
    id: int
    name: str
    latitude: float
    longitude: float
    user_id: int
    instance_type: str


class AssignmentRecord(BaseModel):
    id: int
    assigned_at: datetime
    status: str
    distance: float = Field(ge=0)
    report: ReportRecord
    organization: OrganizationRecord

    @field_validator("status")
    @classmethod
    def _status_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("status kosong")
        return v.strip()
