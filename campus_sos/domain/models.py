from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, computed_field, field_validator
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column, Index, String
from sqlmodel import Field, SQLModel

from campus_sos.domain.geo import LOCATION_UNAVAILABLE


def now_utc() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class AlertStatus(StrEnum):
    ACTIVE = "active"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"


class ChangeType(StrEnum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class EmergencyAlert(SQLModel, table=True):
    __tablename__ = "emergency_alerts"
    __table_args__ = (Index("ix_emergency_alerts_created_at_id", "created_at", "id"),)

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: str = Field(index=True)
    user_name: str
    user_type: str = Field(default="unknown")
    status: AlertStatus = Field(
        default=AlertStatus.ACTIVE,
        sa_column=Column(String, nullable=False, index=True),
    )
    location: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    additional_info: dict[str, Any] | None = Field(
        default=None,
        sa_column=Column(JSON, nullable=True),
    )
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class AlertEvent(SQLModel, table=True):
    __tablename__ = "alert_events"

    # Assigned by the database so every writer process shares one audit order.
    seq: int | None = Field(default=None, primary_key=True)
    event_id: str = Field(default_factory=lambda: str(uuid4()), unique=True, index=True)
    event_type: ChangeType = Field(sa_column=Column(String, nullable=False, index=True))
    alert_id: str = Field(index=True)
    actor_id: str | None = Field(default=None, index=True)
    ts: datetime = Field(default_factory=now_utc, index=True)
    old: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON, nullable=True))
    new: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON, nullable=True))


class Profile(SQLModel, table=True):
    __tablename__ = "profiles"

    id: str = Field(primary_key=True)
    full_name: str | None = None
    roll_number: str | None = Field(default=None, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class AlertRead(ORMReadModel):
    id: str
    user_id: str
    user_name: str
    user_type: str
    status: AlertStatus
    location: str | None
    latitude: float | None
    longitude: float | None
    additional_info: dict[str, Any] | None
    created_at: datetime
    updated_at: datetime

    @field_validator("created_at", "updated_at")
    @classmethod
    def _force_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def display_name(self) -> str:
        return self.user_name

    @computed_field  # type: ignore[prop-decorator]
    @property
    def roll_or_id(self) -> str | None:
        info = self.additional_info or {}
        roll = info.get("roll_number")
        return str(roll) if roll else None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def resolved(self) -> bool:
        return self.status != AlertStatus.ACTIVE

    @computed_field  # type: ignore[prop-decorator]
    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def location_label(self) -> str:
        info = self.additional_info or {}
        address = info.get("address")
        if isinstance(address, str) and address.strip():
            return address.strip()
        if self.location:
            return self.location
        return LOCATION_UNAVAILABLE

    def sort_key(self) -> tuple[datetime, str]:
        return (self.created_at, self.id)

    def to_row(self) -> dict[str, Any]:
        return self.model_dump(
            mode="json",
            exclude={"display_name", "roll_or_id", "resolved", "has_location", "location_label"},
        )


class ChangeEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_type: ChangeType = PydanticField(alias="eventType")
    new: AlertRead | None = None
    old: AlertRead | None = None
    seq: int = 0
    ts: datetime = PydanticField(default_factory=now_utc)
    actor_id: str | None = None

    @property
    def row(self) -> AlertRead | None:
        return self.new if self.new is not None else self.old

    @property
    def alert_id(self) -> str | None:
        row = self.row
        return row.id if row is not None else None


class AlertEventRead(ORMReadModel):
    event_id: str
    seq: int
    event_type: ChangeType
    alert_id: str
    actor_id: str | None
    ts: datetime
    old: dict[str, Any] | None
    new: dict[str, Any] | None


class LocationReport(BaseModel):
    latitude: float | None = None
    longitude: float | None = None
    accuracy_m: float | None = None
    address: str | None = None
    error: str | None = None


class SosRequest(BaseModel):
    location: LocationReport | None = None
    note: str | None = None


class SubmissionResult(BaseModel):
    alert: AlertRead
    call_uri: str
    call_placed: bool
    location_warning: str | None = None
    message: str


class AlertStatusRequest(BaseModel):
    status: AlertStatus


class MapPointRead(BaseModel):
    lat: float
    lon: float


class MapBoundsRead(BaseModel):
    south: float
    west: float
    north: float
    east: float


class MarkerKind(StrEnum):
    ALERT = "alert"
    SELF = "self"


class MarkerState(StrEnum):
    ACTIVE = "active"
    MUTED = "muted"


class ViewMode(StrEnum):
    FOCUS = "focus"
    FIT = "fit"
    DEFAULT = "default"


class MapMarkerRead(BaseModel):
    id: str
    kind: MarkerKind
    state: MarkerState
    point: MapPointRead
    label: str
    created_at: datetime | None = None


class MapViewRead(BaseModel):
    mode: ViewMode
    center: MapPointRead
    zoom: int
    bounds: MapBoundsRead | None = None
    markers: list[MapMarkerRead] = PydanticField(default_factory=list)
    unplotted_ids: list[str] = PydanticField(default_factory=list)
    width_px: int
    height_px: int
    invalidated: bool = False


class SosButtonPosition(BaseModel):
    x: float = PydanticField(ge=0)
    y: float = PydanticField(ge=0)
