"""Reference entity schemas — wards and the surveyed buildings, families, people and businesses."""

from datetime import date, datetime
from typing import Any, Literal

from pydantic import Field

from fieldsurvey.schemas.forms import EntityType
from fieldsurvey.schemas.responses import AudioAsset, GeoLocation, ImageAsset, SyncStatus, WireModel


class EntityModel(WireModel):
    """Fields every locally stored entity carries. Timestamps are stamped by the store."""

    id: str
    sync_status: SyncStatus = SyncStatus.PENDING
    version: int = 1
    created_at: datetime | None = None
    updated_at: datetime | None = None


# ---------------------------------------------------------------------------
# Wards
# ---------------------------------------------------------------------------


class Geometry(WireModel):
    type: Literal["Polygon"] = "Polygon"
    coordinates: list[list[list[float]]]


class Ward(EntityModel):
    ward_number: int = Field(..., ge=1)
    ward_area_code: int
    geometry: Geometry


# ---------------------------------------------------------------------------
# Buildings
# ---------------------------------------------------------------------------


class BuildingAddress(WireModel):
    ward: int
    tole: str
    street_name: str | None = None
    house_number: str | None = None
    landmark: str | None = None


class Building(EntityModel):
    name: str | None = None
    address: BuildingAddress
    location: GeoLocation
    building_type: Literal["residential", "commercial", "mixed", "institutional"]
    construction_type: Literal["rcc", "load-bearing", "wooden", "other"]
    total_floors: int = Field(..., ge=0)
    construction_year: int | None = None
    land_area: float | None = None
    built_area: float | None = None
    images: list[ImageAsset] = Field(default_factory=list)
    family_ids: list[str] = Field(default_factory=list)
    business_ids: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# Families and individuals
# ---------------------------------------------------------------------------


class Family(EntityModel):
    building_id: str
    head_id: str
    name: str
    member_ids: list[str] = Field(default_factory=list)
    economic_status: Literal["low", "middle", "high"]
    monthly_income: float | None = None
    residency_type: Literal["owned", "rented", "other"]
    residency_since: datetime | None = None
    images: list[ImageAsset] | None = None
    audio: list[AudioAsset] | None = None
    metadata: dict[str, Any] | None = None


class PersonName(WireModel):
    first: str
    middle: str | None = None
    last: str


class Education(WireModel):
    level: Literal["none", "primary", "secondary", "bachelor", "master", "phd"]
    status: Literal["completed", "ongoing", "dropped"]
    institution: str | None = None


class Occupation(WireModel):
    type: str
    organization: str | None = None
    position: str | None = None
    monthly_income: float | None = None


class ContactInfo(WireModel):
    phone: str | None = None
    email: str | None = None
    emergency_contact: str | None = None
    website: str | None = None


class HealthInfo(WireModel):
    disability: bool | None = None
    chronic_illness: bool | None = None
    description: str | None = None


class Individual(EntityModel):
    family_id: str
    name: PersonName
    date_of_birth: date
    gender: Literal["male", "female", "other"]
    marital_status: Literal["single", "married", "widowed", "divorced"]
    education: Education | None = None
    occupation: Occupation | None = None
    contact: ContactInfo | None = None
    health_info: HealthInfo | None = None
    images: list[ImageAsset] | None = None
    documents: list[ImageAsset] | None = None
    metadata: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# Businesses
# ---------------------------------------------------------------------------


class Employees(WireModel):
    permanent: int = Field(0, ge=0)
    temporary: int = Field(0, ge=0)


class Premises(WireModel):
    floor_number: int
    area: float
    rent: float | None = None


class Turnover(WireModel):
    yearly: float
    currency: str


class Business(EntityModel):
    building_id: str
    name: str
    type: str
    registration_no: str | None = None
    ownership: Literal["sole", "partnership", "corporation", "other"]
    established_date: date
    owner_id: str
    employees: Employees = Field(default_factory=Employees)
    contact: ContactInfo = Field(default_factory=ContactInfo)
    premises: Premises
    turnover: Turnover | None = None
    images: list[ImageAsset] | None = None
    licenses: list[ImageAsset] | None = None
    metadata: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# Offline media assets
# ---------------------------------------------------------------------------


class Asset(EntityModel):
    uri: str
    type: Literal["image", "audio", "file"]
    entity_type: EntityType
    entity_id: str
    metadata: dict[str, Any] | None = None
