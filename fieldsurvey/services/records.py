"""Explicit row <-> schema conversion for every local table.

Each entity type has a plain serialize/deserialize pair: ``*_to_row`` turns a
schema object into column values (complex fields as JSON text) and
``*_from_row`` rebuilds the schema object from an ORM row. ``TABLES`` maps
each logical table name to its ORM model, schema type and converter pair.
"""

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, TypeAdapter, ValidationError

from fieldsurvey import models
from fieldsurvey.core.exceptions import RecordDeserializationError, UnknownTableError
from fieldsurvey.schemas import entities
from fieldsurvey.schemas.responses import (
    AudioAsset,
    FormResponse,
    GeoLocation,
    ImageAsset,
    MediaBundle,
    StepResponse,
    StoredResponse,
    SyncStatus,
)

logger = logging.getLogger(__name__)

_IMAGES = TypeAdapter(list[ImageAsset])
_AUDIO = TypeAdapter(list[AudioAsset])
_STRINGS = TypeAdapter(list[str])
_STEPS = TypeAdapter(list[StepResponse])


# ---------------------------------------------------------------------------
# JSON column helpers
# ---------------------------------------------------------------------------


def _dump(value: Any) -> str | None:
    """Serialize a schema object (or list of them) to JSON text; None stays None."""
    if value is None:
        return None
    if isinstance(value, BaseModel):
        return value.model_dump_json(by_alias=True)
    if isinstance(value, list) and value and isinstance(value[0], BaseModel):
        return json.dumps([item.model_dump(mode="json", by_alias=True) for item in value])
    return json.dumps(value)


def _load(text: str | None, adapter: TypeAdapter | type[BaseModel] | None = None) -> Any:
    if text is None:
        return None
    if adapter is None:
        return json.loads(text)
    if isinstance(adapter, TypeAdapter):
        return adapter.validate_json(text)
    return adapter.model_validate_json(text)


def _meta_columns(entity: entities.EntityModel) -> dict[str, Any]:
    return {"id": entity.id}


def _meta_fields(row: Any) -> dict[str, Any]:
    return {
        "id": row.id,
        "sync_status": SyncStatus(row.sync_status),
        "version": row.version,
        "created_at": row.created_at,
        "updated_at": row.updated_at,
    }


# ---------------------------------------------------------------------------
# Wards
# ---------------------------------------------------------------------------


def ward_to_row(ward: entities.Ward) -> dict[str, Any]:
    return {
        **_meta_columns(ward),
        "ward_number": ward.ward_number,
        "ward_area_code": ward.ward_area_code,
        "geometry": _dump(ward.geometry),
    }


def ward_from_row(row: models.Ward) -> entities.Ward:
    return entities.Ward(
        **_meta_fields(row),
        ward_number=row.ward_number,
        ward_area_code=row.ward_area_code,
        geometry=_load(row.geometry, entities.Geometry),
    )


# ---------------------------------------------------------------------------
# Buildings
# ---------------------------------------------------------------------------


def building_to_row(building: entities.Building) -> dict[str, Any]:
    return {
        **_meta_columns(building),
        "name": building.name,
        "ward": building.address.ward,
        "tole": building.address.tole,
        "street_name": building.address.street_name,
        "house_number": building.address.house_number,
        "landmark": building.address.landmark,
        "latitude": building.location.latitude,
        "longitude": building.location.longitude,
        "accuracy": building.location.accuracy,
        "altitude": building.location.altitude,
        "located_at": building.location.timestamp,
        "building_type": building.building_type,
        "construction_type": building.construction_type,
        "total_floors": building.total_floors,
        "construction_year": building.construction_year,
        "land_area": building.land_area,
        "built_area": building.built_area,
        "images": _dump(building.images) or "[]",
        "family_ids": json.dumps(building.family_ids),
        "business_ids": json.dumps(building.business_ids),
        "metadata_": _dump(building.metadata),
    }


def building_from_row(row: models.Building) -> entities.Building:
    return entities.Building(
        **_meta_fields(row),
        name=row.name,
        address=entities.BuildingAddress(
            ward=row.ward,
            tole=row.tole,
            street_name=row.street_name,
            house_number=row.house_number,
            landmark=row.landmark,
        ),
        location=GeoLocation(
            latitude=row.latitude,
            longitude=row.longitude,
            accuracy=row.accuracy,
            altitude=row.altitude,
            timestamp=row.located_at,
        ),
        building_type=row.building_type,
        construction_type=row.construction_type,
        total_floors=row.total_floors,
        construction_year=row.construction_year,
        land_area=row.land_area,
        built_area=row.built_area,
        images=_load(row.images, _IMAGES),
        family_ids=_load(row.family_ids, _STRINGS),
        business_ids=_load(row.business_ids, _STRINGS),
        metadata=_load(row.metadata_),
    )


# ---------------------------------------------------------------------------
# Families and individuals
# ---------------------------------------------------------------------------


def family_to_row(family: entities.Family) -> dict[str, Any]:
    return {
        **_meta_columns(family),
        "building_id": family.building_id,
        "head_id": family.head_id,
        "name": family.name,
        "member_ids": json.dumps(family.member_ids),
        "economic_status": family.economic_status,
        "monthly_income": family.monthly_income,
        "residency_type": family.residency_type,
        "residency_since": family.residency_since,
        "images": _dump(family.images),
        "audio": _dump(family.audio),
        "metadata_": _dump(family.metadata),
    }


def family_from_row(row: models.Family) -> entities.Family:
    return entities.Family(
        **_meta_fields(row),
        building_id=row.building_id,
        head_id=row.head_id,
        name=row.name,
        member_ids=_load(row.member_ids, _STRINGS),
        economic_status=row.economic_status,
        monthly_income=row.monthly_income,
        residency_type=row.residency_type,
        residency_since=row.residency_since,
        images=_load(row.images, _IMAGES),
        audio=_load(row.audio, _AUDIO),
        metadata=_load(row.metadata_),
    )


def individual_to_row(person: entities.Individual) -> dict[str, Any]:
    return {
        **_meta_columns(person),
        "family_id": person.family_id,
        "first_name": person.name.first,
        "middle_name": person.name.middle,
        "last_name": person.name.last,
        "date_of_birth": person.date_of_birth,
        "gender": person.gender,
        "marital_status": person.marital_status,
        "education": _dump(person.education),
        "occupation": _dump(person.occupation),
        "contact": _dump(person.contact),
        "health_info": _dump(person.health_info),
        "images": _dump(person.images),
        "documents": _dump(person.documents),
        "metadata_": _dump(person.metadata),
    }


def individual_from_row(row: models.Individual) -> entities.Individual:
    return entities.Individual(
        **_meta_fields(row),
        family_id=row.family_id,
        name=entities.PersonName(first=row.first_name, middle=row.middle_name, last=row.last_name),
        date_of_birth=row.date_of_birth,
        gender=row.gender,
        marital_status=row.marital_status,
        education=_load(row.education, entities.Education),
        occupation=_load(row.occupation, entities.Occupation),
        contact=_load(row.contact, entities.ContactInfo),
        health_info=_load(row.health_info, entities.HealthInfo),
        images=_load(row.images, _IMAGES),
        documents=_load(row.documents, _IMAGES),
        metadata=_load(row.metadata_),
    )


# ---------------------------------------------------------------------------
# Businesses and assets
# ---------------------------------------------------------------------------


def business_to_row(business: entities.Business) -> dict[str, Any]:
    return {
        **_meta_columns(business),
        "building_id": business.building_id,
        "name": business.name,
        "type": business.type,
        "registration_no": business.registration_no,
        "ownership": business.ownership,
        "established_date": business.established_date,
        "owner_id": business.owner_id,
        "employees": _dump(business.employees),
        "contact": _dump(business.contact),
        "premises": _dump(business.premises),
        "turnover": _dump(business.turnover),
        "images": _dump(business.images),
        "licenses": _dump(business.licenses),
        "metadata_": _dump(business.metadata),
    }


def business_from_row(row: models.Business) -> entities.Business:
    return entities.Business(
        **_meta_fields(row),
        building_id=row.building_id,
        name=row.name,
        type=row.type,
        registration_no=row.registration_no,
        ownership=row.ownership,
        established_date=row.established_date,
        owner_id=row.owner_id,
        employees=_load(row.employees, entities.Employees),
        contact=_load(row.contact, entities.ContactInfo),
        premises=_load(row.premises, entities.Premises),
        turnover=_load(row.turnover, entities.Turnover),
        images=_load(row.images, _IMAGES),
        licenses=_load(row.licenses, _IMAGES),
        metadata=_load(row.metadata_),
    )


def asset_to_row(asset: entities.Asset) -> dict[str, Any]:
    return {
        **_meta_columns(asset),
        "uri": asset.uri,
        "type": asset.type,
        "entity_type": asset.entity_type,
        "entity_id": asset.entity_id,
        "metadata_": _dump(asset.metadata),
    }


def asset_from_row(row: models.Asset) -> entities.Asset:
    return entities.Asset(
        **_meta_fields(row),
        uri=row.uri,
        type=row.type,
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        metadata=_load(row.metadata_),
    )


# ---------------------------------------------------------------------------
# Survey responses
# ---------------------------------------------------------------------------


def response_to_row(response: FormResponse) -> dict[str, Any]:
    """Content columns for a survey response. Sync bookkeeping is left to the store."""
    media = response.media or MediaBundle()
    return {
        "survey_id": response.form_id,
        "form_version": response.version,
        "entity_type": response.entity_type,
        "entity_id": response.entity_id,
        "responses": _dump(response.steps) if response.steps else "[]",
        "location": _dump(response.location),
        "images": _dump(media.images) if media.images else None,
        "audio": _dump(media.audio) if media.audio else None,
        "files": json.dumps(media.files) if media.files else None,
        "completed_by": response.submitted_by,
        "verified_by": response.verified_by,
        "status": response.status.value,
        "metadata_": _dump(response.metadata),
        "started_at": response.started_at,
        "completed_at": response.completed_at,
        "last_modified_at": response.last_modified_at,
    }


def response_from_row(row: models.SurveyResponse) -> StoredResponse:
    """Rebuild a StoredResponse from its row.

    Raises:
        RecordDeserializationError: If any JSON column is unreadable or invalid.
    """
    try:
        images = _load(row.images, _IMAGES)
        audio = _load(row.audio, _AUDIO)
        files = _load(row.files, _STRINGS)
        media = None
        if images or audio or files:
            media = MediaBundle(images=images or [], audio=audio or [], files=files or [])
        response = FormResponse(
            form_id=row.survey_id,
            version=row.form_version,
            entity_type=row.entity_type,
            entity_id=row.entity_id,
            steps=_load(row.responses, _STEPS),
            status=row.status,
            location=_load(row.location, GeoLocation),
            started_at=row.started_at,
            completed_at=row.completed_at,
            last_modified_at=row.last_modified_at,
            submitted_by=row.completed_by,
            verified_by=row.verified_by,
            media=media,
            metadata=_load(row.metadata_),
        )
    except (ValueError, ValidationError) as exc:
        raise RecordDeserializationError("survey_responses", row.id, str(exc)) from exc
    return StoredResponse(
        id=row.id,
        response=response,
        sync_status=SyncStatus(row.sync_status),
        version=row.version,
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_synced_at=row.last_synced_at,
    )


def response_to_wire(stored: StoredResponse) -> dict[str, Any]:
    """Payload pushed to the server for one survey response."""
    return {
        "id": stored.id,
        **stored.response.model_dump(mode="json", by_alias=True),
        "revision": stored.version,
        "createdAt": stored.created_at.isoformat(),
        "updatedAt": stored.updated_at.isoformat(),
    }


# ---------------------------------------------------------------------------
# Table registry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TableSpec:
    name: str
    model: type
    schema: type[entities.EntityModel] | None
    to_row: Callable[[Any], dict[str, Any]]
    from_row: Callable[[Any], Any]

    def deserialize(self, row: Any) -> Any:
        try:
            return self.from_row(row)
        except RecordDeserializationError:
            raise
        except (ValueError, ValidationError) as exc:
            raise RecordDeserializationError(self.name, row.id, str(exc)) from exc


TABLES: dict[str, TableSpec] = {
    spec.name: spec
    for spec in (
        TableSpec("wards", models.Ward, entities.Ward, ward_to_row, ward_from_row),
        TableSpec("buildings", models.Building, entities.Building, building_to_row, building_from_row),
        TableSpec("families", models.Family, entities.Family, family_to_row, family_from_row),
        TableSpec("individuals", models.Individual, entities.Individual, individual_to_row, individual_from_row),
        TableSpec("businesses", models.Business, entities.Business, business_to_row, business_from_row),
        TableSpec("assets", models.Asset, entities.Asset, asset_to_row, asset_from_row),
        TableSpec("survey_responses", models.SurveyResponse, None, response_to_row, response_from_row),
    )
}

# Tables a pull may write to; survey responses only flow device -> server.
REFERENCE_TABLES = ("wards", "buildings", "families", "individuals", "businesses", "assets")


def get_table(name: str) -> TableSpec:
    try:
        return TABLES[name]
    except KeyError:
        raise UnknownTableError(name) from None
