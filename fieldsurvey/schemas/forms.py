"""Form configuration schemas — steps, sections, fields, rules and dependencies.

Form configs arrive as JSON documents with camelCase keys. Every model here
is frozen: a config is never mutated once parsed.
"""

import logging
from collections.abc import Iterator
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

EntityType = Literal["building", "family", "individual", "business"]
DependencyOperator = Literal["equals", "notEquals", "contains", "greaterThan", "lessThan"]
ValidationMode = Literal["onChange", "onBlur", "onSubmit"]
RuleType = Literal["required", "min", "max", "minLength", "maxLength", "pattern", "email", "url", "phone"]


class ConfigModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Rules and dependencies
# ---------------------------------------------------------------------------


class ValidationRule(ConfigModel):
    type: RuleType
    value: Any = None
    message: str | None = None

    @model_validator(mode="after")
    def _value_present(self) -> "ValidationRule":
        if self.type in ("min", "max", "minLength", "maxLength", "pattern") and self.value is None:
            raise ValueError(f"Validation rule '{self.type}' needs a value")
        return self


class FieldDependency(ConfigModel):
    """Visibility condition on another field's value, addressed by dotted path."""

    field: str = Field(..., min_length=1)
    operator: DependencyOperator
    value: Any = None


class SelectOption(ConfigModel):
    label: str
    value: str | int | float
    icon: str | None = None
    disabled: bool = False
    metadata: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# Field variants
# ---------------------------------------------------------------------------


class BaseField(ConfigModel):
    id: str = Field(..., min_length=1)
    label: str
    description: str | None = None
    placeholder: str | None = None
    default_value: Any = None
    required: bool = False
    disabled: bool = False
    hidden: bool = False
    validation: tuple[ValidationRule, ...] = ()
    dependencies: tuple[FieldDependency, ...] = ()
    dependency_groups: tuple[tuple[FieldDependency, ...], ...] = ()
    metadata: dict[str, Any] | None = None


class TextField(BaseField):
    type: Literal["text", "email", "phone", "textarea"]
    min_length: int | None = Field(None, ge=0)
    max_length: int | None = Field(None, ge=0)
    pattern: str | None = None


class NumberField(BaseField):
    type: Literal["number"]
    min: float | None = None
    max: float | None = None
    step: float = 1
    unit: str | None = None

    @model_validator(mode="after")
    def _check_bounds(self) -> "NumberField":
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError(f"Field '{self.id}': min ({self.min}) is greater than max ({self.max})")
        return self


class ChoiceField(BaseField):
    type: Literal["select", "multiselect", "radio"]
    options: tuple[SelectOption, ...] = Field(..., min_length=1)
    multiple: bool = False
    searchable: bool = False
    max_select: int | None = Field(None, ge=1)

    @property
    def allows_many(self) -> bool:
        return self.type == "multiselect" or self.multiple


class CheckboxField(BaseField):
    type: Literal["checkbox"]


class DateField(BaseField):
    type: Literal["date", "time"]


class GeoField(BaseField):
    type: Literal["geo"]
    require_accuracy: float | None = Field(None, gt=0)
    required_fields: tuple[str, ...] = ()


class MediaField(BaseField):
    type: Literal["image", "audio", "file"]
    max_size: int | None = Field(None, gt=0)  # bytes per asset
    accepted_types: tuple[str, ...] = ()
    max_files: int | None = Field(None, ge=1)
    quality: float | None = None
    compress: bool = False


class RelationshipField(BaseField):
    type: Literal["relationship"]
    relation_to: EntityType
    multiple: bool = False
    search_fields: tuple[str, ...] = ()
    display_field: str | None = None


FieldConfig = Annotated[
    TextField | NumberField | ChoiceField | CheckboxField | DateField | GeoField | MediaField | RelationshipField,
    Field(discriminator="type"),
]

KNOWN_FIELD_TYPES = frozenset(
    {
        "text", "email", "phone", "textarea",
        "number",
        "select", "multiselect", "radio",
        "checkbox",
        "date", "time",
        "geo",
        "image", "audio", "file",
        "relationship",
    }
)


# ---------------------------------------------------------------------------
# Layout
# ---------------------------------------------------------------------------


class FormSection(ConfigModel):
    id: str = Field(..., min_length=1)
    title: str
    description: str | None = None
    fields: tuple[FieldConfig, ...] = ()
    dependencies: tuple[FieldDependency, ...] = ()
    dependency_groups: tuple[tuple[FieldDependency, ...], ...] = ()
    collapsed: bool = False
    metadata: dict[str, Any] | None = None

    @field_validator("fields", mode="before")
    @classmethod
    def _skip_unknown_field_types(cls, value: Any) -> Any:
        """Drop fields with an unrecognised type tag instead of rejecting the whole form."""
        if not isinstance(value, (list, tuple)):
            return value
        kept = []
        for raw in value:
            if isinstance(raw, dict) and raw.get("type") not in KNOWN_FIELD_TYPES:
                logger.warning("Skipping field %r with unknown type %r", raw.get("id"), raw.get("type"))
                continue
            kept.append(raw)
        return kept


class FormStep(ConfigModel):
    id: str = Field(..., min_length=1)
    title: str
    description: str | None = None
    sections: tuple[FormSection, ...] = ()
    dependencies: tuple[FieldDependency, ...] = ()
    dependency_groups: tuple[tuple[FieldDependency, ...], ...] = ()
    validation_mode: ValidationMode = "onChange"
    metadata: dict[str, Any] | None = None


class FormSettings(ConfigModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True, extra="allow")

    save_as_draft: bool = True
    require_location: bool = False
    offline_support: bool = True
    auto_save: bool = False
    auto_save_interval: int = Field(30000, gt=0)  # milliseconds
    media_upload_strategy: Literal["immediate", "delayed", "manual"] = "delayed"
    validation_strategy: Literal["immediate", "onBlur", "onSubmit"] = "immediate"


class FormConfig(ConfigModel):
    """Complete, immutable form definition."""

    id: str = Field(..., min_length=1)
    version: str
    title: str
    description: str | None = None
    type: EntityType
    steps: tuple[FormStep, ...] = Field(..., min_length=1)
    metadata: dict[str, Any] | None = None
    settings: FormSettings = FormSettings()

    @model_validator(mode="after")
    def _unique_field_ids(self) -> "FormConfig":
        seen: set[str] = set()
        for _, _, _, form_field in self.iter_fields():
            if form_field.id in seen:
                raise ValueError(f"Duplicate field id '{form_field.id}' in form '{self.id}'")
            seen.add(form_field.id)
        return self

    @property
    def total_steps(self) -> int:
        return len(self.steps)

    def iter_fields(self) -> Iterator[tuple[int, FormStep, FormSection, "FieldConfig"]]:
        """Yield (step_index, step, section, field) in declaration order."""
        for index, step in enumerate(self.steps):
            for section in step.sections:
                for form_field in section.fields:
                    yield index, step, section, form_field
