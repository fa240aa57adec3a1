# FILE: models/schema.py
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

NUMERIC_TYPES = frozenset({"int", "integer", "float", "decimal", "number", "numeric"})


class SourceFamily(str, Enum):
    RELATIONAL = "relational"
    DOCUMENT = "document"


class FieldSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    type: str = "string"
    sensitivity: FrozenSet[str] = Field(default_factory=frozenset)

    @field_validator("sensitivity", mode="before")
    @classmethod
    def normalize_tags(cls, v):
        if v is None:
            return frozenset()
        if isinstance(v, str):
            v = [v]
        return frozenset(str(tag).strip().lower() for tag in v if str(tag).strip())

    def is_numeric(self) -> bool:
        return self.type.lower() in NUMERIC_TYPES


class ResourceSpec(BaseModel):
    """A table or collection as the catalog describes it."""

    model_config = ConfigDict(frozen=True)

    resource_id: str
    resource_class: str
    owner: Optional[str] = None
    fields: Tuple[FieldSpec, ...] = ()

    @field_validator("resource_class", mode="before")
    @classmethod
    def normalize_class(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    def get_field(self, name: str) -> Optional[FieldSpec]:
        for spec in self.fields:
            if spec.name == name:
                return spec
        return None

    def field_names(self) -> Tuple[str, ...]:
        return tuple(spec.name for spec in self.fields)


class SchemaSnapshot(BaseModel):
    """
    Immutable, versioned view of one data source.
    Versions increase monotonically per source.
    """

    model_config = ConfigDict(frozen=True)

    source_id: str
    family: SourceFamily
    version: int = Field(..., ge=1)
    resources: Tuple[ResourceSpec, ...] = ()

    def get_resource(self, resource_id: str) -> Optional[ResourceSpec]:
        for resource in self.resources:
            if resource.resource_id == resource_id:
                return resource
        return None

    def sensitivity_tags(self) -> Dict[str, FrozenSet[str]]:
        """`resource.field` → tags, for every tagged field."""
        return {
            f"{resource.resource_id}.{spec.name}": spec.sensitivity
            for resource in self.resources
            for spec in resource.fields
            if spec.sensitivity
        }
