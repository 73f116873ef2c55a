"""Asset scope resolution.

A definition's (scope_type, scope_config) pair is parsed into one of a
closed set of scope variants, and each variant produces an AssetFilter.
Every AssetFilter carries the disposed-asset guard; custom criteria are
restricted to known asset fields and can only narrow the selection.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError

from audit_engine.config import get_disposed_statuses
from audit_engine.errors import InvalidScopeType, ValidationError

SCOPE_TYPES = ("all", "department", "location", "category", "custom_filter")

# Asset fields a custom filter may match on
CUSTOM_FILTER_FIELDS = frozenset({
    "department",
    "location",
    "category",
    "status",
    "asset_type",
    "manufacturer",
    "model",
    "vendor",
    "assigned_to",
    "condition",
})


class AssetFilter(BaseModel):
    """Predicate over asset records: exact-match criteria minus disposed assets.

    criteria maps an asset field to the values it may take; an asset
    matches when every criterion holds and its status is not excluded.
    """

    model_config = ConfigDict(frozen=True)

    criteria: dict[str, tuple[str, ...]] = Field(default_factory=dict)
    excluded_statuses: frozenset[str]

    def matches(self, asset: Mapping[str, Any]) -> bool:
        if asset.get("status") in self.excluded_statuses:
            return False
        return all(asset.get(name) in values for name, values in self.criteria.items())

    def __call__(self, asset: Mapping[str, Any]) -> bool:
        return self.matches(asset)


class _ScopeBase(BaseModel):
    def criteria(self) -> dict[str, tuple[str, ...]]:
        return {}

    def to_filter(self, excluded_statuses: frozenset[str] | None = None) -> AssetFilter:
        excluded = get_disposed_statuses() if excluded_statuses is None else excluded_statuses
        return AssetFilter(criteria=self.criteria(), excluded_statuses=frozenset(excluded))


class AllScope(_ScopeBase):
    scope_type: Literal["all"] = "all"


class DepartmentScope(_ScopeBase):
    scope_type: Literal["department"] = "department"
    department: str = Field(min_length=1)

    def criteria(self) -> dict[str, tuple[str, ...]]:
        return {"department": (self.department,)}


class LocationScope(_ScopeBase):
    scope_type: Literal["location"] = "location"
    location: str = Field(min_length=1)

    def criteria(self) -> dict[str, tuple[str, ...]]:
        return {"location": (self.location,)}


class CategoryScope(_ScopeBase):
    scope_type: Literal["category"] = "category"
    category: str = Field(min_length=1)

    def criteria(self) -> dict[str, tuple[str, ...]]:
        return {"category": (self.category,)}


class CustomFilterScope(_ScopeBase):
    scope_type: Literal["custom_filter"] = "custom_filter"
    filters: dict[str, str | list[str]] = Field(min_length=1)

    @field_validator("filters")
    @classmethod
    def _known_fields(cls, value: dict[str, str | list[str]]) -> dict[str, str | list[str]]:
        unknown = sorted(set(value) - CUSTOM_FILTER_FIELDS)
        if unknown:
            raise ValueError(f"unsupported filter fields: {', '.join(unknown)}")
        for name, allowed in value.items():
            if isinstance(allowed, list) and not allowed:
                raise ValueError(f"filter '{name}' needs at least one value")
        return value

    def criteria(self) -> dict[str, tuple[str, ...]]:
        return {
            name: tuple(allowed) if isinstance(allowed, list) else (allowed,)
            for name, allowed in self.filters.items()
        }


Scope = Annotated[
    Union[AllScope, DepartmentScope, LocationScope, CategoryScope, CustomFilterScope],
    Field(discriminator="scope_type"),
]

_scope_adapter: TypeAdapter[Scope] = TypeAdapter(Scope)


def parse_scope(scope_type: str, scope_config: Mapping[str, Any] | None) -> Scope:
    """Turn a stored (scope_type, scope_config) pair into a scope variant.

    custom_filter configs are the field -> value(s) mapping itself.

    Raises:
        InvalidScopeType: Unknown scope_type.
        ValidationError: Missing or malformed scope_config.
    """
    if scope_type not in SCOPE_TYPES:
        raise InvalidScopeType(scope_type)

    config = dict(scope_config or {})
    if scope_type == "custom_filter":
        payload = {"scope_type": scope_type, "filters": config}
    else:
        config.pop("scope_type", None)
        payload = {**config, "scope_type": scope_type}

    try:
        return _scope_adapter.validate_python(payload)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid scope_config for scope type '{scope_type}'",
            errors=e.errors(include_url=False, include_context=False),
        ) from e


def build_filter(
    scope_type: str,
    scope_config: Mapping[str, Any] | None,
    excluded_statuses: frozenset[str] | None = None,
) -> AssetFilter:
    """Build the disposed-excluding asset filter for a scope."""
    return parse_scope(scope_type, scope_config).to_filter(excluded_statuses)
