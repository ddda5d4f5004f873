from __future__ import annotations

import re
from decimal import Decimal
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, ValidationInfo, field_validator

from loyalty_ledger.core.settings import settings
from loyalty_ledger.models.reward_system import ProductScope


def _to_camel(value: str) -> str:
    parts = value.split("_")
    return parts[0] + "".join(word.capitalize() for word in parts[1:])


def _to_snake(value: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", value).lower()


class _ConfigModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=_to_camel, extra="forbid")


class PointsSystemConfig(_ConfigModel):
    """Points accrue as ``floor(amount / conversion_amount * conversion_points)``."""

    kind: Literal["points"]
    name: str = Field(..., min_length=1, max_length=120)
    description: str | None = Field(default=None, max_length=500)
    is_active: bool = True
    conversion_amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    conversion_currency: str = Field(default_factory=lambda: settings.default_currency)
    conversion_points: int = Field(..., ge=1)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("name must not be blank")
        return stripped

    @field_validator("conversion_currency")
    @classmethod
    def _normalize_currency(cls, value: str) -> str:
        normalized = value.strip().upper()
        if len(normalized) != 3 or not normalized.isalpha():
            raise ValueError("conversion_currency must be a three-letter currency code")
        return normalized


class StampsSystemConfig(_ConfigModel):
    """Stamps accrue per qualifying purchase until ``target_stamps`` is reached."""

    kind: Literal["stamps"]
    name: str = Field(..., min_length=1, max_length=120)
    description: str | None = Field(default=None, max_length=500)
    is_active: bool = True
    target_stamps: int = Field(..., ge=1)
    product_scope: ProductScope
    product_identifier: str | None = Field(default=None, max_length=200, validate_default=True)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("name must not be blank")
        return stripped

    @field_validator("product_identifier")
    @classmethod
    def _require_identifier_for_specific(cls, value: str | None, info: ValidationInfo) -> str | None:
        identifier = value.strip() if value else None
        if info.data.get("product_scope") == ProductScope.SPECIFIC and not identifier:
            raise ValueError("product_identifier is required when product_scope is 'specific'")
        return identifier or None


RewardSystemConfig = Annotated[Union[PointsSystemConfig, StampsSystemConfig], Field(discriminator="kind")]

reward_system_config_adapter: TypeAdapter[RewardSystemConfig] = TypeAdapter(RewardSystemConfig)


def validation_error_fields(exc: ValidationError) -> list[str]:
    """Collapse pydantic error locations into a sorted list of snake_case field names."""

    fields: set[str] = set()
    for error in exc.errors():
        location = [part for part in error.get("loc", ()) if part not in ("points", "stamps")]
        if not location:
            fields.add("kind")
            continue
        fields.add(_to_snake(str(location[0])))
    return sorted(fields)


def parse_reward_system_config(payload: Any) -> PointsSystemConfig | StampsSystemConfig:
    if isinstance(payload, (PointsSystemConfig, StampsSystemConfig)):
        return payload
    data = dict(payload)
    kind = data.get("kind")
    if hasattr(kind, "value"):
        data["kind"] = kind.value
    return reward_system_config_adapter.validate_python(data)
