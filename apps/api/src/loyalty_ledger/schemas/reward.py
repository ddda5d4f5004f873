"""Reward value union: a money discount, a product, or free text."""

from __future__ import annotations

from decimal import Decimal
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class _ValueModel(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class MoneyValue(_ValueModel):
    kind: Literal["money"] = "money"
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)


class ProductValue(_ValueModel):
    kind: Literal["product"] = "product"
    product_id: str = Field(..., min_length=1, max_length=200)


class TextValue(_ValueModel):
    kind: Literal["text"] = "text"
    text: str = Field(..., min_length=1, max_length=500)


RewardValue = Annotated[Union[MoneyValue, ProductValue, TextValue], Field(discriminator="kind")]

reward_value_adapter: TypeAdapter[RewardValue] = TypeAdapter(RewardValue)
