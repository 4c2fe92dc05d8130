# -*- coding: utf-8 -*-
# cardshop/schemas/common_schemas.py
# =============================================================================
# Назначение кода:
#   Общие кирпичики Pydantic-схем Card Shop: базовая модель, денежная строка,
#   ответ health.
#
# Канон / инварианты:
#   • Деньги наружу - строкой с 2 знаками ("10.00"), никогда float.
#   • В схемах нет бизнес-логики: только форма данных и простая валидация.
# =============================================================================

from __future__ import annotations

from decimal import Decimal
from typing import Dict

from pydantic import BaseModel, ConfigDict

from cardshop.core.utils_core import format_money


def money_str(value: Decimal | int | str) -> str:
    """Decimal → "10.00"."""
    return format_money(value)


class ApiModel(BaseModel):
    """База для DTO: чтение атрибутов ORM, запрет лишних полей во входе."""

    model_config = ConfigDict(from_attributes=True, extra="ignore")


class HealthOut(ApiModel):
    status: str
    db: bool
    config: Dict[str, str]


__all__ = ["money_str", "ApiModel", "HealthOut"]
