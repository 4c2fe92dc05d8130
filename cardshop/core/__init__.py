# -*- coding: utf-8 -*-
# cardshop/core/__init__.py
# =============================================================================
# Единая точка входа ядра Card Shop: настройки, логирование, ошибки, БД.
# Бизнес-логики здесь нет; тяжёлые слои (CRUD/сервисы) не импортируются.
# =============================================================================

from __future__ import annotations

from typing import Any, Dict, List

from .config_core import get_settings
from .logging_core import get_logger

CORE_VERSION = "1.0.0"

logger = get_logger(__name__)


def core_health() -> Dict[str, Any]:
    """
    Проверка «минимально достаточного» набора настроек.

    Возвращает {"ok": bool, "errors": [...], "warnings": [...], "config": {...}};
    ничего не бросает.
    """
    settings = get_settings()
    errors: List[str] = []
    warnings: List[str] = []

    if not settings.DATABASE_URL:
        errors.append("DATABASE_URL is not set")
    if not settings.LDC_CLIENT_ID or not settings.LDC_CLIENT_SECRET:
        errors.append("LDC merchant credentials are not set")
    if not settings.ADMIN_API_KEY:
        warnings.append("ADMIN_API_KEY is not set: refund review is unavailable")
    if not settings.LDC_NOTIFY_URL:
        warnings.append("LDC_NOTIFY_URL is not set: gateway will not push payment results")

    return {
        "ok": not errors,
        "errors": errors,
        "warnings": warnings,
        "config": settings.debug_dump(),
        "coreVersion": CORE_VERSION,
    }


__all__ = ["CORE_VERSION", "core_health", "get_settings", "logger"]
