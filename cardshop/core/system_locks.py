# -*- coding: utf-8 -*-
# cardshop/core/system_locks.py
# =============================================================================
# Назначение кода:
#   Процессные «замки» Card Shop. Сейчас здесь один механизм: троттлинг
#   фоновых проходов, которые запускаются попутно с обычным трафиком
#   (сборщик просроченных резервов дергается чтением каталога).
#
# Канон / инварианты:
#   • Троттлинг - оптимизация нагрузки, а не механизм корректности: два
#     гонящихся прохода сборщика всё равно независимо атомарны в БД.
#   • Метка «последнего запуска» общая на процесс и защищена мьютексом
#     (threading.Lock: ручки FastAPI могут исполняться и в пуле потоков).
#   • Используем time.monotonic(): перевод системных часов не ломает интервал.
#
# Запреты:
#   • Никаких обращений к БД и сети в этом модуле.
# =============================================================================

from __future__ import annotations

import threading
import time
from typing import Callable, Optional


class IntervalThrottle:
    """
    «Не чаще одного раза за interval секунд» для всего процесса.

    try_acquire() атомарно проверяет и сдвигает метку: из N одновременных
    вызовов ровно один получит True.
    """

    def __init__(
        self,
        interval_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.interval_seconds = float(interval_seconds)
        self._clock = clock
        self._lock = threading.Lock()
        self._last_run: Optional[float] = None

    def try_acquire(self) -> bool:
        now = self._clock()
        with self._lock:
            if self._last_run is not None and now - self._last_run < self.interval_seconds:
                return False
            self._last_run = now
            return True


__all__ = ["IntervalThrottle"]
