# -*- coding: utf-8 -*-
# cardshop/scheduler/__init__.py
# Фоновые воркеры Card Shop (запускаются отдельными процессами).
