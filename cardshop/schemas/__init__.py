# -*- coding: utf-8 -*-
# cardshop/schemas/__init__.py
# Pydantic-схемы HTTP-слоя Card Shop (витрина, заказы, возвраты).
