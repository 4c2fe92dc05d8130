"""Card Shop CRUD facade.

======================================================================
Назначение модуля:
    • Экспортировать CRUD-классы для products, orders и cards.
    • Не содержит бизнес-логики: только доступ к БД.

Канон/инварианты:
    • Переходы статусов и сверка rowcount выполняются в сервисах.
    • Нет побочных эффектов при импортировании.
======================================================================
"""

from cardshop.crud.card_crud import CardCRUD
from cardshop.crud.order_crud import OrderCRUD
from cardshop.crud.product_crud import ProductCRUD

__all__ = ["CardCRUD", "OrderCRUD", "ProductCRUD"]
