from medstock.models.user import User
from medstock.models.drug import Drug
from medstock.models.order import Order, OrderItem
from medstock.models.dispensing import DailyDispensingSummary
from medstock.models.catalog import DrugType, DrugName
from medstock.models.stock_movement import StockMovement

__all__ = ["User", "Drug", "Order", "OrderItem", "DailyDispensingSummary", "DrugType", "DrugName", "StockMovement"]
