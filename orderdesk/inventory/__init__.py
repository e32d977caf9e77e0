from orderdesk.inventory.catalog import ProductCatalog, product_catalog
from orderdesk.inventory.ledger import InventoryLedger, StockPosting, inventory_ledger
from orderdesk.inventory.models import InventoryLedgerEntry, Product

__all__ = [
    "InventoryLedger",
    "InventoryLedgerEntry",
    "Product",
    "ProductCatalog",
    "StockPosting",
    "inventory_ledger",
    "product_catalog",
]
