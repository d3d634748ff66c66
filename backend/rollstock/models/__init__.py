from .catalog import WIDTH_OPTIONS, Supplier, Category, Gsm, Quality, Product, Sku
from .receiving import CostType, CostBasis, Batch, PurchaseInvoice, LandedCostEntry
from .inventory import RollStatus, Roll
from .ledger import RollLedgerEvent

__all__ = [
    'WIDTH_OPTIONS', 'Supplier', 'Category', 'Gsm', 'Quality', 'Product', 'Sku',
    'CostType', 'CostBasis', 'Batch', 'PurchaseInvoice', 'LandedCostEntry',
    'RollStatus', 'Roll',
    'RollLedgerEvent',
]
