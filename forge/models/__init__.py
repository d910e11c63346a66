"""FORGE - SQLAlchemy models."""
from forge.models.assembly import AssemblyOrder, AssemblyOrderMaterial, AssemblyOrderStatus, Priority
from forge.models.audit import AuditLog
from forge.models.bom import BOM, BOMItem, BOMStatus, BOMType
from forge.models.catalog import Location, Product
from forge.models.goods_receipt import GoodsReceipt, ReceiptItem, ReceiptSourceType, ReceiptStatus
from forge.models.purchase_order import POStatus, PurchaseOrder, PurchaseOrderLine
from forge.models.sequence import DocumentSequence
from forge.models.stock import StockBalance, StockEventType, StockLedger

__all__ = [
    "Product", "Location",
    "BOM", "BOMItem", "BOMStatus", "BOMType",
    "AssemblyOrder", "AssemblyOrderMaterial", "AssemblyOrderStatus", "Priority",
    "PurchaseOrder", "PurchaseOrderLine", "POStatus",
    "GoodsReceipt", "ReceiptItem", "ReceiptSourceType", "ReceiptStatus",
    "StockBalance", "StockLedger", "StockEventType",
    "DocumentSequence", "AuditLog",
]
