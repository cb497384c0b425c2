"""
ViewSets de la API agrupados para el router
"""
from .account import AccountViewSet
from .box_types import BoxTypeViewSet
from .customers import CustomerViewSet
from .dashboard import DashboardViewSet
from .export import ExportViewSet
from .invoices import InvoiceViewSet
from .products import ProductViewSet
from .shipments import ShipmentViewSet
from .suppliers import SupplierViewSet

__all__ = [
    "AccountViewSet",
    "BoxTypeViewSet",
    "CustomerViewSet",
    "DashboardViewSet",
    "ExportViewSet",
    "InvoiceViewSet",
    "ProductViewSet",
    "ShipmentViewSet",
    "SupplierViewSet",
]
