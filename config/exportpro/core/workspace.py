"""
Estado de aplicación de un usuario: todas sus colecciones cargadas en memoria.

Se crea por petición o comando y nunca se comparte entre usuarios.
"""

from __future__ import annotations

from collections import defaultdict
from decimal import Decimal

from django.db.models import Prefetch

from ..models import (
    Box,
    BoxProduct,
    BoxType,
    Customer,
    Invoice,
    Payment,
    Product,
    ProductInvoiceLink,
    Shipment,
    Supplier,
    UserSettings,
)
from .ledger import inventory_value


class Workspace:
    def __init__(self, user, load: bool = True):
        self.user = user
        self.settings: UserSettings | None = None
        self.suppliers: list[Supplier] = []
        self.customers: list[Customer] = []
        self.invoices: list[Invoice] = []
        self.payments: list[Payment] = []
        self.products: list[Product] = []
        self.box_types: list[BoxType] = []
        self.shipments: list[Shipment] = []
        if load:
            self.refresh()

    def refresh(self) -> "Workspace":
        """Vuelve a leer todas las colecciones del usuario"""
        user = self.user
        self.settings = UserSettings.for_user(user)
        self.suppliers = list(Supplier.objects.for_owner(user))
        self.customers = list(Customer.objects.for_owner(user))
        self.invoices = list(Invoice.objects.for_owner(user).select_related("supplier", "customer"))
        self.payments = list(Payment.objects.for_owner(user))
        self.products = list(
            Product.objects.for_owner(user).prefetch_related(
                Prefetch("invoice_links", queryset=ProductInvoiceLink.objects.select_related("invoice"))
            )
        )
        self.box_types = list(BoxType.objects.for_owner(user))
        # Segunda fase: cajas y contenido filtrados por los envíos ya leídos
        self.shipments = list(
            Shipment.objects.for_owner(user)
            .select_related("customer")
            .prefetch_related(
                Prefetch(
                    "boxes",
                    queryset=Box.objects.select_related("box_type").prefetch_related(
                        Prefetch("items", queryset=BoxProduct.objects.select_related("product"))
                    ),
                )
            )
        )
        return self

    @property
    def active_box_types(self) -> list[BoxType]:
        return [box_type for box_type in self.box_types if box_type.is_active]

    def payments_by_invoice(self) -> dict[int, Decimal]:
        totals: dict[int, Decimal] = defaultdict(lambda: Decimal("0"))
        for payment in self.payments:
            totals[payment.invoice_id] += payment.amount
        return totals

    def inventory_value(self) -> Decimal:
        return inventory_value(self.products)
