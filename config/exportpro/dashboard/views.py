"""
Views para dashboard y estadísticas
"""
from decimal import Decimal

from drf_spectacular.utils import extend_schema
from rest_framework import permissions, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from ..core.packing import shipment_totals
from ..core.plan_limits import usage_summary
from ..core.workspace import Workspace
from ..models import Invoice


class DashboardViewSet(viewsets.GenericViewSet):
    """
    ViewSet para dashboard y estadísticas de la cuenta
    """
    permission_classes = [permissions.IsAuthenticated]

    @extend_schema(tags=['Dashboard'])
    @action(detail=False, methods=['get'])
    def overview(self, request):
        """Vista general: inventario, facturas por pagar y envíos"""
        workspace = Workspace(request.user)
        paid_by_invoice = workspace.payments_by_invoice()

        outstanding = Decimal("0")
        status_counts = {choice: 0 for choice in Invoice.PaymentStatus.values}
        for invoice in workspace.invoices:
            status_counts[invoice.payment_status] += 1
            outstanding += max(invoice.amount - paid_by_invoice.get(invoice.id, Decimal("0")), Decimal("0"))

        total_received = sum(product.quantity for product in workspace.products)
        total_available = sum(product.available_quantity for product in workspace.products)

        return Response({
            'company': workspace.settings.name,
            'currency': workspace.settings.currency,
            'counts': {
                'suppliers': len(workspace.suppliers),
                'customers': len(workspace.customers),
                'invoices': len(workspace.invoices),
                'products': len(workspace.products),
                'box_types': len(workspace.active_box_types),
                'shipments': len(workspace.shipments),
            },
            'inventory': {
                'total_received': total_received,
                'total_available': total_available,
                'total_packed': total_received - total_available,
                'value': workspace.inventory_value(),
                'out_of_stock': sum(1 for product in workspace.products if product.available_quantity == 0),
            },
            'invoices': {
                'by_status': status_counts,
                'outstanding_amount': outstanding,
            },
            'recent_shipments': [
                {
                    'id': shipment.id,
                    'name': shipment.name,
                    'destination': shipment.destination,
                    'customer': shipment.customer.name if shipment.customer else None,
                    **shipment_totals(shipment),
                }
                for shipment in workspace.shipments[:5]
            ],
            'plan': usage_summary(request.user),
        })
