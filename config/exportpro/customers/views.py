"""
Views para gestión de clientes
"""
from drf_spectacular.utils import extend_schema
from rest_framework import viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from ..models import Customer
from ..permissions import OwnerScopedMixin
from .serializers import CustomerSerializer


@extend_schema(tags=['Customers'])
class CustomerViewSet(OwnerScopedMixin, viewsets.ModelViewSet):
    """
    ViewSet para clientes (consignatarios)

    Eliminar un cliente deja sus envíos y facturas sin cliente asignado.
    """
    queryset = Customer.objects.all()
    serializer_class = CustomerSerializer

    def get_queryset(self):
        queryset = super().get_queryset()
        search = self.request.query_params.get('search')
        if search:
            queryset = queryset.filter(name__icontains=search.strip())
        return queryset

    def perform_create(self, serializer):
        serializer.save(owner=self.request.user)

    @action(detail=True, methods=['get'])
    def activity(self, request, pk=None):
        """Envíos y facturas asociados al cliente"""
        customer = self.get_object()
        return Response({
            'shipments': [
                {
                    'id': shipment.id,
                    'name': shipment.name,
                    'destination': shipment.destination,
                    'created_at': shipment.created_at,
                }
                for shipment in customer.shipments.all()
            ],
            'invoices': [
                {
                    'id': invoice.id,
                    'invoice_number': invoice.invoice_number,
                    'amount': invoice.amount,
                    'payment_status': invoice.payment_status,
                }
                for invoice in customer.invoices.all()
            ],
        })
