"""
Views para gestión de proveedores
"""
from django.core.exceptions import ValidationError
from django.db.models import Sum
from drf_spectacular.utils import extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from ..core.api_responses import business_error_response, error_response
from ..core.services import create_supplier, find_similar_supplier
from ..models import Supplier
from ..permissions import OwnerScopedMixin
from .serializers import SupplierSerializer, SupplierSimpleSerializer


@extend_schema(tags=['Suppliers'])
class SupplierViewSet(OwnerScopedMixin, viewsets.ModelViewSet):
    """
    ViewSet para gestión de proveedores

    - Crear: respeta el límite de proveedores del plan
    - Eliminar: bloqueado si el proveedor tiene facturas
    """
    queryset = Supplier.objects.all()

    def get_serializer_class(self):
        if self.action in ['list']:
            return SupplierSimpleSerializer
        return SupplierSerializer

    def get_queryset(self):
        queryset = super().get_queryset()
        search = self.request.query_params.get('search')
        if search:
            queryset = queryset.filter(name__icontains=search.strip())
        return queryset

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            supplier = create_supplier(request.user, **serializer.validated_data)
        except ValidationError as e:
            return business_error_response(e, default_code="SUPPLIER_CREATION_FAILED")
        return Response(SupplierSerializer(supplier).data, status=status.HTTP_201_CREATED)

    @action(detail=False, methods=['get'])
    def similar(self, request):
        """
        Buscar un proveedor con nombre parecido (para advertir antes de crear)

        GET /api/suppliers/similar/?name=Acme
        """
        name = request.query_params.get('name', '')
        if not name.strip():
            return error_response(
                detail="Se requiere el parámetro name",
                code="MISSING_NAME",
            )
        match = find_similar_supplier(self.get_queryset(), name)
        return Response({
            'match': SupplierSimpleSerializer(match).data if match else None,
        })

    @action(detail=True, methods=['get'])
    def invoices(self, request, pk=None):
        """Facturas del proveedor con total comprado"""
        supplier = self.get_object()
        invoices = supplier.invoices.all()
        return Response({
            'supplier': SupplierSimpleSerializer(supplier).data,
            'invoices': [
                {
                    'id': invoice.id,
                    'invoice_number': invoice.invoice_number,
                    'date': invoice.date,
                    'amount': invoice.amount,
                    'payment_status': invoice.payment_status,
                }
                for invoice in invoices
            ],
            'total_amount': invoices.aggregate(total=Sum('amount'))['total'] or 0,
        })
