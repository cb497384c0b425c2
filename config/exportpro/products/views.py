"""
Views para inventario de productos
"""
from django.core.exceptions import ValidationError
from django.db.models import Prefetch, Q
from drf_spectacular.utils import extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from ..core.api_responses import business_error_response, success_response
from ..core.fields import OwnedPrimaryKeyRelatedField
from ..core.ledger import conservation_drift, inventory_value, receive_product_line
from ..core.utils import parse_bool_param
from ..invoices.serializers import ProductLineSerializer
from ..models import AuditLog, Invoice, Product, ProductInvoiceLink
from ..permissions import OwnerScopedMixin
from .serializers import ProductSerializer, ProductStockSerializer


class ProductReceiveSerializer(ProductLineSerializer):
    invoice = OwnedPrimaryKeyRelatedField(queryset=Invoice.objects.all())


@extend_schema(tags=['Products'])
class ProductViewSet(OwnerScopedMixin, viewsets.ModelViewSet):
    """
    ViewSet para productos

    - Crear: siempre desde una línea de factura (suma al producto existente)
    - Editar: nombre, HS code, unidad y nombres alternos
    - Eliminar: bloqueado si el producto está en alguna caja
    """
    queryset = Product.objects.prefetch_related(
        Prefetch('invoice_links', queryset=ProductInvoiceLink.objects.select_related('invoice'))
    )
    serializer_class = ProductSerializer

    def get_queryset(self):
        queryset = super().get_queryset()
        params = self.request.query_params

        search = (params.get('search') or '').strip()
        if search:
            needle = search.lower()
            # alternate_names es JSON; se filtra en memoria
            alternate_ids = [
                product_id
                for product_id, names in queryset.values_list('id', 'alternate_names')
                if any(needle in str(name).lower() for name in names or [])
            ]
            queryset = queryset.filter(
                Q(name__icontains=search) | Q(hs_code__icontains=search) | Q(id__in=alternate_ids)
            )
        if parse_bool_param(params.get('available')):
            queryset = queryset.filter(available_quantity__gt=0)
        invoice = params.get('invoice')
        if invoice:
            queryset = queryset.filter(invoice_links__invoice_id=invoice)
        return queryset

    def get_serializer_class(self):
        if self.action == 'create':
            return ProductReceiveSerializer
        return ProductSerializer

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)
        invoice = data.pop('invoice')
        try:
            product, linked = receive_product_line(request.user, invoice.id, **data)
        except ValidationError as e:
            return business_error_response(e, default_code="PRODUCT_RECEIVE_FAILED")
        return Response(
            ProductSerializer(product, context=self.get_serializer_context()).data,
            status=status.HTTP_201_CREATED if linked else status.HTTP_200_OK,
        )

    def perform_update(self, serializer):
        product = serializer.save()
        AuditLog.objects.create(
            owner=self.request.user,
            action="update_product",
            entity="product",
            entity_id=product.id,
            performed_by=self.request.user.username,
            extra_data={"fields": sorted(serializer.validated_data.keys())},
        )

    def perform_destroy(self, instance):
        product_id = instance.id
        name = instance.name
        instance.delete()
        AuditLog.objects.create(
            owner=self.request.user,
            action="delete_product",
            entity="product",
            entity_id=product_id,
            performed_by=self.request.user.username,
            extra_data={"name": name},
        )

    @action(detail=False, methods=['get'])
    def stock(self, request):
        """Stock total, disponible y empacado por producto"""
        products = self.get_queryset().prefetch_related('box_assignments')
        return Response({
            'products': ProductStockSerializer(products, many=True).data,
            'inventory_value': inventory_value(products),
        })

    @action(detail=False, methods=['get'])
    def conservation(self, request):
        """Productos cuyo disponible + empacado no coincide con lo recibido"""
        products = self.get_queryset().prefetch_related('box_assignments')
        drift = conservation_drift(products)
        if drift:
            return success_response(
                detail=f"{len(drift)} productos con diferencias",
                code="INVENTORY_DRIFT",
                products=drift,
            )
        return success_response(detail="Inventario consistente", code="INVENTORY_OK", products=[])
