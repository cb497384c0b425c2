"""
Views para facturas de proveedor, pagos e importación OCR
"""
import logging

from django.core.exceptions import ValidationError
from drf_spectacular.utils import extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from ..core.api_responses import business_error_response, error_response, success_response
from ..core.ledger import receive_product_line
from ..core.ocr import extract_invoice
from ..core.plan_limits import ensure_feature
from ..core.services import (
    create_invoice,
    delete_payment,
    find_duplicate_invoice,
    import_invoice,
    record_payment,
    refresh_payment_status,
)
from ..core.utils import parse_date_param
from ..models import AuditLog, Invoice
from ..permissions import OwnerScopedMixin
from ..products.serializers import ProductSerializer
from .serializers import (
    InvoiceImportSerializer,
    InvoiceProductSerializer,
    InvoiceSerializer,
    OCRRequestSerializer,
    PaymentSerializer,
    ProductLineSerializer,
)

logger = logging.getLogger(__name__)


@extend_schema(tags=['Invoices'])
class InvoiceViewSet(OwnerScopedMixin, viewsets.ModelViewSet):
    """
    ViewSet para facturas de proveedor

    - Crear: límite mensual del plan y aviso de número duplicado (409)
    - Pagos: el estado de pago se recalcula en cada alta o baja
    - Eliminar: borra pagos y enlaces; las cantidades de producto no se ajustan
    """
    queryset = Invoice.objects.select_related('supplier', 'customer')
    serializer_class = InvoiceSerializer

    def get_queryset(self):
        queryset = super().get_queryset()
        params = self.request.query_params

        supplier = params.get('supplier')
        if supplier:
            queryset = queryset.filter(supplier_id=supplier)
        customer = params.get('customer')
        if customer:
            queryset = queryset.filter(customer_id=customer)
        payment_status = params.get('payment_status')
        if payment_status:
            queryset = queryset.filter(payment_status=payment_status)
        date_from = parse_date_param(params.get('date_from'))
        if date_from:
            queryset = queryset.filter(date__gte=date_from)
        date_to = parse_date_param(params.get('date_to'))
        if date_to:
            queryset = queryset.filter(date__lte=date_to)
        search = params.get('search')
        if search:
            queryset = queryset.filter(invoice_number__icontains=search.strip())
        return queryset

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            invoice = create_invoice(request.user, **serializer.validated_data)
        except ValidationError as e:
            return business_error_response(e, default_code="INVOICE_CREATION_FAILED")
        return Response(
            InvoiceSerializer(invoice, context=self.get_serializer_context()).data,
            status=status.HTTP_201_CREATED,
        )

    def update(self, request, *args, **kwargs):
        instance = self.get_object()
        serializer = self.get_serializer(instance, data=request.data, partial=kwargs.pop('partial', False))
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        supplier = data.get('supplier', instance.supplier)
        number = data.get('invoice_number', instance.invoice_number)
        duplicate = find_duplicate_invoice(request.user, supplier, number, exclude_id=instance.id)
        if duplicate is not None and not data.get('confirm_duplicate'):
            return error_response(
                detail=f"Ya existe la factura {duplicate.invoice_number} para {supplier.name}.",
                code="DUPLICATE_INVOICE_NUMBER",
                http_status=status.HTTP_409_CONFLICT,
                metadata={"existing_invoice_id": duplicate.id},
            )
        invoice = serializer.save()
        # El monto puede haber cambiado
        refresh_payment_status(request.user, invoice.id)
        invoice.refresh_from_db()
        return Response(InvoiceSerializer(invoice, context=self.get_serializer_context()).data)

    def perform_destroy(self, instance):
        AuditLog.objects.create(
            owner=self.request.user,
            action="delete_invoice",
            entity="invoice",
            entity_id=instance.id,
            performed_by=self.request.user.username,
            extra_data={
                "invoice_number": instance.invoice_number,
                "linked_products": instance.product_links.count(),
            },
        )
        instance.delete()

    @action(detail=True, methods=['get', 'post'])
    def payments(self, request, pk=None):
        """
        Listar o registrar pagos de la factura

        POST body: {"amount": "50.00", "payment_date": "2024-05-01", "notes": ""}
        """
        invoice = self.get_object()
        if request.method == 'GET':
            return Response(PaymentSerializer(invoice.payments.all(), many=True).data)

        serializer = PaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            payment, overpaid = record_payment(request.user, invoice.id, **serializer.validated_data)
        except ValidationError as e:
            return business_error_response(e, default_code="PAYMENT_FAILED")
        invoice.refresh_from_db()
        return success_response(
            detail="Pago registrado",
            code="PAYMENT_RECORDED",
            http_status=status.HTTP_201_CREATED,
            payment=PaymentSerializer(payment).data,
            payment_status=invoice.payment_status,
            overpaid=overpaid,
        )

    @action(detail=True, methods=['delete'], url_path=r'payments/(?P<payment_id>\d+)', url_name='remove-payment')
    def remove_payment(self, request, pk=None, payment_id=None):
        invoice = self.get_object()
        invoice = delete_payment(request.user, invoice.payments.get(id=payment_id).id)
        return success_response(
            detail="Pago eliminado",
            code="PAYMENT_DELETED",
            payment_status=invoice.payment_status,
        )

    @action(detail=True, methods=['get'])
    def products(self, request, pk=None):
        """Productos recibidos en esta factura"""
        invoice = self.get_object()
        links = invoice.product_links.select_related('product').prefetch_related('product__invoice_links')
        return Response(InvoiceProductSerializer(links, many=True).data)

    @action(detail=True, methods=['post'])
    def receive(self, request, pk=None):
        """
        Registrar una línea de producto de la factura

        Si el producto ya existe (mismo nombre y HS code) se suma al stock;
        repetir la misma línea para la misma factura no cambia nada.
        """
        invoice = self.get_object()
        serializer = ProductLineSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            product, linked = receive_product_line(request.user, invoice.id, **serializer.validated_data)
        except ValidationError as e:
            return business_error_response(e, default_code="PRODUCT_RECEIVE_FAILED")
        return success_response(
            detail="Producto registrado" if linked else "La línea ya estaba registrada",
            code="PRODUCT_RECEIVED" if linked else "PRODUCT_ALREADY_LINKED",
            http_status=status.HTTP_201_CREATED if linked else status.HTTP_200_OK,
            product=ProductSerializer(product).data,
            linked=linked,
        )

    @action(detail=False, methods=['post'], url_path='import', url_name='import')
    def import_reviewed(self, request):
        """
        Importar una factura completa con sus productos

        Usado tras revisar el resultado OCR. Todo se guarda o nada.
        """
        serializer = InvoiceImportSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            result = import_invoice(request.user, serializer.validated_data)
        except ValidationError as e:
            return business_error_response(e, default_code="INVOICE_IMPORT_FAILED")
        return success_response(
            detail="Factura importada",
            code="INVOICE_IMPORTED",
            http_status=status.HTTP_201_CREATED,
            invoice=InvoiceSerializer(result["invoice"], context=self.get_serializer_context()).data,
            supplier_created=result["supplier_created"],
            products=[
                {"product": ProductSerializer(product).data, "linked": linked}
                for product, linked in result["products"]
            ],
        )

    @action(detail=False, methods=['post'])
    def extract(self, request):
        """
        Extraer datos de una factura escaneada con OCR (plan pago)

        POST body: {"image_base64": "..."} o {"pdf_base64": "..."}
        La respuesta sirve como payload de /invoices/import/ tras revisarla.
        """
        serializer = OCRRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            ensure_feature(request.user, "ocr")
            data = extract_invoice(
                image_base64=serializer.validated_data.get('image_base64') or None,
                pdf_base64=serializer.validated_data.get('pdf_base64') or None,
            )
        except ValidationError as e:
            logger.warning("Extracción OCR fallida para %s: %s", request.user.username, e)
            return business_error_response(e, default_code="OCR_EXTRACTION_FAILED")
        return success_response(
            detail="Datos extraídos",
            code="OCR_EXTRACTED",
            data=data,
        )
