"""
Views para envíos: cajas, documentos de embarque y adjuntos
"""
import json

from django.core.exceptions import ValidationError
from django.db.models import Prefetch
from django.http import HttpResponse
from drf_spectacular.utils import extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.parsers import FormParser, JSONParser, MultiPartParser
from rest_framework.response import Response

from ..core.api_responses import business_error_response, success_response
from ..core.documents import (
    build_box_label,
    build_commercial_invoice,
    build_invoice_mapping,
    build_packing_list,
    commercial_invoice_sheets,
    invoice_mapping_sheets,
    packing_list_sheets,
    render_workbook,
)
from ..core.packing import (
    add_box_to_shipment,
    delete_shipment,
    remove_box_from_shipment,
    shipment_totals,
    update_box,
    update_box_products,
)
from ..core.plan_limits import ensure_feature
from ..core.services import attach_shipment_document, create_shipment
from ..core.utils import attachment_filename, parse_bool_param
from ..models import AuditLog, Box, BoxProduct, ProductInvoiceLink, Shipment, UserSettings
from ..permissions import OwnerScopedMixin
from .serializers import (
    BoxContentsSerializer,
    BoxCreateSerializer,
    BoxSerializer,
    BoxUpdateSerializer,
    ShipmentDocumentSerializer,
    ShipmentListSerializer,
    ShipmentSerializer,
)

XLSX_CONTENT_TYPE = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'


def _xlsx_response(content: bytes, filename: str) -> HttpResponse:
    response = HttpResponse(content, content_type=XLSX_CONTENT_TYPE)
    response['Content-Disposition'] = f'attachment; filename="{filename}"'
    return response


@extend_schema(tags=['Shipments'])
class ShipmentViewSet(OwnerScopedMixin, viewsets.ModelViewSet):
    """
    ViewSet para envíos

    - Crear: límite mensual del plan
    - Cajas: agregar, editar, cambiar contenido y quitar (el inventario se ajusta)
    - Eliminar: devuelve al inventario todo lo empacado
    - Documentos: etiqueta por caja, lista de empaque, factura comercial y
      mapa de facturas (JSON o Excel en plan pago)
    """
    queryset = Shipment.objects.select_related('customer').prefetch_related(
        Prefetch(
            'boxes',
            queryset=Box.objects.select_related('box_type').prefetch_related(
                Prefetch(
                    'items',
                    queryset=BoxProduct.objects.select_related('product').prefetch_related(
                        Prefetch('product__invoice_links', queryset=ProductInvoiceLink.objects.all())
                    ),
                )
            ),
        )
    )
    parser_classes = [JSONParser, MultiPartParser, FormParser]

    def get_serializer_class(self):
        if self.action == 'list':
            return ShipmentListSerializer
        return ShipmentSerializer

    def get_queryset(self):
        queryset = super().get_queryset()
        params = self.request.query_params
        customer = params.get('customer')
        if customer:
            queryset = queryset.filter(customer_id=customer)
        search = params.get('search')
        if search:
            queryset = queryset.filter(name__icontains=search.strip())
        return queryset

    def _shipment(self, pk) -> Shipment:
        """Vuelve a leer el envío con cajas y contenido actualizados"""
        return self.get_queryset().get(pk=pk)

    def _context(self, shipment):
        return UserSettings.for_user(self.request.user), shipment.customer

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            shipment = create_shipment(request.user, **serializer.validated_data)
        except ValidationError as e:
            return business_error_response(e, default_code="SHIPMENT_CREATION_FAILED")
        return Response(
            ShipmentSerializer(self._shipment(shipment.pk), context=self.get_serializer_context()).data,
            status=status.HTTP_201_CREATED,
        )

    def perform_update(self, serializer):
        shipment = serializer.save()
        AuditLog.objects.create(
            owner=self.request.user,
            action="update_shipment",
            entity="shipment",
            entity_id=shipment.id,
            performed_by=self.request.user.username,
            extra_data={"fields": sorted(serializer.validated_data.keys())},
        )

    def destroy(self, request, *args, **kwargs):
        shipment = self.get_object()
        returned = delete_shipment(request.user, shipment.id)
        return success_response(
            detail="Envío eliminado; los productos volvieron al inventario",
            code="SHIPMENT_DELETED",
            restored=[{"product_id": pid, "quantity": qty} for pid, qty in returned.items()],
        )

    # ------------------------------------------------------------------
    # Cajas
    # ------------------------------------------------------------------

    @action(detail=True, methods=['get', 'post'])
    def boxes(self, request, pk=None):
        """
        Listar o agregar cajas

        POST body: {"box_type": 1, "products": [{"product_id": 3, "quantity": 10}]}
        """
        shipment = self.get_object()
        if request.method == 'GET':
            return Response(BoxSerializer(shipment.boxes.all(), many=True).data)

        serializer = BoxCreateSerializer(data=request.data, context=self.get_serializer_context())
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        box_type = data.get('box_type')
        try:
            box = add_box_to_shipment(
                request.user,
                shipment.id,
                box_type_id=box_type.id if box_type else None,
                weight=data.get('weight'),
                dimensions=data.get('dimensions') or None,
                products=data.get('products'),
            )
        except ValidationError as e:
            return business_error_response(e, default_code="BOX_CREATION_FAILED")
        box = self._shipment(shipment.pk).boxes.get(pk=box.pk)
        return Response(BoxSerializer(box).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['patch', 'delete'], url_path=r'boxes/(?P<box_id>\d+)', url_name='box')
    def box(self, request, pk=None, box_id=None):
        """Editar peso/dimensiones de una caja o quitarla del envío"""
        shipment = self.get_object()
        if request.method == 'DELETE':
            try:
                returned = remove_box_from_shipment(request.user, shipment.id, box_id)
            except ValidationError as e:
                return business_error_response(e, default_code="BOX_REMOVAL_FAILED")
            return success_response(
                detail="Caja eliminada; los productos volvieron al inventario",
                code="BOX_REMOVED",
                restored=[{"product_id": pid, "quantity": qty} for pid, qty in returned.items()],
            )

        serializer = BoxUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        try:
            update_box(request.user, shipment.id, box_id, **serializer.validated_data)
        except ValidationError as e:
            return business_error_response(e, default_code="BOX_UPDATE_FAILED")
        box = self._shipment(shipment.pk).boxes.get(pk=box_id)
        return Response(BoxSerializer(box).data)

    @action(detail=True, methods=['put'], url_path=r'boxes/(?P<box_id>\d+)/products', url_name='box-products')
    def box_products(self, request, pk=None, box_id=None):
        """
        Reemplazar el contenido de una caja

        Cada cantidad puede llegar a lo disponible más lo que la caja ya tiene.
        """
        shipment = self.get_object()
        serializer = BoxContentsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            update_box_products(request.user, shipment.id, box_id, serializer.validated_data['products'])
        except ValidationError as e:
            return business_error_response(e, default_code="BOX_UPDATE_FAILED")
        box = self._shipment(shipment.pk).boxes.get(pk=box_id)
        return Response(BoxSerializer(box).data)

    @action(detail=True, methods=['get'], url_path=r'boxes/(?P<box_id>\d+)/label', url_name='box-label')
    def box_label(self, request, pk=None, box_id=None):
        """
        Etiqueta de una caja

        Con ?qr=true incluye el texto para el código QR (plan pago).
        """
        shipment = self.get_object()
        box = shipment.boxes.get(pk=box_id)
        user_settings, customer = self._context(shipment)
        label = build_box_label(shipment, box, user_settings, customer)
        if parse_bool_param(request.query_params.get('qr')):
            try:
                ensure_feature(request.user, "qr_labels")
            except ValidationError as e:
                return business_error_response(e, default_code="FEATURE_NOT_AVAILABLE")
            label['qr_data'] = json.dumps(
                {
                    "shipment": shipment.name,
                    "lot": shipment.lot_number,
                    "box": label["box_label"],
                    "items": [[item["name"], item["quantity"]] for item in label["contents"]],
                },
                ensure_ascii=False,
            )
        return Response(label)

    # ------------------------------------------------------------------
    # Documentos de embarque
    # ------------------------------------------------------------------

    @action(detail=True, methods=['get'])
    def totals(self, request, pk=None):
        return Response(shipment_totals(self.get_object()))

    @action(detail=True, methods=['get'], url_path='packing-list', url_name='packing-list')
    def packing_list(self, request, pk=None):
        shipment = self.get_object()
        user_settings, customer = self._context(shipment)
        return Response(build_packing_list(shipment, user_settings, customer))

    @action(detail=True, methods=['get'], url_path='commercial-invoice', url_name='commercial-invoice')
    def commercial_invoice(self, request, pk=None):
        shipment = self.get_object()
        user_settings, customer = self._context(shipment)
        return Response(build_commercial_invoice(shipment, user_settings, customer))

    @action(detail=True, methods=['get'], url_path='invoice-mapping', url_name='invoice-mapping')
    def invoice_mapping(self, request, pk=None):
        return Response(build_invoice_mapping(self.get_object()))

    @action(detail=True, methods=['get'], url_path=r'export/(?P<document>[a-z-]+)', url_name='export')
    def export(self, request, pk=None, document=None):
        """
        Descargar un documento del envío en Excel (plan pago)

        document: packing-list | commercial-invoice | invoice-mapping
        """
        shipment = self.get_object()
        try:
            ensure_feature(request.user, "data_export")
        except ValidationError as e:
            return business_error_response(e, default_code="FEATURE_NOT_AVAILABLE")

        user_settings, customer = self._context(shipment)
        if document == 'packing-list':
            sheets = packing_list_sheets(build_packing_list(shipment, user_settings, customer))
        elif document == 'commercial-invoice':
            sheets = commercial_invoice_sheets(build_commercial_invoice(shipment, user_settings, customer))
        elif document == 'invoice-mapping':
            sheets = invoice_mapping_sheets(build_invoice_mapping(shipment))
        else:
            return business_error_response(
                ValidationError(f"Documento desconocido: {document}"), default_code="UNKNOWN_DOCUMENT"
            )
        return _xlsx_response(
            render_workbook(sheets),
            attachment_filename(document.replace('-', '_'), shipment.name, 'xlsx'),
        )

    # ------------------------------------------------------------------
    # Adjuntos
    # ------------------------------------------------------------------

    @action(detail=True, methods=['get', 'post'])
    def documents(self, request, pk=None):
        """
        Listar o adjuntar documentos finales (multipart: file, doc_type, notes)
        """
        shipment = self.get_object()
        if request.method == 'GET':
            serializer = ShipmentDocumentSerializer(shipment.documents.all(), many=True)
            return Response(serializer.data)

        uploaded_file = request.FILES.get('file')
        if uploaded_file is None:
            return business_error_response(
                ValidationError("Se requiere el archivo"), default_code="MISSING_FILE"
            )
        try:
            document = attach_shipment_document(
                request.user,
                shipment.id,
                uploaded_file,
                doc_type=request.data.get('doc_type', ''),
                custom_doc_type_label=request.data.get('custom_doc_type_label', ''),
                notes=request.data.get('notes', ''),
            )
        except ValidationError as e:
            return business_error_response(e, default_code="DOCUMENT_UPLOAD_FAILED")
        return Response(ShipmentDocumentSerializer(document).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['delete'], url_path=r'documents/(?P<document_id>\d+)', url_name='document')
    def document(self, request, pk=None, document_id=None):
        shipment = self.get_object()
        document = shipment.documents.get(pk=document_id)
        document.file.delete(save=False)
        document.delete()
        AuditLog.objects.create(
            owner=request.user,
            action="delete_document",
            entity="shipment",
            entity_id=shipment.id,
            performed_by=request.user.username,
            extra_data={"document_id": int(document_id)},
        )
        return Response(status=status.HTTP_204_NO_CONTENT)
