"""
Views para exportación de datos (plan pago)
"""
from django.core.exceptions import ValidationError
from django.http import HttpResponse
from django.utils import timezone
from drf_spectacular.utils import extend_schema
import pandas as pd
from rest_framework import permissions, viewsets
from rest_framework.decorators import action

from ..core.api_responses import business_error_response
from ..core.ledger import average_rate, packed_quantity
from ..core.plan_limits import ensure_feature
from ..core.services import invoice_paid_amount
from ..core.utils import parse_date_param
from ..models import Invoice, Product


def _file_response(rows, output: str, prefix: str) -> HttpResponse:
    df = pd.DataFrame(rows)
    stamp = timezone.now().strftime("%Y%m%d")
    if output == 'csv':
        response = HttpResponse(content_type='text/csv')
        response['Content-Disposition'] = f'attachment; filename="{prefix}_{stamp}.csv"'
        df.to_csv(response, index=False, encoding='utf-8-sig')
    else:
        response = HttpResponse(
            content_type='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'
        )
        response['Content-Disposition'] = f'attachment; filename="{prefix}_{stamp}.xlsx"'
        df.to_excel(response, index=False, engine='openpyxl')
    return response


class ExportViewSet(viewsets.GenericViewSet):
    """
    ViewSet para exportación de datos

    ?output=csv|excel (por defecto excel)
    """
    permission_classes = [permissions.IsAuthenticated]

    def initial(self, request, *args, **kwargs):
        super().initial(request, *args, **kwargs)
        self.output = (request.query_params.get('output') or 'excel').lower()

    @extend_schema(tags=['Export'])
    @action(detail=False, methods=['get'])
    def products(self, request):
        """Exportar inventario de productos"""
        try:
            ensure_feature(request.user, "data_export")
        except ValidationError as e:
            return business_error_response(e)

        products = Product.objects.for_owner(request.user).prefetch_related('invoice_links', 'box_assignments')
        data = []
        for product in products:
            rate = average_rate(product)
            data.append({
                'Producto': product.name,
                'HS Code': product.hs_code,
                'Unidad': product.unit,
                'Recibido': product.quantity,
                'Disponible': product.available_quantity,
                'Empacado': packed_quantity(product),
                'Tarifa Promedio': float(rate),
                'Valor Disponible': float(product.available_quantity * rate),
                'Nombres Alternos': ', '.join(product.alternate_names or []),
            })
        return _file_response(data, self.output, 'productos')

    @extend_schema(tags=['Export'])
    @action(detail=False, methods=['get'])
    def invoices(self, request):
        """Exportar facturas de proveedor con su estado de pago"""
        try:
            ensure_feature(request.user, "data_export")
        except ValidationError as e:
            return business_error_response(e)

        queryset = Invoice.objects.for_owner(request.user).select_related('supplier', 'customer')
        start_date = parse_date_param(request.query_params.get('start_date'))
        if start_date:
            queryset = queryset.filter(date__gte=start_date)
        end_date = parse_date_param(request.query_params.get('end_date'))
        if end_date:
            queryset = queryset.filter(date__lte=end_date)
        supplier_id = request.query_params.get('supplier')
        if supplier_id:
            queryset = queryset.filter(supplier_id=supplier_id)

        data = []
        for invoice in queryset:
            paid = invoice_paid_amount(invoice)
            data.append({
                'Factura': invoice.invoice_number,
                'Proveedor': invoice.supplier.name,
                'Cliente': invoice.customer.name if invoice.customer else '',
                'Fecha': invoice.date.strftime('%Y-%m-%d'),
                'Monto': float(invoice.amount),
                'Pagado': float(paid),
                'Saldo': float(max(invoice.amount - paid, 0)),
                'Estado': invoice.get_payment_status_display(),
            })
        return _file_response(data, self.output, 'facturas')
