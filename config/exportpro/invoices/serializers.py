"""
Serializers para facturas de proveedor y pagos
"""
from rest_framework import serializers

from ..core.fields import OwnedPrimaryKeyRelatedField
from ..core.ledger import average_rate
from ..core.ocr import UNITS
from ..core.services import invoice_paid_amount
from ..models import Customer, Invoice, Payment, ProductInvoiceLink, Supplier


class PaymentSerializer(serializers.ModelSerializer):
    """Pago contra una factura"""

    class Meta:
        model = Payment
        fields = ["id", "invoice", "amount", "payment_date", "notes", "created_at"]
        read_only_fields = ["invoice", "created_at"]

    def validate_amount(self, value):
        if value <= 0:
            raise serializers.ValidationError("El monto del pago debe ser mayor a cero")
        return value


class InvoiceProductSerializer(serializers.ModelSerializer):
    """Producto recibido en una factura, con la tarifa de esa factura"""

    product_id = serializers.IntegerField(source="product.id", read_only=True)
    name = serializers.CharField(source="product.name", read_only=True)
    hs_code = serializers.CharField(source="product.hs_code", read_only=True)
    unit = serializers.CharField(source="product.unit", read_only=True)
    average_rate = serializers.SerializerMethodField()

    class Meta:
        model = ProductInvoiceLink
        fields = ["id", "product_id", "name", "hs_code", "unit", "quantity", "rate", "average_rate"]

    def get_average_rate(self, obj):
        return average_rate(obj.product)


class InvoiceSerializer(serializers.ModelSerializer):
    """Serializer principal de facturas

    `payment_status` se calcula a partir de los pagos y no se puede editar.
    """

    supplier = OwnedPrimaryKeyRelatedField(queryset=Supplier.objects.all())
    customer = OwnedPrimaryKeyRelatedField(
        queryset=Customer.objects.all(), required=False, allow_null=True
    )
    supplier_name = serializers.CharField(source="supplier.name", read_only=True)
    customer_name = serializers.CharField(source="customer.name", read_only=True, default=None)
    paid_amount = serializers.SerializerMethodField()
    product_count = serializers.IntegerField(source="product_links.count", read_only=True)
    confirm_duplicate = serializers.BooleanField(write_only=True, required=False, default=False)

    class Meta:
        model = Invoice
        fields = [
            "id",
            "supplier",
            "supplier_name",
            "customer",
            "customer_name",
            "invoice_number",
            "date",
            "amount",
            "payment_status",
            "paid_amount",
            "product_count",
            "scan",
            "notes",
            "confirm_duplicate",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["payment_status", "created_at", "updated_at"]

    def get_paid_amount(self, obj):
        return invoice_paid_amount(obj)

    def validate_invoice_number(self, value):
        if not value or not value.strip():
            raise serializers.ValidationError("El número de factura es requerido")
        return value.strip()

    def validate_amount(self, value):
        if value < 0:
            raise serializers.ValidationError("El monto no puede ser negativo")
        return value

    def update(self, instance, validated_data):
        validated_data.pop("confirm_duplicate", None)
        return super().update(instance, validated_data)


class ProductLineSerializer(serializers.Serializer):
    """Línea de producto revisada de una factura"""

    name = serializers.CharField(max_length=200)
    hs_code = serializers.CharField(max_length=20, required=False, allow_blank=True, default="")
    quantity = serializers.IntegerField(min_value=1)
    rate = serializers.DecimalField(max_digits=14, decimal_places=2, min_value=0)
    unit = serializers.ChoiceField(choices=UNITS, required=False, default="pcs")
    alternate_names = serializers.ListField(
        child=serializers.CharField(max_length=200), required=False, default=list
    )

    def validate_name(self, value):
        if not value.strip():
            raise serializers.ValidationError("El nombre del producto es requerido")
        return value.strip()

    def validate_hs_code(self, value):
        return (value or "").strip()


class ImportSupplierSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=150)
    contact_person = serializers.CharField(required=False, allow_blank=True, default="")
    email = serializers.EmailField(required=False, allow_blank=True, default="")
    phone = serializers.CharField(required=False, allow_blank=True, default="")
    address = serializers.CharField(required=False, allow_blank=True, default="")
    country = serializers.CharField(required=False, allow_blank=True, default="")


class ImportInvoiceDataSerializer(serializers.Serializer):
    invoice_number = serializers.CharField(max_length=100)
    date = serializers.DateField()
    total_amount = serializers.DecimalField(max_digits=14, decimal_places=2, min_value=0)


class InvoiceImportSerializer(serializers.Serializer):
    """
    Payload de importación (normalmente el resultado OCR revisado por el usuario)

    Se indica `supplier_id` o los datos del proveedor en `supplier`.
    """

    supplier_id = serializers.IntegerField(required=False, allow_null=True)
    supplier = ImportSupplierSerializer(required=False)
    customer_id = serializers.IntegerField(required=False, allow_null=True)
    invoice = ImportInvoiceDataSerializer()
    products = ProductLineSerializer(many=True)
    confirm_duplicate = serializers.BooleanField(required=False, default=False)

    def validate(self, attrs):
        if not attrs.get("supplier_id") and not attrs.get("supplier"):
            raise serializers.ValidationError("Se requiere supplier_id o los datos del proveedor")
        if not attrs.get("products"):
            raise serializers.ValidationError("La factura debe tener al menos un producto")
        return attrs


class OCRRequestSerializer(serializers.Serializer):
    image_base64 = serializers.CharField(required=False, allow_blank=True)
    pdf_base64 = serializers.CharField(required=False, allow_blank=True)

    def validate(self, attrs):
        if not attrs.get("image_base64") and not attrs.get("pdf_base64"):
            raise serializers.ValidationError("Se requiere image_base64 o pdf_base64")
        return attrs
