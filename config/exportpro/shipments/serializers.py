"""
Serializers para envíos, cajas y documentos
"""
from rest_framework import serializers

from ..core.fields import OwnedPrimaryKeyRelatedField
from ..core.packing import box_cbm, parse_dimensions, shipment_totals
from ..models import Box, BoxProduct, BoxType, Customer, Shipment, ShipmentDocument


class BoxProductSerializer(serializers.ModelSerializer):
    product_name = serializers.CharField(source="product.name", read_only=True)
    hs_code = serializers.CharField(source="product.hs_code", read_only=True)
    unit = serializers.CharField(source="product.unit", read_only=True)

    class Meta:
        model = BoxProduct
        fields = ["id", "product", "product_name", "hs_code", "unit", "quantity"]


class BoxSerializer(serializers.ModelSerializer):
    """Caja con su contenido"""

    box_type_name = serializers.CharField(source="box_type.name", read_only=True, default=None)
    items = BoxProductSerializer(many=True, read_only=True)
    cbm = serializers.SerializerMethodField()
    total_items = serializers.SerializerMethodField()

    class Meta:
        model = Box
        fields = [
            "id",
            "shipment",
            "box_type",
            "box_type_name",
            "box_number",
            "weight",
            "dimensions",
            "cbm",
            "total_items",
            "items",
            "created_at",
        ]

    def get_cbm(self, obj):
        return round(box_cbm(obj), 4)

    def get_total_items(self, obj):
        return sum(item.quantity for item in obj.items.all())


class BoxProductInputSerializer(serializers.Serializer):
    product_id = serializers.IntegerField()
    quantity = serializers.IntegerField(min_value=1)


def _validate_dimensions(value):
    if value and parse_dimensions(value) is None:
        raise serializers.ValidationError("Las dimensiones deben tener el formato LxWxH")
    return value


class BoxCreateSerializer(serializers.Serializer):
    """
    Nueva caja. Sin dimensiones ni peso se copian del tipo de caja.
    """

    box_type = OwnedPrimaryKeyRelatedField(queryset=BoxType.objects.all(), required=False, allow_null=True)
    weight = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0, required=False, allow_null=True)
    dimensions = serializers.CharField(max_length=50, required=False, allow_blank=True)
    products = BoxProductInputSerializer(many=True, required=False, default=list)

    def validate_dimensions(self, value):
        return _validate_dimensions(value)


class BoxUpdateSerializer(serializers.Serializer):
    weight = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0, required=False, allow_null=True)
    dimensions = serializers.CharField(max_length=50, required=False, allow_blank=True)

    def validate_dimensions(self, value):
        return _validate_dimensions(value)


class BoxContentsSerializer(serializers.Serializer):
    products = BoxProductInputSerializer(many=True)


class ShipmentSerializer(serializers.ModelSerializer):
    """Envío con sus cajas y totales"""

    customer = OwnedPrimaryKeyRelatedField(
        queryset=Customer.objects.all(), required=False, allow_null=True
    )
    customer_name = serializers.CharField(source="customer.name", read_only=True, default=None)
    boxes = BoxSerializer(many=True, read_only=True)
    totals = serializers.SerializerMethodField()

    class Meta:
        model = Shipment
        fields = [
            "id",
            "name",
            "destination",
            "customer",
            "customer_name",
            "lot_number",
            "notes",
            "boxes",
            "totals",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["created_at", "updated_at"]

    def get_totals(self, obj):
        return shipment_totals(obj)

    def validate_name(self, value):
        if not value or not value.strip():
            raise serializers.ValidationError("El nombre del envío es requerido")
        return value.strip()

    def validate_destination(self, value):
        if not value or not value.strip():
            raise serializers.ValidationError("El destino es requerido")
        return value.strip()


class ShipmentListSerializer(serializers.ModelSerializer):
    customer_name = serializers.CharField(source="customer.name", read_only=True, default=None)
    box_count = serializers.IntegerField(source="boxes.count", read_only=True)

    class Meta:
        model = Shipment
        fields = ["id", "name", "destination", "customer", "customer_name", "lot_number", "box_count", "created_at"]


class ShipmentDocumentSerializer(serializers.ModelSerializer):
    url = serializers.SerializerMethodField(read_only=True)
    doc_type_display = serializers.CharField(source="get_doc_type_display", read_only=True)

    class Meta:
        model = ShipmentDocument
        fields = [
            "id",
            "shipment",
            "doc_type",
            "doc_type_display",
            "custom_doc_type_label",
            "file",
            "url",
            "file_name",
            "mime_type",
            "file_size",
            "notes",
            "uploaded_at",
        ]
        read_only_fields = ["shipment", "file_name", "mime_type", "file_size", "uploaded_at"]

    def get_url(self, obj):
        try:
            return obj.file.url
        except ValueError:
            return None
