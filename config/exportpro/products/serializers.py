"""
Serializers para inventario de productos
"""
from rest_framework import serializers

from ..core.ledger import average_rate, packed_quantity
from ..models import Product, ProductInvoiceLink


class ProductInvoiceLinkSerializer(serializers.ModelSerializer):
    invoice_number = serializers.CharField(source="invoice.invoice_number", read_only=True)

    class Meta:
        model = ProductInvoiceLink
        fields = ["id", "invoice", "invoice_number", "quantity", "rate", "created_at"]


class ProductSerializer(serializers.ModelSerializer):
    """
    Serializer de productos

    Las cantidades solo cambian al recibir facturas o al empacar, por eso
    son de solo lectura aquí.
    """

    average_rate = serializers.SerializerMethodField()
    value = serializers.SerializerMethodField()
    invoice_links = ProductInvoiceLinkSerializer(many=True, read_only=True)

    class Meta:
        model = Product
        fields = [
            "id",
            "name",
            "hs_code",
            "unit",
            "quantity",
            "available_quantity",
            "alternate_names",
            "average_rate",
            "value",
            "invoice_links",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["quantity", "available_quantity", "created_at", "updated_at"]

    def get_average_rate(self, obj):
        return average_rate(obj)

    def get_value(self, obj):
        return obj.available_quantity * average_rate(obj)

    def validate_name(self, value):
        if not value or not value.strip():
            raise serializers.ValidationError("El nombre del producto es requerido")
        return value.strip()

    def validate_hs_code(self, value):
        return (value or "").strip()

    def validate_alternate_names(self, value):
        if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
            raise serializers.ValidationError("alternate_names debe ser una lista de textos")
        names = []
        for item in value:
            item = item.strip()
            if item and item.lower() not in {name.lower() for name in names}:
                names.append(item)
        return names

    def validate(self, attrs):
        """Evita que una edición choque con otro producto del mismo nombre y HS code"""
        instance = self.instance
        name = attrs.get("name", getattr(instance, "name", ""))
        hs_code = attrs.get("hs_code", getattr(instance, "hs_code", ""))
        queryset = Product.objects.for_owner(self.context["request"].user).filter(
            name__iexact=name, hs_code=hs_code
        )
        if instance is not None:
            queryset = queryset.exclude(pk=instance.pk)
        if queryset.exists():
            raise serializers.ValidationError("Ya existe un producto con este nombre y HS code")
        return attrs


class ProductStockSerializer(serializers.ModelSerializer):
    """Resumen de stock para listados"""

    packed_quantity = serializers.SerializerMethodField()

    class Meta:
        model = Product
        fields = ["id", "name", "hs_code", "unit", "quantity", "available_quantity", "packed_quantity"]

    def get_packed_quantity(self, obj):
        return packed_quantity(obj)
