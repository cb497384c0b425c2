"""
Serializers para gestión de proveedores
"""
from rest_framework import serializers
from ..models import Supplier


class SupplierSerializer(serializers.ModelSerializer):
    """Serializer para gestión de proveedores"""

    invoice_count = serializers.IntegerField(source="invoices.count", read_only=True)

    class Meta:
        model = Supplier
        fields = [
            "id",
            "name",
            "contact_person",
            "email",
            "phone",
            "address",
            "country",
            "invoice_count",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["created_at", "updated_at"]

    def validate_name(self, value):
        """El nombre es obligatorio; los parecidos solo se advierten"""
        if not value or not value.strip():
            raise serializers.ValidationError("El nombre del proveedor es requerido")
        return value.strip()


class SupplierSimpleSerializer(serializers.ModelSerializer):
    """Serializer simplificado para selects y consultas"""

    class Meta:
        model = Supplier
        fields = ["id", "name", "country", "created_at"]
