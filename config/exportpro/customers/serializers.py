"""
Serializers para clientes
"""
from rest_framework import serializers
from ..models import Customer


class CustomerSerializer(serializers.ModelSerializer):
    shipment_count = serializers.IntegerField(source="shipments.count", read_only=True)

    class Meta:
        model = Customer
        fields = [
            "id",
            "name",
            "contact_person",
            "email",
            "phone",
            "address",
            "city",
            "state",
            "country",
            "shipment_count",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["created_at", "updated_at"]

    def validate_name(self, value):
        if not value or not value.strip():
            raise serializers.ValidationError("El nombre del cliente es requerido")
        return value.strip()
