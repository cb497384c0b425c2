"""
Serializers para tipos de caja
"""
from rest_framework import serializers
from ..core.packing import parse_dimensions
from ..models import BoxType


class BoxTypeSerializer(serializers.ModelSerializer):
    """Plantilla de caja; las dimensiones se guardan como "LxWxH" en cm"""

    cbm = serializers.SerializerMethodField(read_only=True)

    class Meta:
        model = BoxType
        fields = [
            "id",
            "name",
            "dimensions",
            "max_weight",
            "empty_weight",
            "notes",
            "is_active",
            "cbm",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["created_at", "updated_at"]

    def get_cbm(self, obj):
        parsed = parse_dimensions(obj.dimensions)
        if parsed is None:
            return 0
        length, width, height = parsed
        return round(length * width * height / 1_000_000, 4)

    def validate_name(self, value):
        """Validar que el nombre no esté duplicado para el usuario"""
        if not value or not value.strip():
            raise serializers.ValidationError("El nombre del tipo de caja es requerido")
        queryset = BoxType.objects.for_owner(self.context["request"].user).filter(name__iexact=value.strip())
        if self.instance:
            queryset = queryset.exclude(pk=self.instance.pk)
        if queryset.exists():
            raise serializers.ValidationError("Ya existe un tipo de caja con este nombre")
        return value.strip()

    def validate_dimensions(self, value):
        parsed = parse_dimensions(value)
        if parsed is None or any(part <= 0 for part in parsed):
            raise serializers.ValidationError("Las dimensiones deben tener el formato LxWxH con números positivos")
        return "x".join(f"{part:g}" for part in parsed)

    def validate_max_weight(self, value):
        if value < 0:
            raise serializers.ValidationError("El peso máximo no puede ser negativo")
        return value

    def validate_empty_weight(self, value):
        if value is not None and value < 0:
            raise serializers.ValidationError("El peso vacío no puede ser negativo")
        return value
