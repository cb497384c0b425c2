"""
Serializers para la configuración de la cuenta
"""
from rest_framework import serializers
from ..models import UserSettings


class UserSettingsSerializer(serializers.ModelSerializer):
    """Datos de la empresa exportadora; el plan solo se cambia por administración"""

    class Meta:
        model = UserSettings
        fields = [
            "name",
            "email",
            "phone",
            "address",
            "city",
            "state",
            "country",
            "currency",
            "subscription_status",
            "updated_at",
        ]
        read_only_fields = ["subscription_status", "updated_at"]

    def validate_currency(self, value):
        value = (value or "").strip().upper()
        if len(value) != 3 or not value.isalpha():
            raise serializers.ValidationError("La moneda debe ser un código ISO de 3 letras")
        return value


class SubscriptionUpdateSerializer(serializers.Serializer):
    user_id = serializers.IntegerField()
    subscription_status = serializers.ChoiceField(choices=UserSettings.SubscriptionStatus.choices)
