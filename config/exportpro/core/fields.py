"""
Campos de serializer compartidos
"""
from rest_framework import serializers


class OwnedPrimaryKeyRelatedField(serializers.PrimaryKeyRelatedField):
    """
    PrimaryKeyRelatedField limitado a los registros del usuario de la petición.

    Un id de otro usuario se reporta igual que uno inexistente.
    """

    def get_queryset(self):
        queryset = super().get_queryset()
        request = self.context.get("request")
        if request is None or not request.user.is_authenticated:
            return queryset.none()
        return queryset.for_owner(request.user)
