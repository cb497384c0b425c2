"""
Views para la cuenta del usuario: datos de empresa y plan
"""
from django.contrib.auth import get_user_model
from drf_spectacular.utils import extend_schema
from rest_framework import permissions, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from ..core.api_responses import success_response
from ..core.plan_limits import usage_summary
from ..core.services import set_subscription_status
from ..models import UserSettings
from ..permissions import IsStaffUser
from .serializers import SubscriptionUpdateSerializer, UserSettingsSerializer


@extend_schema(tags=['Account'])
class AccountViewSet(viewsets.GenericViewSet):
    """
    ViewSet para la configuración de la cuenta
    """
    permission_classes = [permissions.IsAuthenticated]
    serializer_class = UserSettingsSerializer

    @action(detail=False, methods=['get', 'patch'], url_path='settings', url_name='settings')
    def company(self, request):
        """Consultar o actualizar los datos que aparecen en los documentos"""
        user_settings = UserSettings.for_user(request.user)
        if request.method == 'GET':
            return Response(UserSettingsSerializer(user_settings).data)

        serializer = UserSettingsSerializer(user_settings, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        serializer.save()
        return Response(serializer.data)

    @action(detail=False, methods=['get'])
    def plan(self, request):
        """Plan actual, uso del mes y funciones habilitadas"""
        return Response(usage_summary(request.user))

    @action(detail=False, methods=['post'], permission_classes=[IsStaffUser])
    def subscription(self, request):
        """
        Cambiar el plan de un usuario (solo staff)

        POST body: {"user_id": 5, "subscription_status": "PAID"}
        """
        serializer = SubscriptionUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        target = get_user_model().objects.get(pk=serializer.validated_data['user_id'])
        changed = set_subscription_status(
            target,
            serializer.validated_data['subscription_status'],
            performed_by=request.user.username,
        )
        return success_response(
            detail="Plan actualizado" if changed else "El usuario ya tenía ese plan",
            code="SUBSCRIPTION_UPDATED" if changed else "SUBSCRIPTION_UNCHANGED",
            subscription_status=serializer.validated_data['subscription_status'],
        )
