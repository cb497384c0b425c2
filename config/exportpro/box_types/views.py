"""
Views para tipos de caja
"""
from drf_spectacular.utils import extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from ..core.api_responses import success_response
from ..core.utils import parse_bool_param
from ..models import AuditLog, BoxType
from ..permissions import OwnerScopedMixin
from .serializers import BoxTypeSerializer


@extend_schema(tags=['BoxTypes'])
class BoxTypeViewSet(OwnerScopedMixin, viewsets.ModelViewSet):
    """
    ViewSet para plantillas de caja

    - Eliminar: desactiva la plantilla (las cajas existentes conservan su copia)
    - Eliminar con ?hard=true: borra la plantilla; las cajas quedan sin tipo
    """
    queryset = BoxType.objects.all()
    serializer_class = BoxTypeSerializer

    def get_queryset(self):
        queryset = super().get_queryset()
        if self.action == 'list' and not parse_bool_param(self.request.query_params.get('include_inactive')):
            queryset = queryset.filter(is_active=True)
        return queryset

    def perform_create(self, serializer):
        serializer.save(owner=self.request.user)

    def destroy(self, request, *args, **kwargs):
        instance = self.get_object()
        hard = parse_bool_param(request.query_params.get('hard'))
        AuditLog.objects.create(
            owner=request.user,
            action="delete_box_type" if hard else "deactivate_box_type",
            entity="box_type",
            entity_id=instance.id,
            performed_by=request.user.username,
            extra_data={"name": instance.name, "boxes": instance.boxes.count()},
        )
        if hard:
            instance.delete()
        else:
            instance.is_active = False
            instance.save(update_fields=["is_active", "updated_at"])
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=True, methods=['post'])
    def restore(self, request, pk=None):
        """Reactiva una plantilla desactivada"""
        instance = self.get_object()
        instance.is_active = True
        instance.save(update_fields=["is_active", "updated_at"])
        return success_response(
            detail="Tipo de caja reactivado",
            code="BOX_TYPE_RESTORED",
            box_type=BoxTypeSerializer(instance, context={'request': request}).data,
        )
