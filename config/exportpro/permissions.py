from rest_framework import permissions


class IsOwner(permissions.BasePermission):
    """
    Permite acceso solo al dueño del objeto (directo o a través de su padre).
    """

    owner_paths = ("owner", "invoice.owner", "shipment.owner", "box.shipment.owner")

    def has_object_permission(self, request, view, obj):
        for path in self.owner_paths:
            target = obj
            for attribute in path.split("."):
                target = getattr(target, attribute, None)
                if target is None:
                    break
            if target is not None:
                return target == request.user
        return False


class IsStaffUser(permissions.BasePermission):
    """
    Acciones administrativas (cambio de plan de otros usuarios).
    """

    def has_permission(self, request, view):
        return bool(request.user and request.user.is_authenticated and request.user.is_staff)


class OwnerScopedMixin:
    """
    Filtra siempre el queryset por el usuario autenticado.

    Los objetos de otros usuarios responden 404, nunca 403.
    """

    permission_classes = [permissions.IsAuthenticated, IsOwner]

    def get_queryset(self):
        return super().get_queryset().for_owner(self.request.user)
