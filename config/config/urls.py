"""
URL configuration for the ExportPro API.
"""

from django.contrib import admin
from django.urls import path, include
from django.conf import settings
from django.conf.urls.static import static
from rest_framework import routers
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView
from drf_spectacular.views import (
    SpectacularAPIView,
    SpectacularSwaggerView,
    SpectacularRedocView,
)
from exportpro import views
from drf_spectacular.utils import extend_schema

class CustomTokenObtainPairView(TokenObtainPairView):
    """
    View para obtener el token de acceso usando las credenciales del usuario con extend_schema.
    """
    @extend_schema(
        tags=['Authentication'],
        summary='Obtener token de acceso',
        description='Endpoint para obtener un par de tokens (access y refresh) mediante credenciales de usuario.'
    )
    def post(self, request, *args, **kwargs):
        return super().post(request, *args, **kwargs)

class CustomTokenRefreshView(TokenRefreshView):
    """
    View para renovar el token de acceso usando el token de refresh con extend_schema.
    """
    @extend_schema(
        tags=['Authentication'],
        summary='Renovar token de acceso',
        description='Endpoint para renovar el token de acceso usando el token de refresh.'
    )
    def post(self, request, *args, **kwargs):
        return super().post(request, *args, **kwargs)

router = routers.DefaultRouter()
router.register(
    r"account",
    views.AccountViewSet,
    basename="account"
)
router.register(
    r"dashboard",
    views.DashboardViewSet,
    basename="dashboard"
)
router.register(
    r"export",
    views.ExportViewSet,
    basename="export"
)
router.register(
    r"suppliers",
    views.SupplierViewSet,
    basename="suppliers"
)
router.register(
    r"customers",
    views.CustomerViewSet,
    basename="customers"
)
router.register(
    r"invoices",
    views.InvoiceViewSet,
    basename="invoices"
)
router.register(
    r"products",
    views.ProductViewSet,
    basename="products"
)
router.register(
    r"box-types",
    views.BoxTypeViewSet,
    basename="box-types"
)
router.register(
    r"shipments",
    views.ShipmentViewSet,
    basename="shipments"
)

urlpatterns = [
    path("admin/", admin.site.urls),
    # JWT Authentication
    path("api-auth/", include("rest_framework.urls", namespace="rest_framework")),
    path("api/token/", CustomTokenObtainPairView.as_view(), name="token_obtain_pair"),
    path("api/token/refresh/", CustomTokenRefreshView.as_view(), name="token_refresh"),
    # API endpoints
    path("api/", include(router.urls)),
    # API Documentation
    path("api/schema/", SpectacularAPIView.as_view(), name="schema"),
    path(
        "api/docs/",
        SpectacularSwaggerView.as_view(url_name="schema"),
        name="swagger-ui",
    ),
    path(
        "api/redoc/",
        SpectacularRedocView.as_view(url_name="schema"),
        name="redoc"
    ),
]

if settings.DEBUG:
    urlpatterns += static(settings.MEDIA_URL, document_root=settings.MEDIA_ROOT)
