from django.conf import settings
from django.core.files.storage import default_storage
from django.db import models
from storages.backends.s3boto3 import S3Boto3Storage


def document_storage():
    """Almacenamiento para escaneos y documentos (S3 solo si está habilitado)"""
    if getattr(settings, "EXPORTPRO_USE_S3", False):
        return S3Boto3Storage()
    return default_storage


class OwnedQuerySet(models.QuerySet):
    """QuerySet con filtro obligatorio por dueño (multi-tenant)"""

    owner_lookup = "owner"

    def for_owner(self, user):
        return self.filter(**{self.owner_lookup: user})


class InvoiceChildQuerySet(OwnedQuerySet):
    owner_lookup = "invoice__owner"


class ProductLinkQuerySet(OwnedQuerySet):
    owner_lookup = "product__owner"


class ShipmentChildQuerySet(OwnedQuerySet):
    owner_lookup = "shipment__owner"


class BoxProductQuerySet(OwnedQuerySet):
    owner_lookup = "box__shipment__owner"


class UserSettings(models.Model):
    """Perfil de empresa y plan del usuario

    Attributes:
        owner (OneToOneField): Usuario dueño de la configuración
        name (CharField): Nombre de la empresa exportadora
        email, phone, address, city, state, country: Datos de contacto
        currency (CharField): Moneda usada en documentos
        subscription_status (CharField): Plan actual (FREE / PAID)
    """

    class SubscriptionStatus(models.TextChoices):
        FREE = "FREE", "Gratis"
        PAID = "PAID", "Pago"

    owner = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="exportpro_settings",
    )
    name = models.CharField(max_length=150, blank=True)
    email = models.EmailField(blank=True)
    phone = models.CharField(max_length=30, blank=True)
    address = models.TextField(blank=True)
    city = models.CharField(max_length=100, blank=True)
    state = models.CharField(max_length=100, blank=True)
    country = models.CharField(max_length=100, blank=True)
    currency = models.CharField(max_length=3, default="USD")
    subscription_status = models.CharField(
        max_length=10,
        choices=SubscriptionStatus.choices,
        default=SubscriptionStatus.FREE,
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = OwnedQuerySet.as_manager()

    class Meta:
        verbose_name_plural = "user settings"

    def __str__(self):
        return f"{self.owner} ({self.subscription_status})"

    @classmethod
    def for_user(cls, user):
        """Obtiene la configuración del usuario, creándola con valores por defecto"""
        user_settings, _ = cls.objects.get_or_create(
            owner=user,
            defaults={"email": getattr(user, "email", "") or ""},
        )
        return user_settings


class Supplier(models.Model):
    """Proveedor de mercancía

    Attributes:
        name (CharField): Nombre del proveedor
        contact_person (CharField): Persona de contacto (opcional)
        email, phone, address, country: Datos de contacto (opcionales)
        created_at (DateTimeField): Fecha de creación
    """

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="suppliers"
    )
    name = models.CharField(max_length=150)
    contact_person = models.CharField(max_length=150, blank=True)
    email = models.EmailField(blank=True)
    phone = models.CharField(max_length=30, blank=True)
    address = models.TextField(blank=True)
    country = models.CharField(max_length=100, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = OwnedQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return self.name


class Customer(models.Model):
    """Cliente (consignatario) de los envíos"""

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="customers"
    )
    name = models.CharField(max_length=150)
    contact_person = models.CharField(max_length=150, blank=True)
    email = models.EmailField(blank=True)
    phone = models.CharField(max_length=30, blank=True)
    address = models.TextField(blank=True)
    city = models.CharField(max_length=100, blank=True)
    state = models.CharField(max_length=100, blank=True)
    country = models.CharField(max_length=100, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = OwnedQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return self.name


class Invoice(models.Model):
    """Factura de compra a un proveedor

    Attributes:
        supplier (ForeignKey): Proveedor que emite la factura
        customer (ForeignKey): Cliente asociado (opcional)
        invoice_number (CharField): Número de factura (unicidad blanda)
        date (DateField): Fecha de la factura
        amount (DecimalField): Total declarado
        payment_status (CharField): Estado derivado de los pagos
        scan (FileField): Imagen o PDF escaneado (opcional)
    """

    class PaymentStatus(models.TextChoices):
        UNPAID = "unpaid", "Sin pagar"
        PARTIAL = "partial", "Pago parcial"
        PAID = "paid", "Pagada"

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="invoices"
    )
    supplier = models.ForeignKey(
        Supplier, on_delete=models.PROTECT, related_name="invoices"
    )
    customer = models.ForeignKey(
        Customer,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="invoices",
    )
    invoice_number = models.CharField(max_length=100)
    date = models.DateField()
    amount = models.DecimalField(max_digits=14, decimal_places=2)
    payment_status = models.CharField(
        max_length=10,
        choices=PaymentStatus.choices,
        default=PaymentStatus.UNPAID,
    )
    scan = models.FileField(
        upload_to="invoices/",
        storage=document_storage,
        blank=True,
        null=True,
    )
    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = OwnedQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return f"{self.invoice_number} - {self.supplier.name}"


class Payment(models.Model):
    """Pago registrado contra una factura"""

    invoice = models.ForeignKey(
        Invoice, on_delete=models.CASCADE, related_name="payments"
    )
    amount = models.DecimalField(max_digits=14, decimal_places=2)
    payment_date = models.DateField()
    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    objects = InvoiceChildQuerySet.as_manager()

    class Meta:
        ordering = ["-payment_date", "-id"]

    def __str__(self):
        return f"Payment {self.amount} for {self.invoice.invoice_number}"


class Product(models.Model):
    """Producto en inventario

    La identidad es (nombre sin distinguir mayúsculas, hs_code). `quantity` es el
    total recibido y `available_quantity` lo que aún no está asignado a una caja.

    Attributes:
        name (CharField): Nombre del producto (sin espacios al inicio/fin)
        hs_code (CharField): Código arancelario
        unit (CharField): Unidad de medida
        quantity (PositiveIntegerField): Total recibido
        available_quantity (PositiveIntegerField): Disponible para empacar
        alternate_names (JSONField): Otros nombres con los que llegó el producto
    """

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="products"
    )
    name = models.CharField(max_length=200)
    hs_code = models.CharField(max_length=20, blank=True)
    unit = models.CharField(max_length=20, default="pcs")
    quantity = models.PositiveIntegerField(default=0)
    available_quantity = models.PositiveIntegerField(default=0)
    alternate_names = models.JSONField(default=list, blank=True)
    invoices = models.ManyToManyField(
        Invoice,
        through="ProductInvoiceLink",
        related_name="products",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = OwnedQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return f"{self.name} ({self.hs_code})"


class ProductInvoiceLink(models.Model):
    """Cantidad y tarifa con la que un producto llegó en una factura"""

    product = models.ForeignKey(
        Product, on_delete=models.CASCADE, related_name="invoice_links"
    )
    invoice = models.ForeignKey(
        Invoice, on_delete=models.CASCADE, related_name="product_links"
    )
    quantity = models.PositiveIntegerField()
    rate = models.DecimalField(max_digits=14, decimal_places=2)
    created_at = models.DateTimeField(auto_now_add=True)

    objects = ProductLinkQuerySet.as_manager()

    class Meta:
        ordering = ["created_at", "id"]
        constraints = [
            models.UniqueConstraint(
                fields=["product", "invoice"], name="unique_product_invoice_link"
            ),
        ]

    def __str__(self):
        return f"{self.product.name} x{self.quantity} @ {self.rate}"


class BoxType(models.Model):
    """Plantilla de caja reutilizable

    Attributes:
        name (CharField): Nombre único (sin distinguir mayúsculas) por usuario
        dimensions (CharField): "LxWxH" en centímetros
        max_weight (DecimalField): Peso máximo en kg
        empty_weight (DecimalField): Peso de la caja vacía (opcional)
        is_active (BooleanField): Falso cuando la plantilla fue retirada
    """

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="box_types"
    )
    name = models.CharField(max_length=100)
    dimensions = models.CharField(max_length=50)
    max_weight = models.DecimalField(max_digits=10, decimal_places=2)
    empty_weight = models.DecimalField(
        max_digits=10, decimal_places=2, null=True, blank=True
    )
    notes = models.TextField(blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = OwnedQuerySet.as_manager()

    class Meta:
        ordering = ["name", "id"]

    def __str__(self):
        return f"{self.name} ({self.dimensions})"


class Shipment(models.Model):
    """Envío compuesto por cajas numeradas"""

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="shipments"
    )
    name = models.CharField(max_length=150)
    destination = models.CharField(max_length=150)
    customer = models.ForeignKey(
        Customer,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="shipments",
    )
    lot_number = models.CharField(max_length=50, blank=True)
    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = OwnedQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return f"{self.name} -> {self.destination}"


class Box(models.Model):
    """Caja física dentro de un envío

    `weight` y `dimensions` son una copia tomada al crear la caja; no se
    recalculan si la plantilla cambia después.
    """

    shipment = models.ForeignKey(
        Shipment, on_delete=models.CASCADE, related_name="boxes"
    )
    box_type = models.ForeignKey(
        BoxType,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="boxes",
    )
    box_number = models.PositiveIntegerField()
    weight = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    dimensions = models.CharField(max_length=50, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    objects = ShipmentChildQuerySet.as_manager()

    class Meta:
        ordering = ["box_number", "id"]

    def __str__(self):
        return f"Box {self.box_number} of {self.shipment.name}"


class BoxProduct(models.Model):
    """Cantidad de un producto empacada en una caja"""

    box = models.ForeignKey(Box, on_delete=models.CASCADE, related_name="items")
    product = models.ForeignKey(
        Product, on_delete=models.PROTECT, related_name="box_assignments"
    )
    quantity = models.PositiveIntegerField()

    objects = BoxProductQuerySet.as_manager()

    class Meta:
        ordering = ["id"]
        constraints = [
            models.UniqueConstraint(
                fields=["box", "product"], name="unique_box_product"
            ),
        ]

    def __str__(self):
        return f"{self.product.name} x{self.quantity} in box {self.box.box_number}"


class ShipmentDocument(models.Model):
    """Documento final adjunto a un envío (BL, certificado de origen, etc.)"""

    class DocType(models.TextChoices):
        FINAL_INVOICE = "FINAL_INVOICE", "Factura final"
        FINAL_PACKING_LIST = "FINAL_PACKING_LIST", "Lista de empaque final"
        BILL_OF_LADING = "BILL_OF_LADING", "Conocimiento de embarque"
        CERTIFICATE_OF_ORIGIN = "CERTIFICATE_OF_ORIGIN", "Certificado de origen"
        INSURANCE = "INSURANCE", "Seguro"
        OTHER = "OTHER", "Otro"

    shipment = models.ForeignKey(
        Shipment, on_delete=models.CASCADE, related_name="documents"
    )
    doc_type = models.CharField(max_length=30, choices=DocType.choices)
    custom_doc_type_label = models.CharField(max_length=100, blank=True)
    file = models.FileField(upload_to="shipment_documents/", storage=document_storage)
    file_name = models.CharField(max_length=255)
    mime_type = models.CharField(max_length=100)
    file_size = models.PositiveIntegerField(editable=False)
    notes = models.TextField(blank=True)
    uploaded_at = models.DateTimeField(auto_now_add=True)

    objects = ShipmentChildQuerySet.as_manager()

    class Meta:
        ordering = ["-uploaded_at", "-id"]

    def __str__(self):
        return f"{self.get_doc_type_display()} - {self.file_name}"


class AuditLog(models.Model):
    """
    Log de auditoría de las operaciones de inventario y empaque
    """
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="exportpro_audit_logs",
    )
    action = models.CharField(max_length=100)
    entity = models.CharField(max_length=100)
    entity_id = models.PositiveIntegerField()
    performed_by = models.CharField(max_length=150)
    created_at = models.DateTimeField(auto_now_add=True)
    extra_data = models.JSONField(blank=True, null=True)

    objects = OwnedQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at", "-id"]

    def __str__(self):
        return f"{self.action} - {self.entity} ({self.entity_id})"
