"""
Verifica que disponible + empacado == recibido para cada producto
Ejecutar con: python manage.py check_inventory_conservation [--username=testuser]
"""

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError

from exportpro.core.ledger import conservation_drift
from exportpro.models import Product


class Command(BaseCommand):
    help = 'Reporta productos cuyo disponible más lo empacado no coincide con lo recibido'

    def add_arguments(self, parser):
        parser.add_argument('--username', help='Limitar la revisión a un usuario')

    def handle(self, *args, **options):
        products = Product.objects.select_related('owner').prefetch_related('box_assignments')
        if options['username']:
            User = get_user_model()
            try:
                user = User.objects.get(username=options['username'])
            except User.DoesNotExist:
                raise CommandError(f"Usuario '{options['username']}' no existe")
            products = products.for_owner(user)

        drift = conservation_drift(products)
        if not drift:
            self.stdout.write(self.style.SUCCESS(f"Inventario consistente ({products.count()} productos)"))
            return

        for entry in drift:
            self.stdout.write(
                self.style.WARNING(
                    f"[{entry['product_id']}] {entry['name']}: recibido {entry['quantity']}, "
                    f"disponible {entry['available_quantity']}, empacado {entry['packed_quantity']}"
                )
            )
        raise CommandError(f"{len(drift)} productos con diferencias de inventario")
