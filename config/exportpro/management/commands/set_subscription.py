"""
Cambia el plan de un usuario
Ejecutar con: python manage.py set_subscription --username=testuser --status=PAID
"""

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.core.management.base import BaseCommand, CommandError

from exportpro.core.services import set_subscription_status


class Command(BaseCommand):
    help = 'Cambia el plan (FREE / PAID) de un usuario'

    def add_arguments(self, parser):
        parser.add_argument('--username', required=True, help='Nombre de usuario')
        parser.add_argument('--status', required=True, help='Plan: FREE o PAID')

    def handle(self, *args, **options):
        User = get_user_model()
        try:
            user = User.objects.get(username=options['username'])
        except User.DoesNotExist:
            raise CommandError(f"Usuario '{options['username']}' no existe")

        try:
            changed = set_subscription_status(user, options['status'], performed_by='manage.py')
        except ValidationError as e:
            raise CommandError(e.messages[0])

        if changed:
            self.stdout.write(
                self.style.SUCCESS(f"Plan de {user.username} actualizado a {options['status'].upper()}")
            )
        else:
            self.stdout.write(f"{user.username} ya tenía el plan {options['status'].upper()}")
