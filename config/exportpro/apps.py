from django.apps import AppConfig


class ExportProConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'exportpro'
    verbose_name = 'ExportPro'

    def ready(self):
        from .core import signals  # noqa: F401
        return super().ready()
