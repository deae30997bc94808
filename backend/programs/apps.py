from django.apps import AppConfig


class ProgramsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'backend.programs'

    def ready(self):
        """Import signals when app is ready"""
        import backend.programs.cache  # noqa: F401  # Cache invalidation signals
