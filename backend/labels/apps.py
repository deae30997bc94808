from django.apps import AppConfig


class LabelsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'backend.labels'
    verbose_name = 'Barcodes and labels'
