from django.apps import AppConfig


class TeleconsultConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "teleconsult"
    verbose_name = "Teleconsultation"
