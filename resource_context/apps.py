from django.apps import AppConfig


class ResourceContextConfig(AppConfig):
    name = "resource_context"
    verbose_name = "Resource Context"

    def ready(self):
        # Registers the setting_changed receiver.
        from . import conf  # noqa: F401
