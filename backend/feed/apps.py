"""
Feed App Configuration
"""
from django.apps import AppConfig


class FeedConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'feed'

    def ready(self):
        # Connect the feed mirror to ChaosEntry lifecycle signals
        import feed.signals  # noqa
