"""Celery application factory and instance."""

from celery import Celery


def create_celery_app() -> Celery:
    """Create and configure the Celery application."""
    app = Celery("stackbit_api")

    app.config_from_object("stackbit_api.workers.config")
    app.autodiscover_tasks(["stackbit_api.workers"])

    return app


celery_app = create_celery_app()

# Exposed for the celery CLI (``celery -A stackbit_api.workers.celery_app``)
app = celery_app
