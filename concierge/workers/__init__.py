from concierge.workers.celery_app import celery_app

# Import tasks for registration side effects (Celery worker/beat loads this package).
import concierge.workers.billing  # noqa: F401
import concierge.workers.replies  # noqa: F401

__all__ = ["celery_app"]
