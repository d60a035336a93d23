"""Background worker package (Celery)."""
