"""Worker entry point: ``celery -A agromarket.worker worker``."""
from agromarket import create_app
from agromarket.celery_app import create_celery_app

flask_app = create_app()
celery = create_celery_app(flask_app)
