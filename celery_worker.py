# ============================================================================
# LegalFlow: Celery Worker Entry Point
# ============================================================================
# Iniciar com:
#   celery -A celery_worker worker --loglevel=info
#   celery -A celery_worker beat --loglevel=info
# ============================================================================

from legalflow.celery_app import celery_app  # noqa: F401

# Registar as tasks
import legalflow.tasks  # noqa: F401,E402
