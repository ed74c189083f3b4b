# ============================================================================
# LegalFlow: Celery Configuration
# ============================================================================
# Celery com Redis como broker para os sweeps periódicos:
#   - etapas de jornada vencidas (dispara regras on_overdue)
#   - parcelas pendentes vencidas
#   - escalonamento SLA dos tickets
# ============================================================================

import logging

from celery import Celery

from legalflow.config import (
    REDIS_URL,
    SWEEP_PARCELAS_INTERVAL,
    SWEEP_SLA_INTERVAL,
    SWEEP_STAGES_INTERVAL,
)

logger = logging.getLogger(__name__)

celery_app = Celery(
    "legalflow",
    broker=REDIS_URL,
    backend=REDIS_URL,
    include=["legalflow.tasks"],
)

celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    # Timezone
    timezone="UTC",
    enable_utc=True,
    # Task tracking
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    # Time limits
    task_soft_time_limit=120,
    task_time_limit=300,
    # Results
    result_expires=3600,
    # Connection
    broker_connection_retry_on_startup=True,
    broker_connection_retry=True,
    broker_connection_max_retries=10,
    # Periodic sweeps (celery beat)
    beat_schedule={
        "sweep-overdue-stages": {
            "task": "legalflow.tasks.sweep_overdue_stages",
            "schedule": float(SWEEP_STAGES_INTERVAL),
        },
        "sweep-overdue-parcelas": {
            "task": "legalflow.tasks.sweep_overdue_parcelas",
            "schedule": float(SWEEP_PARCELAS_INTERVAL),
        },
        "sweep-ticket-sla": {
            "task": "legalflow.tasks.sweep_ticket_sla",
            "schedule": float(SWEEP_SLA_INTERVAL),
        },
    },
)

logger.info(f"Celery configurado com broker: {REDIS_URL[:20]}...")
