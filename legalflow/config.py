# -*- coding: utf-8 -*-
"""
CONFIGURAÇÃO LEGALFLOW
═══════════════════════════════════════════════════════════════════════════

Variáveis de ambiente (.env na raiz do projecto):
- SUPABASE_URL / SUPABASE_KEY / SUPABASE_SERVICE_ROLE_KEY
- LEGALFLOW_SCHEMA      schema Postgres das tabelas de negócio (default: legalflow)
- DOCUMENTS_BUCKET      bucket do Supabase Storage para documentos
- APP_TIMEZONE          fuso horário do escritório (default: America/Sao_Paulo)
- DIRECTDATA_TOKEN      token da API DirectData (consulta CPF)
- STRIPE_SECRET_KEY / STRIPE_WEBHOOK_SECRET
- REDIS_URL             broker Celery e estado do circuit breaker
═══════════════════════════════════════════════════════════════════════════
"""

import os
import logging
from pathlib import Path
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent.parent

# Carregar .env da raiz do projecto (explícito para evitar ambiguidade)
load_dotenv(BASE_DIR / ".env")

ENV = os.getenv("ENV", "production").lower()
IS_DEVELOPMENT = ENV in ("development", "dev", "local")

# =============================================================================
# SUPABASE
# =============================================================================

SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_KEY = os.getenv("SUPABASE_KEY", "")
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")
# URL onde os utilizadores se autenticam (pode diferir do SUPABASE_URL)
SUPABASE_AUTH_URL = os.getenv("SUPABASE_AUTH_URL", "") or SUPABASE_URL

LEGALFLOW_SCHEMA = os.getenv("LEGALFLOW_SCHEMA", "legalflow")
DOCUMENTS_BUCKET = os.getenv("DOCUMENTS_BUCKET", "documentos")

# =============================================================================
# AUTENTICAÇÃO
# =============================================================================

ADMIN_EMAILS = [e.strip().lower() for e in os.getenv("ADMIN_EMAILS", "").split(",") if e.strip()]
JWT_ALLOW_UNVERIFIED_FALLBACK = os.getenv("JWT_ALLOW_UNVERIFIED_FALLBACK", "false").lower() == "true"

# =============================================================================
# LOCALIZAÇÃO
# =============================================================================

APP_TIMEZONE = os.getenv("APP_TIMEZONE", "America/Sao_Paulo")
DEFAULT_CURRENCY = "BRL"

# =============================================================================
# PAGINAÇÃO
# =============================================================================

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100

# =============================================================================
# DOCUMENTOS
# =============================================================================

MAX_DOCUMENT_SIZE = 50 * 1024 * 1024  # 50MB
SIGNED_URL_TTL = 3600  # 1 hora

# =============================================================================
# SERVIÇOS EXTERNOS
# =============================================================================

DIRECTDATA_BASE_URL = os.getenv("DIRECTDATA_BASE_URL", "https://apiv3.directd.com.br/api")
VIACEP_BASE_URL = os.getenv("VIACEP_BASE_URL", "https://viacep.com.br/ws")
EXTERNAL_TIMEOUT = 15.0
CIRCUIT_FAILURE_THRESHOLD = 3
CIRCUIT_RECOVERY_TIMEOUT = 60.0
WEBHOOK_TIMEOUT = 10.0

# =============================================================================
# WORKERS
# =============================================================================

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

# Intervalos dos sweeps periódicos (segundos)
SWEEP_STAGES_INTERVAL = int(os.getenv("SWEEP_STAGES_INTERVAL", "900"))
SWEEP_PARCELAS_INTERVAL = int(os.getenv("SWEEP_PARCELAS_INTERVAL", "3600"))
SWEEP_SLA_INTERVAL = int(os.getenv("SWEEP_SLA_INTERVAL", "600"))
