"""
MAIN - LegalFlow (FastAPI)
============================================================
Servidor principal com:
  - Conexão ao Supabase
  - Rota de saúde (GET /health, GET /api/v1/health)
  - Rota protegida de teste (GET /me)
  - Routers de domínio em /api/v1 (legalflow.api.*)
  - Endpoints de admin (blacklist, alertas, logs, circuit breakers)
============================================================
"""

import collections
import itertools
import logging
import threading
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth_service import get_current_user, get_supabase, get_supabase_admin, is_admin
from legalflow import __version__, config
from legalflow.api import (
    agenda,
    atendimento,
    audit,
    billing,
    clientes,
    crm,
    documentos,
    financeiro,
    inbox,
    jornadas,
    notifications,
    processos,
    relatorios,
)
from legalflow.api.deps import limiter, require_admin
from legalflow.errors import LegalFlowError
from legalflow.external.circuit_breaker import get_circuit_breaker
from legalflow.responses import (
    error_body,
    http_exception_handler,
    legalflow_error_handler,
    ok,
    request_validation_handler,
    unhandled_exception_handler,
)
from legalflow.utils.datas import now_iso

# =============================================================================
# IN-MEMORY LOG BUFFER: para endpoint /admin/logs (monitorização remota)
# =============================================================================

class InMemoryLogHandler(logging.Handler):
    """Circular buffer que guarda os últimos N log records em memória."""

    def __init__(self, capacity: int = 2000):
        super().__init__()
        self._buffer: collections.deque = collections.deque(maxlen=capacity)
        self._counter = itertools.count(1)
        self._lock = threading.Lock()

    def emit(self, record: logging.LogRecord):
        try:
            seq = next(self._counter)
            with self._lock:
                self._buffer.append({
                    "id": seq,
                    "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
                    "level": record.levelname,
                    "logger": record.name,
                    "msg": self.format(record),
                })
        except Exception:
            self.handleError(record)

    def get_logs(self, limit: int = 200, level: Optional[str] = None, search: Optional[str] = None,
                 since_id: int = 0) -> list[dict]:
        with self._lock:
            snapshot = list(self._buffer)
        result = []
        for entry in snapshot:
            if entry["id"] <= since_id:
                continue
            if level and entry["level"] != level.upper():
                continue
            if search and search.lower() not in entry["msg"].lower():
                continue
            result.append(entry)
        return result[-limit:] if limit > 0 else []


_log_buffer = InMemoryLogHandler(capacity=5000)
_log_buffer.setFormatter(logging.Formatter("%(name)s | %(message)s"))
logging.root.addHandler(_log_buffer)
logging.root.setLevel(logging.INFO)

logger = logging.getLogger(__name__)


# ============================================================
# RATE LIMITING
# ============================================================

def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    limit_detail = str(exc.detail or "")
    if "per 1 day" in limit_detail or "per day" in limit_detail:
        _register_security_alert(request, limit_detail)

    body = error_body("Demasiados pedidos. Tente novamente em breve.", limit_detail)
    return JSONResponse(status_code=429, content=body)


def _register_security_alert(request: Request, limit_detail: str):
    """Regista alerta de segurança quando um limite diário é atingido."""
    ip = get_remote_address(request)
    endpoint = request.url.path
    detail = f"Limite diário atingido: {limit_detail} | Endpoint: {endpoint} | IP: {ip}"

    logger.critical(f"[SECURITY ALERT] Bloqueio 24h activado! IP: {ip} | Endpoint: {endpoint}")
    try:
        get_supabase_admin().table("security_alerts").insert({
            "alert_type": "daily_rate_limit",
            "endpoint": endpoint,
            "offender": ip,
            "detail": detail,
        }).execute()
    except Exception as e:
        logger.error(f"[SECURITY] Erro ao registar alerta de segurança: {e}")


# ============================================================
# BLACKLIST - Bloqueio de emails, IPs e domínios
# ============================================================

BLACKLIST_TYPES = ("email", "ip", "domain")
BLACKLIST_CACHE_TTL = 60  # segundos
BLACKLIST_EXEMPT_PATHS = ("/health", "/api/v1/health", "/docs", "/openapi.json", "/redoc")

_blacklist_cache: dict = {"email": set(), "ip": set(), "domain": set(), "loaded_at": 0.0}
_blacklist_lock = threading.Lock()


def _load_blacklist():
    """Carrega a blacklist do Supabase para cache local."""
    if time.time() - _blacklist_cache["loaded_at"] < BLACKLIST_CACHE_TTL:
        return

    with _blacklist_lock:
        now = time.time()
        if now - _blacklist_cache["loaded_at"] < BLACKLIST_CACHE_TTL:
            return
        try:
            rows = get_supabase_admin().table("blacklist").select("type, value").execute().data or []
            loaded = {t: set() for t in BLACKLIST_TYPES}
            for row in rows:
                if row.get("type") in loaded:
                    loaded[row["type"]].add((row.get("value") or "").lower().strip())
            _blacklist_cache.update(loaded)
            _blacklist_cache["loaded_at"] = now
        except Exception as e:
            logger.warning(f"[BLACKLIST] Erro ao carregar blacklist (ignorado): {e}")


def _invalidate_blacklist():
    with _blacklist_lock:
        _blacklist_cache["loaded_at"] = 0.0


def _check_blacklist(request: Request, user: Optional[dict] = None):
    """Verifica se o request vem de IP, email ou domínio bloqueado."""
    _load_blacklist()

    ip = get_remote_address(request)
    if ip in _blacklist_cache["ip"]:
        logger.warning(f"[BLACKLIST] IP bloqueado: {ip}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Acesso bloqueado. Contacte o administrador.",
        )

    email = ((user or {}).get("email") or "").lower().strip()
    if not email:
        return
    if email in _blacklist_cache["email"]:
        logger.warning(f"[BLACKLIST] Email bloqueado: {email[:3]}***")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Conta bloqueada. Contacte o administrador.",
        )
    domain = email.split("@")[-1] if "@" in email else ""
    if domain in _blacklist_cache["domain"]:
        logger.warning(f"[BLACKLIST] Domínio bloqueado: {domain}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Domínio de email bloqueado. Contacte o administrador.",
        )


async def get_allowed_user(request: Request, user: dict = Depends(get_current_user)) -> dict:
    """Utilizador autenticado que não consta da blacklist (email/domínio)."""
    _check_blacklist(request, user)
    return user


# ============================================================
# LIFESPAN - startup / shutdown
# ============================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Inicializa recursos no arranque e limpa no shutdown."""
    if not config.SUPABASE_URL or not config.SUPABASE_KEY:
        logger.warning("[AVISO] SUPABASE_URL ou SUPABASE_KEY não definidos no .env")
    else:
        get_supabase()
        logger.info(f"[OK] Supabase (anon) conectado: {config.SUPABASE_URL[:40]}...")

    if not config.SUPABASE_SERVICE_ROLE_KEY:
        logger.warning("[AVISO] SUPABASE_SERVICE_ROLE_KEY não definida - operações de servidor falharão")
    else:
        get_supabase_admin()
        logger.info(f"[OK] Supabase (service_role) conectado. Schema: {config.LEGALFLOW_SCHEMA}")

    if not config.ADMIN_EMAILS:
        logger.warning("[AVISO] ADMIN_EMAILS vazio - rotas de admin inacessíveis")

    logger.info(f"[OK] LegalFlow v{__version__} - Servidor iniciado ({config.ENV}).")
    yield
    logger.info("[OK] Servidor encerrado.")


# ============================================================
# APP
# ============================================================

app = FastAPI(
    title="LegalFlow",
    description="Gestão de escritório de advocacia: processos, jornadas, atendimento e financeiro",
    version=__version__,
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_exception_handler(LegalFlowError, legalflow_error_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

CORS_ORIGINS = [
    "https://legalflow.app",
    "https://www.legalflow.app",
    "https://app.legalflow.app",
]
if config.IS_DEVELOPMENT:
    CORS_ORIGINS.extend([
        "http://localhost:3000",
        "http://localhost:5173",
        "http://localhost:8080",
    ])
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Stripe-Signature"],
)


@app.middleware("http")
async def security_middleware(request: Request, call_next):
    if request.url.path not in BLACKLIST_EXEMPT_PATHS:
        try:
            _check_blacklist(request)
        except HTTPException as exc:
            return JSONResponse(status_code=exc.status_code, content=error_body(exc.detail))

    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


ROUTERS = (
    processos.router,
    clientes.router,
    clientes.cadastro_router,
    documentos.router,
    inbox.router,
    notifications.router,
    notifications.chat_router,
    jornadas.router,
    atendimento.router,
    agenda.router,
    financeiro.router,
    crm.router,
    billing.router,
    relatorios.router,
    audit.router,
)
for _router in ROUTERS:
    app.include_router(_router)

ENDPOINT_GROUPS = {
    "processos": "/api/v1/processos",
    "clientes": "/api/v1/clientes",
    "cadastro": "/api/v1/cadastro",
    "documentos": "/api/v1/documentos",
    "inbox": "/api/v1/inbox",
    "notifications": "/api/v1/notifications",
    "chat": "/api/v1/chat",
    "jornadas": "/api/v1/journeys",
    "templates": "/api/v1/journey-templates",
    "tickets": "/api/v1/tickets",
    "activities": "/api/v1/activities",
    "bridge": "/api/v1/bridge",
    "agenda": "/api/v1/agenda",
    "financeiro": "/api/v1/financeiro",
    "crm": "/api/v1/crm",
    "stripe": "/api/v1/stripe",
    "relatorios": "/api/v1/relatorios",
    "audit": "/api/v1/audit",
}


# ============================================================
# ROTAS PÚBLICAS
# ============================================================

@app.get("/health")
async def health():
    """Rota de saúde - verifica se o servidor está online."""
    return {"status": "online"}


@app.get("/api/v1/health")
async def api_health():
    return ok({
        "status": "online",
        "version": __version__,
        "timestamp": now_iso(),
        "endpoints": ENDPOINT_GROUPS,
    })


# ============================================================
# ROTAS PROTEGIDAS
# ============================================================

@app.get("/me")
@limiter.limit("60/minute")
async def me(request: Request, user: dict = Depends(get_allowed_user)):
    """Dados do utilizador autenticado."""
    return ok({"user_id": user["id"], "email": user["email"], "is_admin": is_admin(user)})


# ============================================================
# ADMIN - BLACKLIST
# ============================================================

class BlacklistAddRequest(BaseModel):
    type: str
    value: str = Field(min_length=1, max_length=320)
    reason: str = ""


@app.get("/admin/blacklist")
@limiter.limit("30/minute")
async def admin_blacklist_list(request: Request, admin: dict = Depends(require_admin)):
    """Lista todas as entradas na blacklist (apenas admin)."""
    rows = get_supabase_admin().table("blacklist").select("*").order("created_at", desc=True).execute().data
    return ok({"blacklist": rows or [], "total": len(rows or [])})


@app.post("/admin/blacklist", status_code=201)
@limiter.limit("30/minute")
async def admin_blacklist_add(request: Request, req: BlacklistAddRequest, admin: dict = Depends(require_admin)):
    """Adiciona email, IP ou domínio à blacklist (apenas admin)."""
    if req.type not in BLACKLIST_TYPES:
        raise HTTPException(status_code=400, detail="Tipo inválido. Opções: email, ip, domain.")
    value = req.value.lower().strip()
    if not value:
        raise HTTPException(status_code=400, detail="Valor não pode estar vazio.")

    admin_email = (admin.get("email") or "").lower()
    result = get_supabase_admin().table("blacklist").insert({
        "type": req.type,
        "value": value,
        "reason": req.reason or f"Bloqueado por {admin_email}",
        "added_by": admin_email,
    }).execute()
    _invalidate_blacklist()

    logger.info(f"[BLACKLIST] Adicionado: {req.type}={value} por {admin_email}")
    return ok(result.data[0] if result.data else {}, "Entrada adicionada à blacklist")


@app.delete("/admin/blacklist/{entry_id}")
@limiter.limit("30/minute")
async def admin_blacklist_remove(request: Request, entry_id: str, admin: dict = Depends(require_admin)):
    """Remove entrada da blacklist (apenas admin)."""
    get_supabase_admin().table("blacklist").delete().eq("id", entry_id).execute()
    _invalidate_blacklist()
    logger.info(f"[BLACKLIST] Removido: {entry_id} por {admin.get('email')}")
    return ok({"removed": entry_id}, "Entrada removida da blacklist")


# ============================================================
# ADMIN - ALERTAS DE SEGURANÇA
# ============================================================

@app.get("/admin/security-alerts")
@limiter.limit("30/minute")
async def admin_security_alerts(request: Request, resolved: bool = False, limit: int = 50,
                                admin: dict = Depends(require_admin)):
    """Lista alertas de segurança (apenas admin)."""
    rows = get_supabase_admin().table("security_alerts").select("*").eq(
        "resolved", resolved
    ).order("created_at", desc=True).limit(max(1, min(limit, 100))).execute().data or []
    return ok({
        "alerts": rows,
        "total": len(rows),
        "showing": "resolved" if resolved else "unresolved",
    })


@app.post("/admin/security-alerts/{alert_id}/resolve")
@limiter.limit("30/minute")
async def resolve_security_alert(request: Request, alert_id: str, admin: dict = Depends(require_admin)):
    """Marca um alerta como resolvido (apenas admin)."""
    get_supabase_admin().table("security_alerts").update({"resolved": True}).eq("id", alert_id).execute()
    return ok({"alert_id": alert_id}, "Alerta resolvido")


# ============================================================
# ADMIN - LOGS E CIRCUIT BREAKERS
# ============================================================

@app.get("/admin/logs")
@limiter.limit("60/minute")
async def admin_logs(
    request: Request,
    limit: int = 1000,
    level: Optional[str] = None,
    search: Optional[str] = None,
    since_id: int = 0,
    admin: dict = Depends(require_admin),
):
    """
    Retorna logs em memória para monitorização remota (apenas admin).

    Params:
        limit: máx entries (default 1000)
        level: filtrar por nível (INFO, WARNING, ERROR)
        search: filtrar por texto (case-insensitive)
        since_id: só logs com id > since_id (para polling incremental)
    """
    logs = _log_buffer.get_logs(limit=limit, level=level, search=search, since_id=since_id)
    return ok({"count": len(logs), "logs": logs})


@app.get("/admin/circuits")
@limiter.limit("30/minute")
async def admin_circuits(request: Request, admin: dict = Depends(require_admin)):
    return ok(get_circuit_breaker().get_all_statuses())


@app.post("/admin/circuits/{provider}/reset")
@limiter.limit("10/minute")
async def admin_circuit_reset(request: Request, provider: str, admin: dict = Depends(require_admin)):
    get_circuit_breaker().reset(provider)
    logger.info(f"[CIRCUIT] {provider} reposto por {admin.get('email')}")
    return ok(get_circuit_breaker().get_all_statuses().get(provider), f"Circuit breaker '{provider}' reposto")
