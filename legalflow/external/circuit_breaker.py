# ============================================================================
# LegalFlow: Circuit Breaker dos serviços externos
# ============================================================================
# Conta falhas por provider (directdata, viacep, webhook...) e corta as
# chamadas enquanto o provider está em falha.
#
# Estados:
#   CLOSED    → Normal, chamadas passam
#   OPEN      → Provider em falha, chamadas rejeitadas
#   HALF_OPEN → A testar recuperação (1 chamada de teste)
#
# Estado em memória; partilhado via Redis quando CIRCUIT_BREAKER_REDIS=true.
# ============================================================================

import os
import time
import logging
import threading
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Optional

from legalflow.config import (
    CIRCUIT_FAILURE_THRESHOLD,
    CIRCUIT_RECOVERY_TIMEOUT,
    REDIS_URL,
)
from legalflow.errors import ExternalServiceError

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitStatus:
    state: CircuitState
    failure_count: int
    last_failure_time: float
    last_success_time: float
    last_error: str = ""

    def to_dict(self) -> dict:
        data = asdict(self)
        data["state"] = self.state.value
        return data


def _closed() -> CircuitStatus:
    return CircuitStatus(
        state=CircuitState.CLOSED,
        failure_count=0,
        last_failure_time=0.0,
        last_success_time=0.0,
    )


class CircuitBreaker:
    """Circuit breaker por provider."""

    def __init__(
        self,
        failure_threshold: int = CIRCUIT_FAILURE_THRESHOLD,
        recovery_timeout: float = CIRCUIT_RECOVERY_TIMEOUT,
        redis_client=None,
        key_prefix: str = "legalflow:cb:",
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._redis = redis_client
        self._key_prefix = key_prefix
        self._local_state: dict[str, CircuitStatus] = {}
        self._lock = threading.Lock()

    def _get_status(self, provider: str) -> CircuitStatus:
        if self._redis:
            try:
                data = self._redis.hgetall(f"{self._key_prefix}{provider}")
                if data:
                    return CircuitStatus(
                        state=CircuitState(data.get(b"state", b"closed").decode()),
                        failure_count=int(data.get(b"failure_count", b"0")),
                        last_failure_time=float(data.get(b"last_failure_time", b"0")),
                        last_success_time=float(data.get(b"last_success_time", b"0")),
                        last_error=data.get(b"last_error", b"").decode(),
                    )
            except Exception as e:
                logger.warning(f"[CIRCUIT] Leitura Redis falhou para {provider}: {e}")

        with self._lock:
            status = self._local_state.get(provider)
            if status is None:
                return _closed()
            return CircuitStatus(**asdict(status))

    def _set_status(self, provider: str, status: CircuitStatus) -> None:
        with self._lock:
            self._local_state[provider] = status

        if self._redis:
            try:
                key = f"{self._key_prefix}{provider}"
                self._redis.hset(
                    key,
                    mapping={
                        "state": status.state.value,
                        "failure_count": str(status.failure_count),
                        "last_failure_time": str(status.last_failure_time),
                        "last_success_time": str(status.last_success_time),
                        "last_error": status.last_error[:500],
                    },
                )
                self._redis.expire(key, 600)
            except Exception as e:
                logger.warning(f"[CIRCUIT] Escrita Redis falhou para {provider}: {e}")

    def can_call(self, provider: str) -> bool:
        """True se CLOSED ou HALF_OPEN (chamada de teste), False se OPEN."""
        status = self._get_status(provider)

        if status.state == CircuitState.OPEN:
            elapsed = time.time() - status.last_failure_time
            if elapsed >= self.recovery_timeout:
                status.state = CircuitState.HALF_OPEN
                self._set_status(provider, status)
                logger.info(f"[CIRCUIT] {provider}: OPEN → HALF_OPEN (teste de recuperação)")
                return True
            return False

        return True

    def ensure_can_call(self, provider: str) -> None:
        """Levanta ExternalServiceError se o circuito do provider estiver aberto."""
        if not self.can_call(provider):
            raise ExternalServiceError(
                provider, "Serviço temporariamente indisponível. Tente novamente em breve."
            )

    def record_success(self, provider: str) -> None:
        status = self._get_status(provider)
        if status.state != CircuitState.CLOSED:
            logger.info(f"[CIRCUIT] {provider}: {status.state.value} → CLOSED (sucesso)")
        status.state = CircuitState.CLOSED
        status.failure_count = 0
        status.last_success_time = time.time()
        status.last_error = ""
        self._set_status(provider, status)

    def record_failure(self, provider: str, error: Optional[str] = None) -> None:
        status = self._get_status(provider)
        status.failure_count += 1
        status.last_failure_time = time.time()
        status.last_error = error or ""

        if status.state == CircuitState.HALF_OPEN:
            status.state = CircuitState.OPEN
            logger.warning(f"[CIRCUIT] {provider}: HALF_OPEN → OPEN (teste falhou: {error})")
        elif status.failure_count >= self.failure_threshold and status.state != CircuitState.OPEN:
            status.state = CircuitState.OPEN
            logger.warning(
                f"[CIRCUIT] {provider}: CLOSED → OPEN "
                f"({status.failure_count} falhas, limite={self.failure_threshold})"
            )

        self._set_status(provider, status)

    def get_all_statuses(self) -> dict[str, dict]:
        with self._lock:
            providers = list(self._local_state)
        return {p: self._get_status(p).to_dict() for p in providers}

    def reset(self, provider: str) -> None:
        status = _closed()
        status.last_success_time = time.time()
        self._set_status(provider, status)
        logger.info(f"[CIRCUIT] {provider}: reposto manualmente para CLOSED")


# ============================================================
# SINGLETON
# ============================================================

_breaker: Optional[CircuitBreaker] = None
_breaker_lock = threading.Lock()


def get_circuit_breaker() -> CircuitBreaker:
    """Circuit breaker partilhado pelo processo (Redis opcional)."""
    global _breaker
    with _breaker_lock:
        if _breaker is None:
            redis_client = None
            if os.environ.get("CIRCUIT_BREAKER_REDIS", "false").lower() == "true":
                import redis
                redis_client = redis.Redis.from_url(REDIS_URL)
                logger.info("[CIRCUIT] Estado partilhado via Redis.")
            _breaker = CircuitBreaker(redis_client=redis_client)
        return _breaker
