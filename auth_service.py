"""
AUTH SERVICE - LegalFlow
============================================================
Autenticação dos pedidos à API com o JWT emitido pelo Supabase Auth.

Validação:
  1. Assinatura verificada com as chaves JWKS do projecto
     (ES256 ou RS256, cache de 1 hora)
  2. Expiração e audience "authenticated" verificadas sempre
  3. Sem JWKS disponível, decode sem assinatura APENAS se
     JWT_ALLOW_UNVERIFIED_FALLBACK=true
  4. Assinatura inválida = token rejeitado (nunca há fallback)

O utilizador devolvido é {"id", "email", "exp", "is_admin"}.
============================================================
"""

import hashlib
import logging
import threading
import time

import httpx
import jwt as pyjwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from supabase import Client, create_client

from legalflow import config

logger = logging.getLogger(__name__)

security = HTTPBearer()

_clients: dict[str, Client] = {}
_clients_lock = threading.Lock()

# {sha256(token): {"user": {...}, "expires": ts}}
_token_cache: dict = {}
_token_cache_lock = threading.Lock()
TOKEN_CACHE_TTL = 120
TOKEN_CACHE_MAX_SIZE = 500

JWKS_CACHE_TTL = 3600
_jwks_cache: dict = {"keys": None, "fetched_at": 0.0}
_jwks_lock = threading.Lock()

JWT_AUDIENCE = "authenticated"


# ============================================================
# CLIENTES SUPABASE
# ============================================================

def _client(name: str, key: str) -> Client:
    with _clients_lock:
        if name not in _clients:
            if not config.SUPABASE_URL or not key:
                raise RuntimeError(f"SUPABASE_URL e a chave '{name}' devem estar definidos.")
            _clients[name] = create_client(config.SUPABASE_URL, key)
        return _clients[name]


def get_supabase() -> Client:
    """Cliente Supabase com anon key."""
    return _client("anon", config.SUPABASE_KEY)


def get_supabase_admin() -> Client:
    """Cliente Supabase com service_role key (ignora RLS)."""
    return _client("service_role", config.SUPABASE_SERVICE_ROLE_KEY)


def is_admin(user: dict) -> bool:
    return (user.get("email") or "").lower().strip() in config.ADMIN_EMAILS


# ============================================================
# JWKS
# ============================================================

def _fetch_jwks() -> list[dict] | None:
    """Chaves públicas do Supabase Auth (GoTrue), cacheadas por JWKS_CACHE_TTL."""
    with _jwks_lock:
        if _jwks_cache["keys"] is not None and time.time() - _jwks_cache["fetched_at"] < JWKS_CACHE_TTL:
            return _jwks_cache["keys"]

    base = config.SUPABASE_AUTH_URL.rstrip("/")
    if not base:
        logger.warning("[AUTH] SUPABASE_AUTH_URL/SUPABASE_URL não definido: JWKS indisponível")
        return None

    for url in (f"{base}/auth/v1/.well-known/jwks.json", f"{base}/auth/v1/keys"):
        try:
            resp = httpx.get(url, timeout=10.0)
            keys = resp.json().get("keys", []) if resp.status_code == 200 else []
        except (httpx.HTTPError, ValueError) as e:
            logger.debug(f"[AUTH] Falha ao obter JWKS de {url}: {e}")
            continue
        if keys:
            with _jwks_lock:
                _jwks_cache["keys"] = keys
                _jwks_cache["fetched_at"] = time.time()
            logger.info(f"[AUTH] JWKS carregado de {url} ({len(keys)} chave(s))")
            return keys

    logger.warning("[AUTH] Não foi possível obter JWKS do Supabase")
    return None


def _signing_key(token: str, jwks: list[dict]):
    """Devolve (chave pública, algoritmo) para o kid do token, ou (None, None)."""
    try:
        header = pyjwt.get_unverified_header(token)
    except pyjwt.DecodeError:
        return None, None

    jwk = next((k for k in jwks if k.get("kid") == header.get("kid")), None)
    if jwk is None:
        jwk = next((k for k in jwks if k.get("use", "sig") == "sig"), None)
    if jwk is None:
        return None, None

    from jwt.algorithms import ECAlgorithm, RSAAlgorithm

    algorithms = {"EC": ECAlgorithm, "RSA": RSAAlgorithm}
    algorithm_cls = algorithms.get(jwk.get("kty", ""))
    if algorithm_cls is None:
        logger.debug(f"[AUTH] Tipo de chave não suportado: kty={jwk.get('kty')}")
        return None, None
    try:
        return algorithm_cls.from_jwk(jwk), header.get("alg", "ES256")
    except (ValueError, pyjwt.InvalidKeyError) as e:
        logger.debug(f"[AUTH] JWK inválida: {e}")
        return None, None


# ============================================================
# VALIDAÇÃO DO TOKEN
# ============================================================

def _expired() -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expirado. Faça login novamente.")


def decode_token(token: str) -> dict | None:
    """
    Valida o JWT e devolve o utilizador, ou None se for inválido.

    Raises:
        HTTPException 401: token expirado
    """
    payload = None
    verified = False

    jwks = _fetch_jwks()
    if jwks:
        key, algorithm = _signing_key(token, jwks)
        if key is not None:
            try:
                payload = pyjwt.decode(token, key=key, algorithms=[algorithm], audience=JWT_AUDIENCE)
                verified = True
            except pyjwt.ExpiredSignatureError:
                raise _expired()
            except (pyjwt.InvalidAudienceError, pyjwt.InvalidSignatureError) as e:
                logger.warning(f"[AUTH] Token rejeitado: {type(e).__name__}")
                return None
            except pyjwt.PyJWTError as e:
                logger.debug(f"[AUTH] Verificação JWKS falhou ({type(e).__name__}: {e})")

    if payload is None:
        if not config.JWT_ALLOW_UNVERIFIED_FALLBACK:
            logger.warning("[AUTH] JWT rejeitado: assinatura não verificada e fallback desactivado")
            return None
        try:
            payload = pyjwt.decode(
                token,
                options={"verify_signature": False, "verify_exp": True, "verify_aud": True},
                audience=JWT_AUDIENCE,
            )
        except pyjwt.ExpiredSignatureError:
            raise _expired()
        except pyjwt.PyJWTError as e:
            logger.warning(f"[AUTH] Token inválido: {type(e).__name__}: {e}")
            return None
        logger.warning("[AUTH] JWT aceite SEM verificação de assinatura (JWT_ALLOW_UNVERIFIED_FALLBACK=true)")

    user_id = payload.get("sub", "")
    if not user_id:
        logger.warning("[AUTH] Token sem 'sub'")
        return None

    user = {"id": user_id, "email": payload.get("email", ""), "exp": payload.get("exp", 0)}
    user["is_admin"] = is_admin(user)
    logger.debug(f"[AUTH] {user['email']} ({user_id[:8]}...) "
                 f"[assinatura {'verificada' if verified else 'NÃO verificada'}]")
    return user


def _cache_get(token_hash: str, now: float) -> dict | None:
    with _token_cache_lock:
        cached = _token_cache.get(token_hash)
        if cached and now < cached["expires"]:
            return cached["user"]
        _token_cache.pop(token_hash, None)
        if len(_token_cache) > TOKEN_CACHE_MAX_SIZE // 2:
            for key in [k for k, v in _token_cache.items() if now >= v["expires"]]:
                del _token_cache[key]
    return None


async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)) -> dict:
    """Dependency FastAPI: utilizador autenticado pelo Bearer token."""
    token = credentials.credentials
    token_hash = hashlib.sha256(token.encode()).hexdigest()
    now = time.time()

    user = _cache_get(token_hash, now)
    if user:
        return user

    user = decode_token(token)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token inválido ou expirado. Faça login novamente.",
        )

    ttl = TOKEN_CACHE_TTL
    if user["exp"] and user["exp"] > now:
        ttl = min(TOKEN_CACHE_TTL, user["exp"] - now)
    with _token_cache_lock:
        _token_cache[token_hash] = {"user": user, "expires": now + ttl}
    return user
