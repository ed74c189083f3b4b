"""
SANITIZAÇÃO DE INPUTS
=====================================================
Funções centralizadas para sanitizar nomes de ficheiros, caminhos
no Supabase Storage e termos de pesquisa usados em filtros PostgREST.
"""

import re
import logging
from pathlib import PurePosixPath

logger = logging.getLogger(__name__)

# Caracteres proibidos em nomes de ficheiros (path traversal + especiais)
_UNSAFE_FILENAME_CHARS = re.compile(r'[/\\<>:"|?*\x00-\x1f]')

# Caracteres com significado na sintaxe de filtros PostgREST (or=, in=, ilike)
_POSTGREST_RESERVED = re.compile(r'[,()*%\\:"]')

# Segmento de caminho de storage: alfanumérico, ponto, hífen, underscore
_STORAGE_SEGMENT = re.compile(r'^[\w.\-]{1,200}$')

MAX_SEARCH_LENGTH = 100


def sanitize_filename(filename: str) -> str:
    """
    Sanitiza um nome de ficheiro para uso seguro.

    Remove componentes de caminho (diretórios) e caracteres perigosos.

    Raises:
        ValueError: Se o filename resulta vazio após sanitização
    """
    if not filename or not isinstance(filename, str):
        raise ValueError("filename não pode ser vazio")

    # Normalizar separadores Windows antes de extrair o nome base
    safe_name = PurePosixPath(filename.replace("\\", "/")).name

    safe_name = _UNSAFE_FILENAME_CHARS.sub('_', safe_name)

    # Remover pontos iniciais (ficheiros ocultos)
    safe_name = safe_name.lstrip('.').strip()

    if len(safe_name) > 255:
        # Preservar extensão
        stem = PurePosixPath(safe_name).stem[:200]
        suffix = PurePosixPath(safe_name).suffix
        safe_name = stem + suffix

    if not safe_name:
        raise ValueError("filename inválido após sanitização")

    return safe_name


def sanitize_search_term(term: str | None) -> str:
    """
    Limpa um termo de pesquisa antes de o interpolar num filtro `or_`/`ilike`.

    Vírgulas e parênteses partiriam a expressão PostgREST; '%' e '*'
    alterariam o padrão. Retorna string vazia se nada sobrar.
    """
    if not term:
        return ""
    cleaned = _POSTGREST_RESERVED.sub(" ", term)
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    if cleaned != term.strip():
        logger.debug(f"[SANITIZE] Termo de pesquisa ajustado: {term!r} → {cleaned!r}")
    return cleaned[:MAX_SEARCH_LENGTH]


def safe_storage_path(*parts: str) -> str:
    """
    Junta segmentos de um caminho no bucket de storage.

    Raises:
        ValueError: Se algum segmento contém traversal ou caracteres inválidos
    """
    segments = []
    for part in parts:
        if part is None:
            continue
        part = str(part)
        if '..' in part or '/' in part or '\\' in part:
            logger.warning(f"[SECURITY] Segmento de storage rejeitado: {part!r}")
            raise ValueError("Caminho de storage inválido")
        if not _STORAGE_SEGMENT.match(part):
            logger.warning(f"[SECURITY] Segmento de storage com formato inválido: {part!r}")
            raise ValueError("Caminho de storage inválido")
        segments.append(part)
    if not segments:
        raise ValueError("Caminho de storage vazio")
    return "/".join(segments)
