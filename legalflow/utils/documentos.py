# -*- coding: utf-8 -*-
"""
DOCUMENTOS BRASILEIROS - CPF, CNPJ, CNJ, CEP e contactos
=========================================================
Validação e formatação locais (sem chamadas de rede).

CNJ (Resolução 65/2008): NNNNNNN-DD.AAAA.J.TR.OOOO, 20 dígitos.
"""

import re
from typing import Optional

_NON_DIGITS = re.compile(r"\D")

_CNJ_MASKED = re.compile(r"^\d{7}-\d{2}\.\d{4}\.\d\.\d{2}\.\d{4}$")
# Aceita CNJ com ou sem máscara dentro de texto livre
_CNJ_IN_TEXT = re.compile(
    r"(?<!\d)(\d{7}-\d{2}\.\d{4}\.\d\.\d{2}\.\d{4}|\d{20})(?!\d)"
)
_WHATSAPP = re.compile(r"^\+?\d{10,15}$")
_EMAIL = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

_CNPJ_WEIGHTS_1 = [5, 4, 3, 2, 9, 8, 7, 6, 5, 4, 3, 2]
_CNPJ_WEIGHTS_2 = [6, 5, 4, 3, 2, 9, 8, 7, 6, 5, 4, 3, 2]


def only_digits(value: Optional[str]) -> str:
    """Remove tudo o que não é dígito."""
    if not value:
        return ""
    return _NON_DIGITS.sub("", str(value))


# ============================================================
# CPF / CNPJ
# ============================================================

def validate_cpf(cpf: str) -> bool:
    """Valida dígitos verificadores de um CPF (com ou sem máscara)."""
    digits = only_digits(cpf)
    if len(digits) != 11 or digits == digits[0] * 11:
        return False

    for size in (9, 10):
        total = sum(int(digits[i]) * (size + 1 - i) for i in range(size))
        check = (total * 10) % 11
        if check == 10:
            check = 0
        if check != int(digits[size]):
            return False
    return True


def validate_cnpj(cnpj: str) -> bool:
    """Valida dígitos verificadores de um CNPJ (com ou sem máscara)."""
    digits = only_digits(cnpj)
    if len(digits) != 14 or digits == digits[0] * 14:
        return False

    for weights in (_CNPJ_WEIGHTS_1, _CNPJ_WEIGHTS_2):
        size = len(weights)
        total = sum(int(digits[i]) * weights[i] for i in range(size))
        remainder = total % 11
        check = 0 if remainder < 2 else 11 - remainder
        if check != int(digits[size]):
            return False
    return True


def validate_cpfcnpj(value: str) -> bool:
    """11 dígitos → CPF, 14 dígitos → CNPJ, restante inválido."""
    digits = only_digits(value)
    if len(digits) == 11:
        return validate_cpf(digits)
    if len(digits) == 14:
        return validate_cnpj(digits)
    return False


def document_type(value: str) -> Optional[str]:
    """Retorna 'pf' (CPF), 'pj' (CNPJ) ou None."""
    digits = only_digits(value)
    if len(digits) == 11:
        return "pf"
    if len(digits) == 14:
        return "pj"
    return None


def format_cpf(cpf: str) -> str:
    digits = only_digits(cpf)
    if len(digits) != 11:
        return cpf
    return f"{digits[:3]}.{digits[3:6]}.{digits[6:9]}-{digits[9:]}"


def format_cnpj(cnpj: str) -> str:
    digits = only_digits(cnpj)
    if len(digits) != 14:
        return cnpj
    return f"{digits[:2]}.{digits[2:5]}.{digits[5:8]}/{digits[8:12]}-{digits[12:]}"


def format_cpfcnpj(value: str) -> str:
    digits = only_digits(value)
    if len(digits) == 11:
        return format_cpf(digits)
    if len(digits) == 14:
        return format_cnpj(digits)
    return value


# ============================================================
# CNJ
# ============================================================

def validate_cnj(cnj: str) -> bool:
    """CNJ válido = 20 dígitos, mascarado correctamente ou só dígitos."""
    if not cnj:
        return False
    cnj = cnj.strip()
    if _CNJ_MASKED.match(cnj):
        return True
    return cnj.isdigit() and len(cnj) == 20


def format_cnj(cnj: str) -> str:
    """20 dígitos → NNNNNNN-DD.AAAA.J.TR.OOOO. Devolve o input se não tiver 20 dígitos."""
    digits = only_digits(cnj)
    if len(digits) != 20:
        return cnj
    return f"{digits[:7]}-{digits[7:9]}.{digits[9:13]}.{digits[13]}.{digits[14:16]}.{digits[16:]}"


def normalize_cnj(cnj: str) -> str:
    """
    Normaliza um CNJ para a forma mascarada.

    Raises:
        ValueError: Se o CNJ não for válido
    """
    if not validate_cnj(cnj):
        raise ValueError(f"CNJ inválido: {cnj!r}")
    return format_cnj(cnj.strip())


def detect_cnj_in_text(text: Optional[str]) -> list[str]:
    """Encontra CNJs em texto livre, já mascarados e sem repetições (ordem preservada)."""
    if not text:
        return []
    found: list[str] = []
    for match in _CNJ_IN_TEXT.findall(text):
        cnj = format_cnj(match)
        if cnj not in found:
            found.append(cnj)
    return found


# ============================================================
# CEP / CONTACTOS
# ============================================================

def validate_cep(cep: str) -> bool:
    return len(only_digits(cep)) == 8


def format_cep(cep: str) -> str:
    digits = only_digits(cep)
    if len(digits) != 8:
        return cep
    return f"{digits[:5]}-{digits[5:]}"


def normalize_whatsapp(phone: Optional[str]) -> str:
    """Remove espaços, hífens e parênteses, preservando o '+' inicial."""
    if not phone:
        return ""
    phone = phone.strip()
    prefix = "+" if phone.startswith("+") else ""
    return prefix + only_digits(phone)


def validate_whatsapp(phone: Optional[str]) -> bool:
    return bool(_WHATSAPP.match(normalize_whatsapp(phone)))


def validate_email(email: Optional[str]) -> bool:
    return bool(email) and bool(_EMAIL.match(email.strip()))
