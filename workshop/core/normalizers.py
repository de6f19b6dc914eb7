"""
Funções para normalizar e validar dados de entrada do formulário de inscrição.
"""
import re
import secrets
import string
from typing import Optional


REGISTRATION_CODE_PREFIX = "WMRD-"
REGISTRATION_CODE_ALPHABET = string.ascii_uppercase + string.digits

EMAIL_RE = re.compile(r"^[^@\s]+@([A-Za-z0-9-]+\.)+[A-Za-z]{2,}$")


def digits_only(raw: Optional[str]) -> str:
    """Remove tudo que não é dígito."""
    return re.sub(r"\D", "", raw or "")


def _cpf_check_digit(digits: str) -> int:
    weight = len(digits) + 1
    total = sum(int(d) * (weight - i) for i, d in enumerate(digits))
    rest = (total * 10) % 11
    return 0 if rest == 10 else rest


def is_valid_cpf(digits: str) -> bool:
    """
    Valida os dois dígitos verificadores do CPF.
    Espera apenas os 11 dígitos.
    """
    if len(digits) != 11 or not digits.isdigit():
        return False

    # Não pode ser todos os dígitos iguais (ex: 111.111.111-11)
    if len(set(digits)) == 1:
        return False

    first = _cpf_check_digit(digits[:9])
    second = _cpf_check_digit(digits[:9] + str(first))
    return digits[9:] == f"{first}{second}"


def normalize_cpf(raw: str) -> Optional[str]:
    """
    Normaliza CPF removendo caracteres não numéricos.
    Retorna apenas os 11 dígitos ou None se inválido.

    Aceita formatos como:
    - "529.982.247-25" → "52998224725"
    - "52998224725" → "52998224725"
    """
    digits = digits_only(raw)
    if not is_valid_cpf(digits):
        return None
    return digits


def normalize_phone(raw: str) -> Optional[str]:
    """
    Extrai os dígitos de um telefone brasileiro com DDD (10 ou 11 dígitos).

    Exemplos:
        "(41) 99938-0969" → "41999380969"
        "+55 41 3333-4444" → "4133334444"
    """
    digits = digits_only(raw)

    # Remove DDI 55 quando vier junto
    if digits.startswith("55") and len(digits) > 11:
        digits = digits[2:]

    if len(digits) not in (10, 11):
        return None
    return digits


def normalize_cep(raw: str) -> Optional[str]:
    """CEP com 8 dígitos ("80000-000" → "80000000")."""
    digits = digits_only(raw)
    if len(digits) != 8:
        return None
    return digits


def normalize_email(raw: str) -> Optional[str]:
    email = (raw or "").strip().lower()
    if not EMAIL_RE.match(email):
        return None
    return email


def generate_registration_code() -> str:
    """Código curto de inscrição: prefixo + 5 alfanuméricos aleatórios."""
    suffix = "".join(secrets.choice(REGISTRATION_CODE_ALPHABET) for _ in range(5))
    return f"{REGISTRATION_CODE_PREFIX}{suffix}"


def mask_cpf(cpf: str) -> str:
    """
    Retorna CPF parcialmente mascarado para logs.
    Ex: "52998224725" -> "529*****725"
    """
    if len(cpf) < 6:
        return "***"
    return f"{cpf[:3]}*****{cpf[-3:]}"
