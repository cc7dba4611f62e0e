"""
Brazilian document, address and contact validators and formatters
"""
import re
from decimal import Decimal
from typing import Dict, List, Optional, Any

BRAZILIAN_STATES = [
    {"code": "AC", "name": "Acre"},
    {"code": "AL", "name": "Alagoas"},
    {"code": "AP", "name": "Amapá"},
    {"code": "AM", "name": "Amazonas"},
    {"code": "BA", "name": "Bahia"},
    {"code": "CE", "name": "Ceará"},
    {"code": "DF", "name": "Distrito Federal"},
    {"code": "ES", "name": "Espírito Santo"},
    {"code": "GO", "name": "Goiás"},
    {"code": "MA", "name": "Maranhão"},
    {"code": "MT", "name": "Mato Grosso"},
    {"code": "MS", "name": "Mato Grosso do Sul"},
    {"code": "MG", "name": "Minas Gerais"},
    {"code": "PA", "name": "Pará"},
    {"code": "PB", "name": "Paraíba"},
    {"code": "PR", "name": "Paraná"},
    {"code": "PE", "name": "Pernambuco"},
    {"code": "PI", "name": "Piauí"},
    {"code": "RJ", "name": "Rio de Janeiro"},
    {"code": "RN", "name": "Rio Grande do Norte"},
    {"code": "RS", "name": "Rio Grande do Sul"},
    {"code": "RO", "name": "Rondônia"},
    {"code": "RR", "name": "Roraima"},
    {"code": "SC", "name": "Santa Catarina"},
    {"code": "SP", "name": "São Paulo"},
    {"code": "SE", "name": "Sergipe"},
    {"code": "TO", "name": "Tocantins"},
]

STATE_CODES = frozenset(state["code"] for state in BRAZILIAN_STATES)

EMAIL_REGEX = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def only_digits(value: Optional[str]) -> str:
    return re.sub(r"\D", "", value or "")


def validate_cpf(cpf: str) -> bool:
    digits = only_digits(cpf)
    if len(digits) != 11 or digits == digits[0] * 11:
        return False

    for position in (9, 10):
        total = sum(int(digits[i]) * (position + 1 - i) for i in range(position))
        check = 11 - (total % 11)
        if check >= 10:
            check = 0
        if check != int(digits[position]):
            return False
    return True


def validate_cnpj(cnpj: str) -> bool:
    digits = only_digits(cnpj)
    if len(digits) != 14 or digits == digits[0] * 14:
        return False

    for position in (12, 13):
        total = 0
        weight = 2
        for i in range(position - 1, -1, -1):
            total += int(digits[i]) * weight
            weight = 2 if weight == 9 else weight + 1
        remainder = total % 11
        check = 0 if remainder < 2 else 11 - remainder
        if check != int(digits[position]):
            return False
    return True


def validate_cpf_cnpj(value: str) -> bool:
    digits = only_digits(value)
    if len(digits) == 11:
        return validate_cpf(digits)
    if len(digits) == 14:
        return validate_cnpj(digits)
    return False


def format_cpf(cpf: str) -> str:
    d = only_digits(cpf)
    return f"{d[:3]}.{d[3:6]}.{d[6:9]}-{d[9:]}" if len(d) == 11 else cpf


def format_cnpj(cnpj: str) -> str:
    d = only_digits(cnpj)
    return f"{d[:2]}.{d[2:5]}.{d[5:8]}/{d[8:12]}-{d[12:]}" if len(d) == 14 else cnpj


def format_cpf_cnpj(value: str) -> str:
    digits = only_digits(value)
    if len(digits) == 11:
        return format_cpf(digits)
    if len(digits) == 14:
        return format_cnpj(digits)
    return value


def validate_cep(cep: str) -> bool:
    return len(only_digits(cep)) == 8


def format_cep(cep: str) -> str:
    d = only_digits(cep)
    return f"{d[:5]}-{d[5:]}" if len(d) == 8 else cep


def validate_phone(phone: str) -> bool:
    return len(only_digits(phone)) in (10, 11)


def format_phone(phone: str) -> str:
    d = only_digits(phone)
    if len(d) == 10:
        return f"({d[:2]}) {d[2:6]}-{d[6:]}"
    if len(d) == 11:
        return f"({d[:2]}) {d[2:7]}-{d[7:]}"
    return phone


def validate_email(email: str) -> bool:
    return bool(email) and EMAIL_REGEX.match(email) is not None


def validate_state(state: str) -> bool:
    return (state or "").upper() in STATE_CODES


def parse_brazilian_currency(value: str) -> Decimal:
    """'R$ 1.234,56' -> Decimal('1234.56')"""
    cleaned = re.sub(r"[R$\s]", "", value).replace(".", "").replace(",", ".")
    return Decimal(cleaned)


def format_brazilian_currency(value) -> str:
    """1234.5 -> 'R$ 1.234,50'"""
    formatted = f"{Decimal(str(value)):,.2f}"
    return "R$ " + formatted.replace(",", "_").replace(".", ",").replace("_", ".")


def validate_brazilian_address(address: Dict[str, Any]) -> Dict[str, Any]:
    errors: List[str] = []

    if len((address.get("street") or "").strip()) < 5:
        errors.append("Endereço deve ter pelo menos 5 caracteres")
    if not (address.get("number") or "").strip():
        errors.append("Número é obrigatório")
    if len((address.get("city") or "").strip()) < 2:
        errors.append("Cidade deve ter pelo menos 2 caracteres")
    if len(address.get("state") or "") != 2:
        errors.append("Estado deve ter 2 caracteres (ex: SP, RJ)")
    if not validate_cep(address.get("cep") or ""):
        errors.append("CEP deve ter 8 dígitos")

    return {"is_valid": not errors, "errors": errors}
