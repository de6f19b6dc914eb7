from dataclasses import dataclass, fields
from enum import Enum
from typing import Dict, Any

from .errors import ValidationError


class PaymentStatus(str, Enum):
    NOT_REQUESTED = "not_requested"
    PENDING = "pending"
    PAID = "paid"

    @property
    def rank(self) -> int:
        return _PAYMENT_STATUS_ORDER.index(self)

    def can_transition_to(self, target: "PaymentStatus") -> bool:
        """A transição só anda para frente: not_requested → pending → paid."""
        return target.rank >= self.rank


_PAYMENT_STATUS_ORDER = [
    PaymentStatus.NOT_REQUESTED,
    PaymentStatus.PENDING,
    PaymentStatus.PAID,
]

CONFIRMATION_EVENTS = frozenset({"PAYMENT_CONFIRMED", "PAYMENT_RECEIVED"})


@dataclass
class CertificateChargeRequest:
    """
    Dados do inscrito necessários para gerar a cobrança do certificado.
    """
    id: str
    name: str
    email: str
    tax_id: str
    phone: str
    municipality: str
    postal_code: str

    # Chaves usadas no corpo HTTP (formulário público)
    WIRE_KEYS = {
        "id": "id",
        "name": "nome",
        "email": "email",
        "tax_id": "cpf",
        "phone": "telefone",
        "municipality": "municipio",
        "postal_code": "cep",
    }

    @classmethod
    def from_wire(cls, payload: Dict[str, Any]) -> "CertificateChargeRequest":
        """
        Monta a requisição a partir do JSON {id, nome, email, cpf, telefone, municipio, cep}.
        Levanta ValidationError se algum campo faltar.
        """
        if not isinstance(payload, dict):
            raise ValidationError("Dados do inscrito incompletos para gerar a cobrança.")

        values = {}
        missing = []
        for attr, key in cls.WIRE_KEYS.items():
            value = payload.get(key)
            if value is None or not str(value).strip():
                missing.append(key)
            else:
                values[attr] = str(value).strip()

        if missing:
            raise ValidationError(
                f"Dados do inscrito incompletos para gerar a cobrança. Campos ausentes: {', '.join(missing)}"
            )
        return cls(**values)

    def validate(self) -> None:
        missing = [
            self.WIRE_KEYS[f.name]
            for f in fields(self)
            if not getattr(self, f.name) or not str(getattr(self, f.name)).strip()
        ]
        if missing:
            raise ValidationError(
                f"Dados do inscrito incompletos para gerar a cobrança. Campos ausentes: {', '.join(missing)}"
            )


@dataclass
class ChargeResult:
    invoice_url: str
    customer_id: str
    payment_id: str = ""
