import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional
from sqlalchemy.orm import sessionmaker, Session
from ..config import AppConfig
from ..infra.asaas_client import AsaasClient
from ..storage.repository import RegistrantRepository
from .errors import NotFoundError, ReconciliationError, StoreError, ValidationError
from .models import CONFIRMATION_EVENTS, PaymentStatus
from .normalizers import digits_only

logger = logging.getLogger(__name__)


class ReconciliationAction(str, Enum):
    IGNORED_EVENT = "ignored_event"
    MARKED_PAID = "marked_paid"
    ALREADY_PAID = "already_paid"


@dataclass
class ReconciliationOutcome:
    action: ReconciliationAction
    event: Optional[str] = None
    registrant_id: Optional[str] = None


def _extract_customer_id(payload: Dict[str, Any]) -> Optional[str]:
    payment = payload.get("payment")
    if not isinstance(payment, dict):
        return None
    customer = payment.get("customer")
    # Alguns payloads trazem o cliente expandido
    if isinstance(customer, dict):
        customer = customer.get("id")
    if isinstance(customer, str) and customer.strip():
        return customer.strip()
    return None


class WebhookReconciliationService:
    """
    Processa notificações de pagamento do Asaas.

    O payload só traz o id do cliente no Asaas; o CPF é obtido com uma
    consulta extra ao provedor e usado para achar o inscrito local.
    A transição pending → paid é idempotente: reentregas do mesmo evento
    não geram novas escritas.
    """

    def __init__(
        self,
        config: AppConfig,
        db_session_factory: sessionmaker,
        client_factory: Callable[[AppConfig], AsaasClient] = AsaasClient.from_config,
    ) -> None:
        self._config = config
        self._db_session_factory = db_session_factory
        self._client_factory = client_factory

    def handle_event(
        self,
        payload: Dict[str, Any],
        request_id: Optional[str] = None,
    ) -> ReconciliationOutcome:
        request_id_str = f"request_id={request_id}, " if request_id else ""
        if not isinstance(payload, dict):
            raise ValidationError("Payload do webhook inválido.")

        event = payload.get("event")
        if event not in CONFIRMATION_EVENTS:
            logger.info(f"Evento do Asaas ignorado: {request_id_str}event={event}")
            return ReconciliationOutcome(action=ReconciliationAction.IGNORED_EVENT, event=event)

        customer_id = _extract_customer_id(payload)
        if not customer_id:
            raise ValidationError("Webhook de pagamento recebido, mas sem o id do cliente.")

        client = self._client_factory(self._config)
        customer = client.get_customer(customer_id)

        cpf = digits_only(customer.cpfCnpj)
        if not cpf:
            logger.error(
                f"Cliente Asaas sem CPF: {request_id_str}event={event}, customer_id={customer_id}"
            )
            raise ReconciliationError("Webhook de pagamento recebido, mas sem CPF do cliente.")

        db_session: Session = self._db_session_factory()
        try:
            repo = RegistrantRepository(db_session)
            registrant = repo.get_by_field("cpf", cpf)

            if registrant is None:
                logger.warning(
                    f"Webhook recebido para CPF {cpf}, mas nenhum inscrito correspondente foi encontrado: "
                    f"{request_id_str}event={event}, customer_id={customer_id}"
                )
                raise NotFoundError(
                    f"Webhook recebido para CPF {cpf}, mas nenhum inscrito correspondente foi encontrado."
                )

            # Idempotência: reentregas do mesmo evento não escrevem de novo
            if registrant.payment_status == PaymentStatus.PAID.value:
                logger.info(
                    f"Pagamento para \"{registrant.full_name}\" (ID: {registrant.id}) já estava confirmado. "
                    f"Nenhuma ação necessária: {request_id_str}event={event}"
                )
                return ReconciliationOutcome(
                    action=ReconciliationAction.ALREADY_PAID,
                    event=event,
                    registrant_id=registrant.id,
                )

            updated = repo.update_by_id(registrant.id, {
                "payment_status": PaymentStatus.PAID.value,
                "wants_certificate": True,
            })
            if updated is None:
                raise StoreError(f"Inscrito {registrant.id} não pôde ser atualizado.")

            logger.info(
                f"Pagamento confirmado para \"{registrant.full_name}\" (ID: {registrant.id}). "
                f"Status atualizado para 'paid': {request_id_str}event={event}, customer_id={customer_id}"
            )
            return ReconciliationOutcome(
                action=ReconciliationAction.MARKED_PAID,
                event=event,
                registrant_id=registrant.id,
            )
        finally:
            db_session.close()
