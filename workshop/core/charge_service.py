import logging
from datetime import date, timedelta
from typing import Callable, Optional
from ..config import AppConfig
from ..infra.asaas_client import AsaasClient
from .errors import ProviderError
from .models import CertificateChargeRequest, ChargeResult
from .normalizers import digits_only, mask_cpf

logger = logging.getLogger(__name__)

# Endereço fixo usado no cadastro do cliente no Asaas (o formulário não coleta endereço)
PLACEHOLDER_ADDRESS = {
    "address": "Rua do Workshop",
    "addressNumber": "123",
    "complement": "Sala 1",
    "province": "Centro",
    "state": "PR",
}


def _failure_message(prefix: str, error: ProviderError) -> str:
    if error.detail:
        return f"{prefix}: {error.detail}"
    return f"{prefix}."


class ChargeCreationService:
    """
    Gera a cobrança do certificado no Asaas para um inscrito.

    - Busca o cliente pelo CPF; se existir, atualiza nome/e-mail/telefone
    - Se não existir, cria o cliente com externalReference = id do inscrito
    - Cria a cobrança com valor fixo e devolve o link de pagamento

    Não altera o banco local: quem chama marca o inscrito como pendente antes.
    """

    def __init__(
        self,
        config: AppConfig,
        client_factory: Callable[[AppConfig], AsaasClient] = AsaasClient.from_config,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._config = config
        self._client_factory = client_factory
        self._today = today

    def create_charge(
        self,
        request: CertificateChargeRequest,
        request_id: Optional[str] = None,
    ) -> ChargeResult:
        request.validate()
        client = self._client_factory(self._config)
        cpf = digits_only(request.tax_id)
        request_id_str = f"request_id={request_id}, " if request_id else ""

        try:
            customer_id = self._resolve_customer(client, request, cpf)
        except ProviderError as e:
            logger.error(
                f"Erro na etapa de cliente Asaas: {request_id_str}registrant_id={request.id}, "
                f"cpf={mask_cpf(cpf)}, error={e.message}"
            )
            raise ProviderError(
                _failure_message("Falha ao buscar ou criar cliente no Asaas", e), detail=e.detail
            ) from e

        due_date = self._today() + timedelta(days=self._config.certificate_due_days)
        payload = {
            "customer": customer_id,
            "billingType": "UNDEFINED",  # Cliente escolhe boleto, Pix ou cartão
            "value": float(self._config.certificate_fee),
            "dueDate": due_date.isoformat(),
            "description": self._config.certificate_description,
            "externalReference": request.id,
        }
        try:
            payment = client.create_payment(payload)
        except ProviderError as e:
            logger.error(
                f"Erro na etapa de cobrança Asaas: {request_id_str}registrant_id={request.id}, "
                f"customer_id={customer_id}, error={e.message}"
            )
            raise ProviderError(
                _failure_message("Falha ao criar cobrança no Asaas", e), detail=e.detail
            ) from e

        logger.info(
            f"Cobrança Asaas criada: {request_id_str}registrant_id={request.id}, "
            f"customer_id={customer_id}, payment_id={payment.id}, due_date={payload['dueDate']}"
        )
        return ChargeResult(
            invoice_url=payment.invoiceUrl,
            customer_id=customer_id,
            payment_id=payment.id or "",
        )

    def _resolve_customer(
        self,
        client: AsaasClient,
        request: CertificateChargeRequest,
        cpf: str,
    ) -> str:
        """
        Busca ou cria (nunca busca-ou-falha) o cliente no Asaas pelo CPF.
        """
        phone = digits_only(request.phone)
        existing = client.find_customer_by_cpf(cpf)

        if existing:
            # Atualiza os dados para manter o cadastro no Asaas consistente
            logger.info(f"Cliente Asaas encontrado ({existing.id}). Atualizando dados...")
            try:
                client.update_customer(existing.id, {
                    "name": request.name,
                    "email": request.email,
                    "phone": phone,
                })
            except ProviderError as e:
                # Dados desatualizados no Asaas não impedem a cobrança do cliente existente
                logger.warning(
                    f"Atualização do cliente Asaas rejeitada, seguindo com a cobrança: "
                    f"customer_id={existing.id}, error={e.message}"
                )
            return existing.id

        customer = client.create_customer({
            "name": request.name,
            "email": request.email,
            "cpfCnpj": cpf,
            "phone": phone,
            "mobilePhone": phone,
            **PLACEHOLDER_ADDRESS,
            "city": request.municipality,
            "postalCode": digits_only(request.postal_code),
            "externalReference": request.id,
        })
        logger.info(f"Cliente Asaas criado para CPF {mask_cpf(cpf)}: {customer.id}")
        return customer.id
