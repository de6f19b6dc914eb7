import logging
import time
from typing import Any, Dict, List, Optional
import requests
from pydantic import BaseModel, ValidationError as SchemaError
from ..config import AppConfig
from ..core.errors import ConfigurationError, ProviderError

logger = logging.getLogger(__name__)


class AsaasCustomer(BaseModel):
    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    cpfCnpj: Optional[str] = None
    externalReference: Optional[str] = None


class AsaasCustomerList(BaseModel):
    data: List[AsaasCustomer] = []
    totalCount: int = 0


class AsaasPayment(BaseModel):
    id: Optional[str] = None
    customer: Optional[str] = None
    invoiceUrl: Optional[str] = None
    status: Optional[str] = None
    externalReference: Optional[str] = None


def format_provider_errors(body: Any) -> str:
    """
    Extrai as mensagens de validação do corpo de erro do Asaas:
    {"errors": [{"code": "...", "description": "..."}]}
    """
    if isinstance(body, dict) and isinstance(body.get("errors"), list):
        descriptions = [
            str(item.get("description") or item.get("code"))
            for item in body["errors"]
            if isinstance(item, dict)
        ]
        if descriptions:
            return "; ".join(descriptions)
    return "Resposta inesperada da API."


class AsaasClient:
    """
    Encapsula as chamadas HTTP à API v3 do Asaas (clientes e cobranças).
    Autenticação via header estático access_token.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout_seconds: float = 15.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._session = session or requests.Session()
        self._session.headers.update({
            "Accept": "application/json",
            "Content-Type": "application/json",
            "access_token": api_key,
        })

    @classmethod
    def from_config(cls, config: AppConfig) -> "AsaasClient":
        """
        Seleciona a credencial ativa: produção tem prioridade sobre sandbox.
        """
        api_key = config.asaas_api_key
        if not api_key:
            logger.error(
                "Chave de API do Asaas não configurada: defina ASAAS_API_KEY_PROD "
                "ou ASAAS_SANDBOX_API_KEY"
            )
            raise ConfigurationError("Chave de API do Asaas não configurada para o ambiente.")
        logger.debug(f"Cliente Asaas configurado: base_url={config.asaas_base_url}")
        return cls(
            api_key=api_key,
            base_url=config.asaas_base_url,
            timeout_seconds=config.asaas_timeout_seconds,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Executa a chamada e devolve o JSON. Falhas de rede, status >= 400 ou
        corpo não-JSON viram ProviderError.
        """
        url = f"{self._base_url}/{path.lstrip('/')}"
        start_time = time.time()
        try:
            response = self._session.request(
                method,
                url,
                params=params,
                json=payload,
                timeout=self._timeout_seconds,
            )
        except requests.RequestException as e:
            logger.error(
                f"Falha de rede ao chamar Asaas: method={method}, path={path}, "
                f"error={type(e).__name__}: {e}"
            )
            raise ProviderError("Falha de comunicação com o Asaas.") from e

        duration_ms = (time.time() - start_time) * 1000
        logger.debug(
            f"Resposta do Asaas: method={method}, path={path}, "
            f"status={response.status_code}, duration_ms={duration_ms:.2f}"
        )

        try:
            body = response.json()
        except ValueError as e:
            logger.error(
                f"Resposta não-JSON do Asaas: method={method}, path={path}, "
                f"status={response.status_code}"
            )
            raise ProviderError("Resposta inválida do Asaas.") from e

        if response.status_code >= 400:
            detail = format_provider_errors(body)
            logger.warning(
                f"Asaas rejeitou requisição: method={method}, path={path}, "
                f"status={response.status_code}, detail={detail}"
            )
            raise ProviderError(f"Asaas rejeitou a requisição: {detail}", detail=detail)

        if not isinstance(body, dict):
            raise ProviderError("Resposta inesperada da API.")
        return body

    def find_customer_by_cpf(self, cpf: str) -> Optional[AsaasCustomer]:
        body = self._request("GET", "customers", params={"cpfCnpj": cpf})
        try:
            result = AsaasCustomerList.model_validate(body)
        except SchemaError as e:
            raise ProviderError("Resposta inesperada ao buscar cliente no Asaas.") from e
        return result.data[0] if result.data else None

    def create_customer(self, payload: Dict[str, Any]) -> AsaasCustomer:
        body = self._request("POST", "customers", payload=payload)
        if not body.get("id"):
            detail = format_provider_errors(body)
            raise ProviderError(f"Erro ao criar cliente no Asaas: {detail}", detail=detail)
        return AsaasCustomer.model_validate(body)

    def update_customer(self, customer_id: str, payload: Dict[str, Any]) -> None:
        # A API do Asaas usa POST para atualizar
        self._request("POST", f"customers/{customer_id}", payload=payload)

    def get_customer(self, customer_id: str) -> AsaasCustomer:
        body = self._request("GET", f"customers/{customer_id}")
        try:
            return AsaasCustomer.model_validate(body)
        except SchemaError as e:
            raise ProviderError("Resposta inesperada ao consultar cliente no Asaas.") from e

    def create_payment(self, payload: Dict[str, Any]) -> AsaasPayment:
        body = self._request("POST", "payments", payload=payload)
        try:
            payment = AsaasPayment.model_validate(body)
        except SchemaError as e:
            raise ProviderError("Resposta inesperada ao criar cobrança no Asaas.") from e
        if not payment.invoiceUrl:
            detail = format_provider_errors(body)
            raise ProviderError(f"Erro ao criar cobrança no Asaas: {detail}", detail=detail)
        return payment
