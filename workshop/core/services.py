import logging
from typing import Callable, Optional
from sqlalchemy.orm import sessionmaker
from ..config import AppConfig
from ..infra.asaas_client import AsaasClient
from ..infra.email_service import EmailService
from ..storage.database import create_session_factory
from .charge_service import ChargeCreationService
from .registration_service import RegistrationService
from .webhook_service import WebhookReconciliationService

logger = logging.getLogger(__name__)


class WorkshopServices:
    """
    Monta o grafo de serviços a partir da configuração.

    - Factory de sessões do banco (uma sessão por operação)
    - Cliente Asaas criado por requisição (credencial validada no uso)
    - E-mail, cobrança, webhook e inscrições
    """

    def __init__(
        self,
        config: AppConfig,
        db_session_factory: Optional[sessionmaker] = None,
        asaas_client_factory: Callable[[AppConfig], AsaasClient] = AsaasClient.from_config,
        email_service: Optional[EmailService] = None,
    ) -> None:
        self.config = config
        self.db_session_factory = db_session_factory or create_session_factory(
            config.database_url,
            create_tables=config.create_tables,
        )
        self.email = email_service or EmailService(config)
        self.charges = ChargeCreationService(config, client_factory=asaas_client_factory)
        self.webhooks = WebhookReconciliationService(
            config,
            db_session_factory=self.db_session_factory,
            client_factory=asaas_client_factory,
        )
        self.registrations = RegistrationService(
            db_session_factory=self.db_session_factory,
            email_service=self.email,
            charge_service=self.charges,
        )
        logger.info(
            f"Serviços inicializados: env={config.env}, "
            f"asaas_configurado={bool(config.asaas_api_key)}, smtp_host={config.smtp_host}"
        )
