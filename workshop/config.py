from dataclasses import dataclass
from decimal import Decimal
from typing import Optional
import os
import logging
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

ASAAS_PROD_BASE_URL = "https://api.asaas.com/api/v3"
ASAAS_SANDBOX_BASE_URL = "https://sandbox.asaas.com/api/v3"


@dataclass(frozen=True)
class AppConfig:
    """
    Configurações principais da aplicação.

    Credenciais do Asaas e do SMTP não são validadas aqui: cada serviço
    falha com ConfigurationError no momento do uso se estiverem ausentes.
    """
    database_url: str = "sqlite:///./workshop.db"
    env: str = "dev"  # "dev" ou "prod"
    admin_api_key: str = ""
    create_tables: bool = False
    asaas_api_key_prod: Optional[str] = None
    asaas_api_key_sandbox: Optional[str] = None
    asaas_webhook_token: str = ""
    asaas_timeout_seconds: float = 15.0
    certificate_fee: Decimal = Decimal("20.00")
    certificate_due_days: int = 7
    certificate_description: str = "Certificado de participação - Workshop WMRD-PR"
    smtp_host: str = "dev-log"
    smtp_port: int = 465
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from: str = ""

    @property
    def asaas_api_key(self) -> Optional[str]:
        """Chave ativa do Asaas: produção tem prioridade sobre sandbox."""
        return self.asaas_api_key_prod or self.asaas_api_key_sandbox or None

    @property
    def asaas_base_url(self) -> str:
        return ASAAS_PROD_BASE_URL if self.asaas_api_key_prod else ASAAS_SANDBOX_BASE_URL

    @classmethod
    def load_from_env(cls) -> "AppConfig":
        """
        Carrega configuração a partir de variáveis de ambiente.
        Primeiro tenta carregar do arquivo .env, depois do ambiente do sistema.
        Levanta erro explícito se algo crítico faltar.
        """
        load_dotenv()

        database_url = os.getenv("DATABASE_URL", "sqlite:///./workshop.db")
        admin_api_key = os.getenv("ADMIN_API_KEY", "")

        env = os.getenv("ENV", "dev").lower()
        if env not in ("dev", "prod"):
            logger.warning(f"ENV inválido '{env}', usando 'dev' como padrão")
            env = "dev"

        # Em produção, os endpoints administrativos sempre exigem ADMIN_API_KEY
        if env == "prod":
            if not admin_api_key or not admin_api_key.strip():
                raise RuntimeError(
                    "ENV=prod requer ADMIN_API_KEY definida. "
                    "Configure ADMIN_API_KEY no ambiente de produção."
                )
            logger.info("Modo PRODUÇÃO: ADMIN_API_KEY validada")
        elif not admin_api_key.strip():
            logger.warning(
                "⚠️  MODO DEV: ADMIN_API_KEY não configurada. "
                "Endpoints /admin aceitarão requisições sem autenticação. "
                "Configure ADMIN_API_KEY para produção."
            )

        create_tables = os.getenv("CREATE_TABLES", "0").lower() in ("1", "true", "yes", "y")

        asaas_api_key_prod = os.getenv("ASAAS_API_KEY_PROD") or None
        asaas_api_key_sandbox = os.getenv("ASAAS_SANDBOX_API_KEY") or None
        if not asaas_api_key_prod and not asaas_api_key_sandbox:
            logger.warning(
                "Nenhuma chave do Asaas configurada (ASAAS_API_KEY_PROD / ASAAS_SANDBOX_API_KEY). "
                "Geração de cobranças e webhook vão falhar."
            )

        return cls(
            database_url=database_url,
            env=env,
            admin_api_key=admin_api_key,
            create_tables=create_tables,
            asaas_api_key_prod=asaas_api_key_prod,
            asaas_api_key_sandbox=asaas_api_key_sandbox,
            asaas_webhook_token=os.getenv("ASAAS_WEBHOOK_TOKEN", ""),
            asaas_timeout_seconds=float(os.getenv("ASAAS_TIMEOUT_SECONDS", "15")),
            certificate_fee=Decimal(os.getenv("CERTIFICATE_FEE", "20.00")),
            certificate_due_days=int(os.getenv("CERTIFICATE_DUE_DAYS", "7")),
            certificate_description=os.getenv(
                "CERTIFICATE_DESCRIPTION", "Certificado de participação - Workshop WMRD-PR"
            ),
            smtp_host=os.getenv("SMTP_HOST", "dev-log"),
            smtp_port=int(os.getenv("SMTP_PORT", "465")),
            smtp_user=os.getenv("SMTP_USER", ""),
            smtp_password=os.getenv("SMTP_PASSWORD", os.getenv("SMTP_PASS", "")),
            smtp_from=os.getenv("SMTP_FROM", ""),
        )
