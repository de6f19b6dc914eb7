import logging
import time
from datetime import date
from uuid import uuid4
from typing import Any, Dict, List, Optional
from fastapi import BackgroundTasks, Body, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.middleware.base import BaseHTTPMiddleware
from pydantic import BaseModel
from sqlalchemy import text
from ..config import AppConfig
from ..core.errors import (
    AuthenticationError,
    NotFoundError,
    StoreError,
    WorkshopError,
)
from ..core.models import CertificateChargeRequest
from ..core.services import WorkshopServices

logger = logging.getLogger(__name__)

CORS_ALLOWED_HEADERS = [
    "authorization",
    "x-client-info",
    "apikey",
    "content-type",
    "x-api-key",
    "asaas-webhook-token",
    "asaas-access-token",
]


class RegistrationRequest(BaseModel):
    full_name: str
    email: str
    cpf: str
    phone: str
    municipality: str
    role: Optional[str] = None
    company: Optional[str] = None
    postal_code: Optional[str] = None
    attends_day_1: bool = False
    attends_day_2: bool = False
    consents_communications: bool = False


class RegistrantResponse(BaseModel):
    id: str
    full_name: str
    role: Optional[str] = None
    cpf: str
    email: str
    phone: str
    company: Optional[str] = None
    municipality: str
    postal_code: Optional[str] = None
    attends_day_1: bool
    attends_day_2: bool
    consents_communications: bool
    is_deleted: bool
    wants_certificate: bool
    payment_status: str
    registration_code: str
    created_at: Optional[str] = None


class ChargeResponse(BaseModel):
    invoiceUrl: str


class WebhookResponse(BaseModel):
    status: str


class BulkUpdateRequest(BaseModel):
    ids: List[str]
    updates: Dict[str, Any]


class BulkDeleteRequest(BaseModel):
    ids: List[str]


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Middleware que gera request_id único para cada requisição
    e adiciona aos logs e headers de resposta.
    """

    async def dispatch(self, request: Request, call_next):
        # Gerar request_id único
        request_id = uuid4().hex[:16]
        request.state.request_id = request_id

        start_time = time.time()
        # Processar requisição
        response = await call_next(request)
        # Adicionar header X-Request-ID
        response.headers["X-Request-ID"] = request_id

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Request processado: request_id={request_id}, "
            f"method={request.method}, path={request.url.path}, "
            f"status={response.status_code}, duration_ms={duration_ms:.2f}"
        )
        return response


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def require_api_key(config: AppConfig, x_api_key: Optional[str]) -> None:
    """
    Valida API key dos endpoints administrativos.

    Em produção (ENV=prod), sempre exige API key.
    Em desenvolvimento (ENV=dev), só exige se ADMIN_API_KEY estiver configurada.
    """
    expected_key = config.admin_api_key or ""

    # Em produção, sempre exige
    if config.env == "prod":
        if not x_api_key or x_api_key != expected_key:
            logger.warning("Tentativa de acesso não autorizado em PRODUÇÃO")
            raise AuthenticationError("Invalid API key")
    # Em dev, só exige se ADMIN_API_KEY estiver configurada
    elif expected_key.strip():
        if x_api_key != expected_key:
            logger.warning("Tentativa de acesso não autorizado em DEV")
            raise AuthenticationError("Invalid API key")
    else:
        logger.debug("ADMIN_API_KEY não configurada, aceitando requisição sem autenticação (modo desenvolvimento)")


def require_webhook_token(config: AppConfig, token: Optional[str]) -> None:
    """Se ASAAS_WEBHOOK_TOKEN estiver configurado, o header do Asaas precisa bater."""
    expected = config.asaas_webhook_token
    if expected and token != expected:
        logger.warning("Webhook do Asaas recebido com token inválido")
        raise AuthenticationError("Token do webhook inválido.")


def create_app(
    config: Optional[AppConfig] = None,
    services: Optional[WorkshopServices] = None,
) -> FastAPI:
    """
    Cria a aplicação FastAPI e injeta dependências principais (config + serviços).
    """
    if services is not None:
        config = services.config
    config = config or AppConfig.load_from_env()
    services = services or WorkshopServices(config)

    app = FastAPI(
        title="Workshop WMRD-PR API",
        version="0.1.0",
        description="Inscrições, certificados e integração de pagamentos com o Asaas.",
    )

    # Formulário público e painel rodam em outro domínio
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=CORS_ALLOWED_HEADERS,
    )
    # Adicionar middleware de request_id (fica por fora do CORS)
    app.add_middleware(RequestIDMiddleware)

    @app.exception_handler(WorkshopError)
    async def workshop_error_handler(request: Request, exc: WorkshopError) -> JSONResponse:
        return error_response(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        locations = [".".join(str(p) for p in e.get("loc", ()) if p != "body") for e in errors]
        message = "Requisição inválida"
        if any(locations):
            message += f": {', '.join(loc for loc in locations if loc)}"
        return error_response(400, message)

    @app.get("/health")
    def health_check():
        """
        Endpoint de health check para monitoramento e Docker healthchecks.
        """
        db_ok = True
        db_session = services.db_session_factory()
        try:
            # Verificar conexão com banco de dados
            db_session.execute(text("SELECT 1"))
        except Exception as e:
            logger.warning(f"Database health check falhou: {e}")
            db_ok = False
        finally:
            db_session.close()

        return {
            "status": "healthy" if db_ok else "degraded",
            "database": "ok" if db_ok else "error",
            "asaas_configured": bool(config.asaas_api_key),
        }

    # ------------------------------------------------------------------ #
    # Funções voltadas ao provedor de pagamento
    # ------------------------------------------------------------------ #

    @app.post("/create-asaas-charge", response_model=ChargeResponse)
    def create_asaas_charge(request: Request, payload: Any = Body(default=None)):
        request_id = getattr(request.state, "request_id", "unknown")
        start_time = time.time()
        try:
            # Campos ausentes são rejeitados antes de qualquer chamada ao Asaas
            charge_request = CertificateChargeRequest.from_wire(payload)
            logger.info(
                f"Recebida requisição /create-asaas-charge: request_id={request_id}, "
                f"registrant_id={charge_request.id}"
            )
            result = services.charges.create_charge(charge_request, request_id=request_id)
        except WorkshopError as e:
            logger.error(
                f"Erro na geração de cobrança: request_id={request_id}, "
                f"error={type(e).__name__}: {e.message}"
            )
            return error_response(400, e.message)
        except Exception as e:
            logger.error(
                f"Erro inesperado na geração de cobrança: request_id={request_id}, "
                f"error={type(e).__name__}: {e}",
                exc_info=True,
            )
            return error_response(400, "Erro desconhecido ao gerar boleto.")

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Cobrança gerada: request_id={request_id}, registrant_id={charge_request.id}, "
            f"duration_ms={duration_ms:.2f}"
        )
        return ChargeResponse(invoiceUrl=result.invoice_url)

    @app.post("/webhook-asaas", response_model=WebhookResponse)
    def webhook_asaas(
        request: Request,
        payload: Any = Body(default=None),
        asaas_access_token: Optional[str] = Header(default=None, alias="asaas-access-token"),
    ):
        """
        Recebe notificações de pagamento do Asaas.

        Qualquer resposta diferente de 2xx faz o Asaas reenviar o evento depois,
        o que é seguro porque a reconciliação é idempotente.
        """
        request_id = getattr(request.state, "request_id", "unknown")
        event = payload.get("event") if isinstance(payload, dict) else None
        logger.info(f"Recebido webhook do Asaas: request_id={request_id}, event={event}")

        try:
            # Validar token do webhook (se configurado)
            require_webhook_token(config, asaas_access_token)
            outcome = services.webhooks.handle_event(payload, request_id=request_id)
        except AuthenticationError as e:
            return error_response(401, e.message)
        except NotFoundError as e:
            # Inscrito inexistente nunca vai se resolver com reenvio: confirma o recebimento
            logger.warning(
                f"Webhook confirmado sem atualização (inscrito não encontrado): "
                f"request_id={request_id}, event={event}, error={e.message}"
            )
            return WebhookResponse(status="ok")
        except StoreError as e:
            # Falha ao gravar: resposta 500 para o Asaas reenviar o evento
            logger.error(
                f"Erro de banco ao processar webhook do Asaas: request_id={request_id}, "
                f"event={event}, error={e.message}"
            )
            return error_response(500, e.message)
        except WorkshopError as e:
            logger.error(
                f"Erro ao processar webhook do Asaas: request_id={request_id}, "
                f"event={event}, error={type(e).__name__}: {e.message}"
            )
            return error_response(400, e.message)
        except Exception as e:
            logger.error(
                f"Erro inesperado no webhook do Asaas: request_id={request_id}, "
                f"event={event}, error={type(e).__name__}: {e}",
                exc_info=True,
            )
            return error_response(400, "Erro desconhecido no webhook.")

        logger.info(
            f"Webhook processado: request_id={request_id}, event={event}, "
            f"action={outcome.action.value}, registrant_id={outcome.registrant_id}"
        )
        return WebhookResponse(status="ok")

    @app.post("/send-confirmation-email")
    def send_confirmation_email(request: Request, payload: Any = Body(default=None)):
        request_id = getattr(request.state, "request_id", "unknown")
        data = payload if isinstance(payload, dict) else {}
        name = str(data.get("nome") or "").strip()
        email = str(data.get("email") or "").strip()
        # Validar campos obrigatórios
        if not name or not email:
            return error_response(400, "Nome e e-mail são obrigatórios.")

        try:
            services.email.send_registration_confirmation(to_email=email, full_name=name)
        except WorkshopError as e:
            logger.error(f"Falha ao enviar e-mail: request_id={request_id}, error={e.message}")
            return error_response(500, e.message)
        except Exception as e:
            logger.error(
                f"Erro ao enviar e-mail: request_id={request_id}, to={email}, "
                f"error={type(e).__name__}: {e}",
                exc_info=True,
            )
            return error_response(500, "Não foi possível enviar o e-mail de confirmação.")

        return {"message": "E-mail enviado com sucesso!"}

    # ------------------------------------------------------------------ #
    # Inscrição pública
    # ------------------------------------------------------------------ #

    @app.post("/registrants", response_model=RegistrantResponse, status_code=201)
    def create_registrant(
        payload: RegistrationRequest,
        request: Request,
        background_tasks: BackgroundTasks,
    ):
        request_id = getattr(request.state, "request_id", "unknown")
        registrant = services.registrations.create_registrant(payload.model_dump())
        # E-mail de confirmação roda depois da resposta; falhas só vão para o log
        background_tasks.add_task(
            services.registrations.send_confirmation_safely,
            registrant["email"],
            registrant["full_name"],
        )
        logger.info(
            f"Inscrição concluída: request_id={request_id}, id={registrant['id']}, "
            f"code={registrant['registration_code']}"
        )
        return registrant

    @app.post("/registrants/{registrant_id}/certificate", response_model=ChargeResponse)
    def request_certificate(registrant_id: str, request: Request):
        request_id = getattr(request.state, "request_id", "unknown")
        try:
            result = services.registrations.request_certificate(registrant_id, request_id=request_id)
        # 404/500 seguem para o handler global; o resto vira 400
        except (NotFoundError, StoreError):
            raise
        except WorkshopError as e:
            logger.error(
                f"Erro ao solicitar certificado: request_id={request_id}, "
                f"registrant_id={registrant_id}, error={type(e).__name__}: {e.message}"
            )
            return error_response(400, e.message)
        return ChargeResponse(invoiceUrl=result.invoice_url)

    # ------------------------------------------------------------------ #
    # Painel administrativo
    # ------------------------------------------------------------------ #

    @app.get("/admin/registrants", response_model=List[RegistrantResponse])
    def list_registrants(
        include_deleted: bool = True,
        order_by: str = "created_at",
        descending: bool = True,
        x_api_key: Optional[str] = Header(default=None, alias="X-API-KEY"),
    ):
        require_api_key(config, x_api_key)
        return services.registrations.list_registrants(
            include_deleted=include_deleted,
            order_by=order_by,
            descending=descending,
        )

    @app.get("/admin/registrants/metrics")
    def registrant_metrics(x_api_key: Optional[str] = Header(default=None, alias="X-API-KEY")):
        require_api_key(config, x_api_key)
        return services.registrations.metrics()

    @app.get("/admin/registrants/export.csv")
    def export_registrants_csv(x_api_key: Optional[str] = Header(default=None, alias="X-API-KEY")):
        require_api_key(config, x_api_key)
        content = services.registrations.export_csv()
        # Nome do arquivo com a data do download
        filename = f"inscritos_workshop_{date.today().isoformat()}.csv"
        return Response(
            content=content,
            media_type="text/csv; charset=utf-8",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    @app.get("/admin/registrants/{registrant_id}", response_model=RegistrantResponse)
    def get_registrant(
        registrant_id: str,
        x_api_key: Optional[str] = Header(default=None, alias="X-API-KEY"),
    ):
        require_api_key(config, x_api_key)
        return services.registrations.get_registrant(registrant_id)

    @app.patch("/admin/registrants/{registrant_id}", response_model=RegistrantResponse)
    def update_registrant(
        registrant_id: str,
        changes: Dict[str, Any] = Body(...),
        x_api_key: Optional[str] = Header(default=None, alias="X-API-KEY"),
    ):
        require_api_key(config, x_api_key)
        return services.registrations.update_registrant(registrant_id, changes)

    @app.post("/admin/registrants/bulk-update")
    def bulk_update_registrants(
        payload: BulkUpdateRequest,
        x_api_key: Optional[str] = Header(default=None, alias="X-API-KEY"),
    ):
        require_api_key(config, x_api_key)
        updated = services.registrations.bulk_update(payload.ids, payload.updates)
        return {"updated": updated}

    @app.post("/admin/registrants/bulk-delete")
    def bulk_delete_registrants(
        payload: BulkDeleteRequest,
        x_api_key: Optional[str] = Header(default=None, alias="X-API-KEY"),
    ):
        require_api_key(config, x_api_key)
        deleted = services.registrations.delete_permanently(payload.ids)
        return {"deleted": deleted}

    return app
