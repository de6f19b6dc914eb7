"""
Taxonomia de erros do domínio.

Todos são capturados na fronteira HTTP e convertidos em {"error": mensagem}.
"""
from typing import Optional


class WorkshopError(Exception):
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(WorkshopError):
    """Entrada do chamador ausente ou malformada."""
    status_code = 400


class ConfigurationError(WorkshopError):
    """Credenciais obrigatórias ausentes no ambiente."""
    status_code = 500


class ProviderError(WorkshopError):
    """O Asaas rejeitou a requisição ou devolveu algo inesperado."""
    status_code = 400

    def __init__(self, message: str, detail: Optional[str] = None) -> None:
        super().__init__(message)
        self.detail = detail


class NotFoundError(WorkshopError):
    status_code = 404


class ReconciliationError(WorkshopError):
    """Dados do provedor insuficientes para chegar ao inscrito local."""
    status_code = 400


class StoreError(WorkshopError):
    status_code = 500
    code = "store_error"


class DuplicateRegistrantError(StoreError):
    status_code = 409
    code = "unique_violation"

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class AuthenticationError(WorkshopError):
    status_code = 401
