import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple
from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from .models import Registrant
from ..core.errors import DuplicateRegistrantError, StoreError, ValidationError

logger = logging.getLogger(__name__)

LOOKUP_FIELDS = ("id", "cpf", "email", "registration_code")
ORDERABLE_FIELDS = ("created_at", "full_name", "municipality", "payment_status")
UNIQUE_FIELDS = ("cpf", "email", "registration_code")
IMMUTABLE_FIELDS = ("id", "created_at")

UNIQUE_FIELD_MESSAGES = {
    "cpf": "Este CPF já foi cadastrado.",
    "email": "Este e-mail já foi cadastrado. Por favor, utilize outro.",
    "registration_code": "Código de inscrição já utilizado.",
}


def _constraint_patterns(field: str) -> Tuple[str, ...]:
    return (
        f"constraint failed: registrants.{field}",  # SQLite
        f"ix_registrants_{field}\"",  # PostgreSQL: índice único da migração
        f"registrants_{field}_key\"",  # PostgreSQL: constraint UNIQUE padrão
        f"key ({field})=",  # PostgreSQL: DETAIL:  Key (email)=(...)
    )


def _duplicate_field(error: IntegrityError) -> Optional[str]:
    """
    Descobre qual coluna única foi violada pelo nome da constraint/coluna.
    Nunca busca o nome do campo solto na mensagem: o valor duplicado também aparece nela.
    """
    orig = error.orig

    # psycopg expõe o nome da constraint diretamente
    diag = getattr(orig, "diag", None)
    constraint_name = getattr(diag, "constraint_name", None)
    if constraint_name:
        for field in UNIQUE_FIELDS:
            if constraint_name in (f"ix_registrants_{field}", f"registrants_{field}_key"):
                return field

    message = str(orig if orig is not None else error).lower()
    for field in UNIQUE_FIELDS:
        if any(pattern in message for pattern in _constraint_patterns(field)):
            return field
    return None


class RegistrantRepository:
    """
    Repositório para operações de persistência de inscritos.

    Erros do SQLAlchemy são convertidos em StoreError; violação de
    unicidade (e-mail/CPF) vira DuplicateRegistrantError com o campo.
    """

    def __init__(self, db: Session) -> None:
        self._db = db

    def _raise_store_error(self, action: str, error: Exception) -> None:
        self._db.rollback()
        if isinstance(error, IntegrityError):
            field = _duplicate_field(error)
            if field:
                logger.warning(
                    f"Violação de unicidade ao {action}: field={field}, "
                    f"error={type(error).__name__}"
                )
                raise DuplicateRegistrantError(
                    UNIQUE_FIELD_MESSAGES.get(field, "Registro duplicado."), field=field
                ) from error
        logger.error(
            f"Erro de banco de dados ao {action}: error={type(error).__name__}: {error}",
            exc_info=True,
        )
        raise StoreError(f"Falha no banco de dados ao {action}.") from error

    def insert(self, **data: Any) -> Registrant:
        """
        Cria um novo inscrito no banco de dados.
        """
        logger.debug(
            f"Criando inscrito: name={data.get('full_name')}, email={data.get('email')}, "
            f"municipality={data.get('municipality')}"
        )
        try:
            registrant = Registrant(**data)
            self._db.add(registrant)
            self._db.commit()
            self._db.refresh(registrant)
        except SQLAlchemyError as e:
            self._raise_store_error("criar inscrito", e)

        assert registrant.id is not None, (
            "Registrant persisted without id! "
            "This indicates a persistence error."
        )
        logger.debug(f"Inscrito criado com sucesso: id={registrant.id}, email={registrant.email}")
        return registrant

    def get_by_id(self, registrant_id: str) -> Optional[Registrant]:
        return self.get_by_field("id", registrant_id)

    def get_by_field(self, field: str, value: Any) -> Optional[Registrant]:
        if field not in LOOKUP_FIELDS:
            raise ValidationError(f"Campo de busca não suportado: {field}")
        try:
            return self._db.execute(
                select(Registrant).where(getattr(Registrant, field) == value)
            ).scalar_one_or_none()
        except SQLAlchemyError as e:
            self._raise_store_error(f"buscar inscrito por {field}", e)

    def exists(self, field: str, value: Any) -> bool:
        return self.get_by_field(field, value) is not None

    def update_by_id(self, registrant_id: str, changes: Dict[str, Any]) -> Optional[Registrant]:
        """
        Atualiza campos de um inscrito. Retorna None se o id não existir.
        """
        self._check_mutable(changes)
        try:
            registrant = self._db.get(Registrant, registrant_id)
            if registrant is None:
                return None
            for key, value in changes.items():
                setattr(registrant, key, value)
            self._db.commit()
            self._db.refresh(registrant)
            logger.debug(f"Inscrito atualizado: id={registrant_id}, fields={sorted(changes)}")
            return registrant
        except SQLAlchemyError as e:
            self._raise_store_error("atualizar inscrito", e)

    def update_by_ids(self, ids: Iterable[str], changes: Dict[str, Any]) -> int:
        ids = list(ids)
        if not ids:
            return 0
        self._check_mutable(changes)
        try:
            result = self._db.execute(
                update(Registrant).where(Registrant.id.in_(ids)).values(**changes)
            )
            self._db.commit()
            logger.debug(f"Inscritos atualizados em lote: count={result.rowcount}, fields={sorted(changes)}")
            return result.rowcount
        except SQLAlchemyError as e:
            self._raise_store_error("atualizar inscritos em lote", e)

    def delete_by_ids(self, ids: Iterable[str]) -> int:
        ids = list(ids)
        if not ids:
            return 0
        try:
            result = self._db.execute(delete(Registrant).where(Registrant.id.in_(ids)))
            self._db.commit()
            logger.info(f"Inscritos excluídos permanentemente: count={result.rowcount}")
            return result.rowcount
        except SQLAlchemyError as e:
            self._raise_store_error("excluir inscritos", e)

    def list_all(
        self,
        order_by: str = "created_at",
        descending: bool = True,
        include_deleted: bool = True,
    ) -> List[Registrant]:
        if order_by not in ORDERABLE_FIELDS:
            raise ValidationError(f"Ordenação não suportada: {order_by}")
        column = getattr(Registrant, order_by)
        query = select(Registrant).order_by(column.desc() if descending else column.asc())
        if not include_deleted:
            query = query.where(Registrant.is_deleted.is_(False))
        try:
            return list(self._db.execute(query).scalars())
        except SQLAlchemyError as e:
            self._raise_store_error("listar inscritos", e)

    @staticmethod
    def _check_mutable(changes: Dict[str, Any]) -> None:
        for key in changes:
            if key in IMMUTABLE_FIELDS:
                raise ValidationError(f"Campo imutável: {key}")
            if key not in Registrant.__table__.columns:
                raise ValidationError(f"Campo desconhecido: {key}")
