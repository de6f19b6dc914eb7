import os
import logging
from typing import Any, Dict
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

Base = declarative_base()


def engine_options(database_url: str) -> Dict[str, Any]:
    """
    Opções do engine por backend.

    - PostgreSQL: pool com pool_pre_ping (conexões derrubadas pelo servidor)
    - SQLite em memória: uma única conexão compartilhada entre threads
    - SQLite em arquivo: libera o uso fora da thread que abriu a conexão
    """
    # Detectar backend pela URL
    url = make_url(database_url)

    if url.get_backend_name() == "postgresql":
        # Para PostgreSQL, verifica conexões antes de usar
        return {"pool_pre_ping": True, "pool_size": 5, "max_overflow": 10}

    if url.get_backend_name() == "sqlite":
        options: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        # Banco em memória: todas as sessões precisam enxergar a mesma conexão
        if url.database in (None, "", ":memory:"):
            options["poolclass"] = StaticPool
        return options

    return {}


def create_engine_from_url(database_url: str) -> Engine:
    options = engine_options(database_url)
    engine = create_engine(database_url, echo=False, **options)
    logger.info(
        f"Engine do banco criado: backend={engine.url.get_backend_name()}, "
        f"static_pool={options.get('poolclass') is StaticPool}"
    )
    return engine


def create_schema(engine: Engine) -> None:
    """Cria a tabela de inscritos direto pelo metadata (dev/testes)."""
    # Registra os modelos no metadata antes do create_all
    from . import models  # noqa: F401
    Base.metadata.create_all(bind=engine)
    logger.info("Tabelas criadas a partir do metadata")


def create_session_factory(database_url: str, create_tables: bool = False) -> sessionmaker:
    """
    Factory de sessões usada pelos serviços (uma sessão por operação).

    Com create_tables=True o schema é criado na hora, exceto em ENV=prod,
    onde o caminho é a migração Alembic.
    """
    engine = create_engine_from_url(database_url)

    # Criar tabelas apenas se solicitado (modo dev/test)
    # Em produção, sempre usar migrações Alembic!

    if create_tables:
        if os.getenv("ENV", "dev").lower() == "prod":
            logger.warning(
                "⚠️  CREATE_TABLES ignorado em produção: aplique as migrações com 'alembic upgrade head'."
            )
        else:
            create_schema(engine)

    return sessionmaker(bind=engine, expire_on_commit=False)
