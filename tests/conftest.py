from typing import Any, Dict, List
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from workshop.api.http import create_app
from workshop.config import AppConfig
from workshop.core.errors import ProviderError
from workshop.core.services import WorkshopServices
from workshop.infra.asaas_client import AsaasClient, AsaasCustomer, AsaasPayment
from workshop.storage.database import create_session_factory
from workshop.storage.repository import RegistrantRepository

# CPFs com dígitos verificadores válidos
VALID_CPFS = ["52998224725", "11144477735", "39053344705"]


class FakeAsaasBackend:
    """
    Asaas em memória: o cliente é um MagicMock restrito à interface de AsaasClient,
    então as chamadas ficam registradas para asserts.
    """

    def __init__(self) -> None:
        self.customers: Dict[str, AsaasCustomer] = {}
        self.payments: List[Dict[str, Any]] = []
        self.client = MagicMock(spec=AsaasClient)
        self.client.find_customer_by_cpf.side_effect = self._find_customer_by_cpf
        self.client.create_customer.side_effect = self._create_customer
        self.client.get_customer.side_effect = self._get_customer
        self.client.create_payment.side_effect = self._create_payment
        self.client.update_customer.return_value = None

    def factory(self, config: AppConfig) -> AsaasClient:
        return self.client

    def add_customer(self, cpf: str, name: str = "Cliente Asaas") -> AsaasCustomer:
        return self._create_customer({"name": name, "email": "cliente@example.com", "cpfCnpj": cpf})

    def _find_customer_by_cpf(self, cpf: str):
        return next((c for c in self.customers.values() if c.cpfCnpj == cpf), None)

    def _create_customer(self, payload: Dict[str, Any]) -> AsaasCustomer:
        customer_id = f"cus_{len(self.customers) + 1:06d}"
        customer = AsaasCustomer(
            id=customer_id,
            name=payload.get("name"),
            email=payload.get("email"),
            cpfCnpj=payload.get("cpfCnpj"),
            externalReference=payload.get("externalReference"),
        )
        self.customers[customer_id] = customer
        return customer

    def _get_customer(self, customer_id: str) -> AsaasCustomer:
        if customer_id not in self.customers:
            raise ProviderError(
                "Asaas rejeitou a requisição: Cliente inexistente.", detail="Cliente inexistente."
            )
        return self.customers[customer_id]

    def _create_payment(self, payload: Dict[str, Any]) -> AsaasPayment:
        payment_id = f"pay_{len(self.payments) + 1:06d}"
        self.payments.append(payload)
        return AsaasPayment(
            id=payment_id,
            customer=payload["customer"],
            invoiceUrl=f"https://sandbox.asaas.com/i/{payment_id}",
            status="PENDING",
            externalReference=payload.get("externalReference"),
        )


@pytest.fixture
def config() -> AppConfig:
    return AppConfig(
        database_url="sqlite://",
        asaas_api_key_sandbox="sandbox-key",
    )


@pytest.fixture
def db_session_factory(monkeypatch):
    monkeypatch.delenv("ENV", raising=False)
    return create_session_factory("sqlite://", create_tables=True)


@pytest.fixture
def asaas() -> FakeAsaasBackend:
    return FakeAsaasBackend()


@pytest.fixture
def services(config, db_session_factory, asaas) -> WorkshopServices:
    return WorkshopServices(
        config,
        db_session_factory=db_session_factory,
        asaas_client_factory=asaas.factory,
    )


@pytest.fixture
def client(services) -> TestClient:
    with TestClient(create_app(services=services)) as c:
        yield c


@pytest.fixture
def make_registrant(db_session_factory):
    """
    Insere inscritos direto no repositório, sem passar pela validação do serviço.
    """
    counter = {"n": 0}

    def _make(**overrides):
        n = counter["n"]
        counter["n"] += 1
        data = {
            "full_name": f"Inscrito {n + 1}",
            "cpf": VALID_CPFS[n % len(VALID_CPFS)],
            "email": f"inscrito{n + 1}@example.com",
            "phone": "41999380969",
            "municipality": "Curitiba",
            "postal_code": "80000000",
            "attends_day_1": True,
            "registration_code": f"WMRD-T{n:04d}",
        }
        data.update(overrides)
        db = db_session_factory()
        try:
            return RegistrantRepository(db).insert(**data)
        finally:
            db.close()

    return _make


@pytest.fixture
def load_registrant(db_session_factory):
    def _load(registrant_id: str):
        db = db_session_factory()
        try:
            return RegistrantRepository(db).get_by_id(registrant_id)
        finally:
            db.close()

    return _load
