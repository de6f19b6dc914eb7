from datetime import date

import pytest

from workshop.config import AppConfig, ASAAS_PROD_BASE_URL, ASAAS_SANDBOX_BASE_URL
from workshop.core.charge_service import ChargeCreationService
from workshop.core.errors import ConfigurationError, ProviderError, ValidationError
from workshop.core.models import CertificateChargeRequest
from workshop.infra.asaas_client import AsaasClient


def _request(**overrides) -> CertificateChargeRequest:
    data = {
        "id": "r1",
        "name": "Maria Souza",
        "email": "maria@example.com",
        "tax_id": "529.982.247-25",
        "phone": "(41) 99938-0969",
        "municipality": "Curitiba",
        "postal_code": "80000-000",
    }
    data.update(overrides)
    return CertificateChargeRequest(**data)


@pytest.fixture
def charge_service(config, asaas):
    return ChargeCreationService(
        config,
        client_factory=asaas.factory,
        today=lambda: date(2025, 10, 1),
    )


def test_new_customer_is_created_and_charged(charge_service, asaas):
    result = charge_service.create_charge(_request())

    assert result.invoice_url == "https://sandbox.asaas.com/i/pay_000001"
    assert len(asaas.customers) == 1
    customer_payload = asaas.client.create_customer.call_args[0][0]
    assert customer_payload["cpfCnpj"] == "52998224725"
    assert customer_payload["phone"] == "41999380969"
    assert customer_payload["mobilePhone"] == "41999380969"
    assert customer_payload["postalCode"] == "80000000"
    assert customer_payload["city"] == "Curitiba"
    assert customer_payload["state"] == "PR"
    assert customer_payload["externalReference"] == "r1"

    payment = asaas.payments[0]
    assert payment == {
        "customer": result.customer_id,
        "billingType": "UNDEFINED",
        "value": 20.0,
        "dueDate": "2025-10-08",
        "description": "Certificado de participação - Workshop WMRD-PR",
        "externalReference": "r1",
    }


def test_existing_customer_is_updated_not_duplicated(charge_service, asaas):
    first = charge_service.create_charge(_request())
    second = charge_service.create_charge(_request(name="Maria S. Souza", email="nova@example.com"))

    assert len(asaas.customers) == 1
    assert len(asaas.payments) == 2
    assert first.customer_id == second.customer_id
    assert first.invoice_url != second.invoice_url
    asaas.client.update_customer.assert_called_once_with(
        first.customer_id,
        {"name": "Maria S. Souza", "email": "nova@example.com", "phone": "41999380969"},
    )


def test_missing_fields_never_reach_provider(charge_service, asaas):
    with pytest.raises(ValidationError) as exc_info:
        charge_service.create_charge(_request(tax_id="", postal_code=" "))

    assert "cpf" in exc_info.value.message
    assert "cep" in exc_info.value.message
    asaas.client.find_customer_by_cpf.assert_not_called()
    asaas.client.create_payment.assert_not_called()


def test_missing_credentials_raise_configuration_error():
    service = ChargeCreationService(AppConfig(), client_factory=AsaasClient.from_config)

    with pytest.raises(ConfigurationError) as exc_info:
        service.create_charge(_request())

    assert exc_info.value.message == "Chave de API do Asaas não configurada para o ambiente."


def test_production_key_takes_priority_over_sandbox():
    both = AsaasClient.from_config(AppConfig(asaas_api_key_prod="prod", asaas_api_key_sandbox="sbx"))
    sandbox_only = AsaasClient.from_config(AppConfig(asaas_api_key_sandbox="sbx"))

    assert both.base_url == ASAAS_PROD_BASE_URL
    assert both._session.headers["access_token"] == "prod"
    assert sandbox_only.base_url == ASAAS_SANDBOX_BASE_URL
    assert sandbox_only._session.headers["access_token"] == "sbx"


def test_customer_step_failure_is_reported(charge_service, asaas):
    asaas.client.find_customer_by_cpf.side_effect = ProviderError(
        "Asaas rejeitou a requisição: CPF inválido.", detail="CPF inválido."
    )

    with pytest.raises(ProviderError) as exc_info:
        charge_service.create_charge(_request())

    assert exc_info.value.message == "Falha ao buscar ou criar cliente no Asaas: CPF inválido."
    asaas.client.create_payment.assert_not_called()


def test_payment_step_failure_is_reported(charge_service, asaas):
    asaas.client.create_payment.side_effect = ProviderError("Resposta inválida do Asaas.")

    with pytest.raises(ProviderError) as exc_info:
        charge_service.create_charge(_request())

    assert exc_info.value.message == "Falha ao criar cobrança no Asaas."


def test_rejected_customer_update_still_charges_existing_customer(charge_service, asaas):
    customer = asaas.add_customer("52998224725")
    asaas.client.update_customer.side_effect = ProviderError(
        "Asaas rejeitou a requisição: E-mail inválido.", detail="E-mail inválido."
    )

    result = charge_service.create_charge(_request())

    assert result.customer_id == customer.id
    assert len(asaas.payments) == 1
    asaas.client.create_customer.assert_not_called()
