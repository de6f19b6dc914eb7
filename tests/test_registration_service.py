import pytest

from workshop.core.errors import NotFoundError, StoreError, ValidationError, DuplicateRegistrantError
from workshop.core.registration_service import RegistrationService


def _form(**overrides):
    data = {
        "full_name": "Maria Souza",
        "email": "Maria@Example.com",
        "cpf": "529.982.247-25",
        "phone": "(41) 99938-0969",
        "municipality": "Curitiba",
        "postal_code": "80000-000",
        "company": "Defesa Civil",
        "attends_day_1": True,
        "attends_day_2": False,
        # Ignorados: o estado inicial do certificado é fixo
        "wants_certificate": True,
        "payment_status": "paid",
    }
    data.update(overrides)
    return data


def test_create_registrant_normalizes_and_sets_initial_state(services):
    registrant = services.registrations.create_registrant(_form())

    assert registrant["email"] == "maria@example.com"
    assert registrant["cpf"] == "52998224725"
    assert registrant["phone"] == "41999380969"
    assert registrant["postal_code"] == "80000000"
    assert registrant["wants_certificate"] is False
    assert registrant["payment_status"] == "not_requested"
    assert registrant["is_deleted"] is False
    assert registrant["registration_code"].startswith("WMRD-")


@pytest.mark.parametrize("overrides", [
    {"cpf": "123.456.789-00"},
    {"email": "sem-arroba"},
    {"phone": "1234"},
    {"municipality": "  "},
    {"attends_day_1": False, "attends_day_2": False},
])
def test_create_registrant_rejects_invalid_input(services, overrides):
    with pytest.raises(ValidationError):
        services.registrations.create_registrant(_form(**overrides))


def test_duplicate_email_is_reported(services):
    services.registrations.create_registrant(_form())

    with pytest.raises(DuplicateRegistrantError) as exc_info:
        services.registrations.create_registrant(_form(cpf="111.444.777-35"))

    assert exc_info.value.field == "email"


def test_registration_code_collision_is_retried(services, db_session_factory):
    codes = iter(["WMRD-AAAAA", "WMRD-AAAAA", "WMRD-BBBBB"])
    registrations = RegistrationService(
        db_session_factory=db_session_factory,
        email_service=services.email,
        charge_service=services.charges,
        code_generator=lambda: next(codes),
    )

    first = registrations.create_registrant(_form())
    second = registrations.create_registrant(_form(cpf="11144477735", email="joao@example.com"))

    assert first["registration_code"] == "WMRD-AAAAA"
    assert second["registration_code"] == "WMRD-BBBBB"


def test_registration_code_exhaustion_raises_store_error(services, db_session_factory):
    registrations = RegistrationService(
        db_session_factory=db_session_factory,
        email_service=services.email,
        charge_service=services.charges,
        code_generator=lambda: "WMRD-AAAAA",
    )
    registrations.create_registrant(_form())

    with pytest.raises(StoreError):
        registrations.create_registrant(_form(cpf="11144477735", email="joao@example.com"))


def test_request_certificate_marks_pending_and_charges(services, asaas, make_registrant, load_registrant):
    registrant = make_registrant()

    result = services.registrations.request_certificate(registrant.id)

    assert result.invoice_url.startswith("https://sandbox.asaas.com/i/")
    reloaded = load_registrant(registrant.id)
    assert reloaded.payment_status == "pending"
    assert reloaded.wants_certificate is True
    assert asaas.payments[0]["externalReference"] == registrant.id


def test_request_certificate_without_postal_code_never_charges(services, asaas, make_registrant, load_registrant):
    registrant = make_registrant(postal_code=None)

    with pytest.raises(ValidationError):
        services.registrations.request_certificate(registrant.id)

    assert load_registrant(registrant.id).payment_status == "not_requested"
    asaas.client.find_customer_by_cpf.assert_not_called()


def test_request_certificate_rejects_paid_and_deleted(services, make_registrant):
    paid = make_registrant(wants_certificate=True, payment_status="paid")
    deleted = make_registrant(is_deleted=True)

    with pytest.raises(ValidationError):
        services.registrations.request_certificate(paid.id)
    with pytest.raises(NotFoundError):
        services.registrations.request_certificate(deleted.id)


def test_payment_status_only_moves_forward(services, make_registrant):
    registrant = make_registrant(wants_certificate=True, payment_status="paid")

    with pytest.raises(ValidationError):
        services.registrations.update_registrant(registrant.id, {"payment_status": "pending"})
    with pytest.raises(ValidationError):
        services.registrations.update_registrant(registrant.id, {"wants_certificate": False})


def test_admin_marking_pending_implies_certificate(services, make_registrant):
    registrant = make_registrant()

    updated = services.registrations.update_registrant(registrant.id, {"payment_status": "pending"})

    assert updated["payment_status"] == "pending"
    assert updated["wants_certificate"] is True


def test_update_rejects_unknown_fields_and_status(services, make_registrant):
    registrant = make_registrant()

    with pytest.raises(ValidationError):
        services.registrations.update_registrant(registrant.id, {"registration_code": "WMRD-ZZZZZ"})
    with pytest.raises(ValidationError):
        services.registrations.update_registrant(registrant.id, {"payment_status": "refunded"})
    with pytest.raises(NotFoundError):
        services.registrations.update_registrant("missing", {"full_name": "X"})


def test_bulk_update_soft_delete_and_restore(services, make_registrant, load_registrant):
    a = make_registrant()
    b = make_registrant()

    assert services.registrations.bulk_update([a.id, b.id], {"is_deleted": True}) == 2
    assert load_registrant(a.id).is_deleted is True
    assert services.registrations.bulk_update([a.id], {"is_deleted": False}) == 1
    assert load_registrant(a.id).is_deleted is False

    with pytest.raises(ValidationError):
        services.registrations.bulk_update([a.id], {"email": "x@example.com"})
    with pytest.raises(ValidationError):
        services.registrations.bulk_update([], {"is_deleted": True})


def test_delete_permanently(services, make_registrant, load_registrant):
    registrant = make_registrant()

    assert services.registrations.delete_permanently([registrant.id]) == 1
    assert load_registrant(registrant.id) is None


def test_metrics(services, make_registrant):
    make_registrant(attends_day_1=True, attends_day_2=True, wants_certificate=True, payment_status="paid")
    make_registrant(attends_day_1=False, attends_day_2=True, wants_certificate=True, payment_status="pending")
    make_registrant(is_deleted=True)

    assert services.registrations.metrics() == {
        "total": 2,
        "attends_day_1": 1,
        "attends_day_2": 2,
        "attends_both_days": 1,
        "wants_certificate": 2,
        "paid": 1,
        "deleted": 1,
    }


def test_export_csv_lists_active_registrants(services, make_registrant):
    make_registrant(full_name="Ana Lima", company="Prefeitura", attends_day_1=True, attends_day_2=True)
    make_registrant(full_name="Removido", is_deleted=True)

    lines = services.registrations.export_csv().split("\r\n")

    assert lines[0] == "Nome Completo;E-mail;Telefone;Empresa;Município;Dias de Participação"
    assert lines[1].startswith('"Ana Lima";')
    assert lines[1].endswith(';"Curitiba";"Dias 13 e 14"')
    assert all("Removido" not in line for line in lines)
