from types import SimpleNamespace

import pytest
from sqlalchemy.exc import IntegrityError

from workshop.core.errors import DuplicateRegistrantError, ValidationError
from workshop.storage.repository import RegistrantRepository, _duplicate_field


def test_insert_assigns_id_and_defaults(make_registrant):
    registrant = make_registrant()

    assert registrant.id
    assert registrant.payment_status == "not_requested"
    assert registrant.wants_certificate is False
    assert registrant.is_deleted is False
    assert registrant.created_at is not None


def test_duplicate_email_maps_to_field(make_registrant):
    make_registrant(email="dup@example.com")

    with pytest.raises(DuplicateRegistrantError) as exc_info:
        make_registrant(email="dup@example.com")

    assert exc_info.value.field == "email"
    assert exc_info.value.status_code == 409
    assert exc_info.value.message == "Este e-mail já foi cadastrado. Por favor, utilize outro."


def test_duplicate_cpf_maps_to_field(make_registrant):
    make_registrant(cpf="52998224725")

    with pytest.raises(DuplicateRegistrantError) as exc_info:
        make_registrant(cpf="52998224725")

    assert exc_info.value.field == "cpf"


def test_update_by_id_unknown_returns_none(db_session_factory):
    db = db_session_factory()
    try:
        assert RegistrantRepository(db).update_by_id("missing", {"full_name": "X"}) is None
    finally:
        db.close()


def test_update_rejects_immutable_and_unknown_fields(make_registrant, db_session_factory):
    registrant = make_registrant()
    db = db_session_factory()
    try:
        repo = RegistrantRepository(db)
        with pytest.raises(ValidationError):
            repo.update_by_id(registrant.id, {"id": "other"})
        with pytest.raises(ValidationError):
            repo.update_by_id(registrant.id, {"to_dict": "x"})
    finally:
        db.close()


def test_bulk_update_and_delete(make_registrant, db_session_factory):
    a = make_registrant()
    b = make_registrant()
    c = make_registrant()
    db = db_session_factory()
    try:
        repo = RegistrantRepository(db)
        assert repo.update_by_ids([a.id, b.id], {"is_deleted": True}) == 2
        active = repo.list_all(include_deleted=False)
        assert [r.id for r in active] == [c.id]

        assert repo.delete_by_ids([a.id]) == 1
        assert repo.get_by_id(a.id) is None
        assert len(repo.list_all()) == 2
    finally:
        db.close()


def test_list_all_ordering(make_registrant, db_session_factory):
    make_registrant(full_name="Bruno")
    make_registrant(full_name="Ana")
    db = db_session_factory()
    try:
        repo = RegistrantRepository(db)
        names = [r.full_name for r in repo.list_all(order_by="full_name", descending=False)]
        assert names == ["Ana", "Bruno"]
        with pytest.raises(ValidationError):
            repo.list_all(order_by="cpf")
    finally:
        db.close()


def test_get_by_field_rejects_unsupported_field(db_session_factory):
    db = db_session_factory()
    try:
        with pytest.raises(ValidationError):
            RegistrantRepository(db).get_by_field("phone", "41999380969")
    finally:
        db.close()


def _integrity_error(message, diag_constraint=None):
    orig = Exception(message)
    if diag_constraint is not None:
        orig.diag = SimpleNamespace(constraint_name=diag_constraint)
    return IntegrityError("INSERT INTO registrants ...", {}, orig)


def test_duplicate_field_ignores_colliding_value_in_postgres_detail():
    error = _integrity_error(
        'duplicate key value violates unique constraint "ix_registrants_email"\n'
        "DETAIL:  Key (email)=(cpf.silva@example.com) already exists."
    )

    assert _duplicate_field(error) == "email"


def test_duplicate_field_from_postgres_default_constraint_name():
    error = _integrity_error(
        'duplicate key value violates unique constraint "registrants_cpf_key"\n'
        "DETAIL:  Key (cpf)=(52998224725) already exists."
    )

    assert _duplicate_field(error) == "cpf"


def test_duplicate_field_prefers_driver_constraint_name():
    error = _integrity_error("duplicate key", diag_constraint="ix_registrants_registration_code")

    assert _duplicate_field(error) == "registration_code"


def test_duplicate_field_unknown_constraint():
    assert _duplicate_field(_integrity_error("NOT NULL constraint failed: registrants.phone")) is None
