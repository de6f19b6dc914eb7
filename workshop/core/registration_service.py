import csv
import io
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional
from sqlalchemy.orm import sessionmaker, Session
from ..infra.email_service import EmailService
from ..storage.models import Registrant
from ..storage.repository import RegistrantRepository
from .charge_service import ChargeCreationService
from .errors import DuplicateRegistrantError, NotFoundError, StoreError, ValidationError
from .models import CertificateChargeRequest, ChargeResult, PaymentStatus
from .normalizers import (
    generate_registration_code,
    mask_cpf,
    normalize_cep,
    normalize_cpf,
    normalize_email,
    normalize_phone,
)

logger = logging.getLogger(__name__)

MAX_CODE_ATTEMPTS = 5

EDITABLE_FIELDS = (
    "full_name",
    "role",
    "cpf",
    "email",
    "phone",
    "company",
    "municipality",
    "postal_code",
    "attends_day_1",
    "attends_day_2",
    "consents_communications",
    "is_deleted",
    "wants_certificate",
    "payment_status",
)

CSV_HEADERS = ["Nome Completo", "E-mail", "Telefone", "Empresa", "Município", "Dias de Participação"]


def _required_text(data: Dict[str, Any], key: str, label: str) -> str:
    value = data.get(key)
    if value is None or not str(value).strip():
        raise ValidationError(f"Campo obrigatório ausente: {label}.")
    return str(value).strip()


def _optional_text(value: Any) -> Optional[str]:
    if value is None or not str(value).strip():
        return None
    return str(value).strip()


def _participation_days(registrant: Registrant) -> str:
    if registrant.attends_day_1 and registrant.attends_day_2:
        return "Dias 13 e 14"
    if registrant.attends_day_1:
        return "Dia 13"
    if registrant.attends_day_2:
        return "Dia 14"
    return ""


class RegistrationService:
    """
    Inscrição pública, opção pelo certificado e operações administrativas
    sobre os inscritos.
    """

    def __init__(
        self,
        db_session_factory: sessionmaker,
        email_service: EmailService,
        charge_service: ChargeCreationService,
        code_generator: Callable[[], str] = generate_registration_code,
    ) -> None:
        self._db_session_factory = db_session_factory
        self._email_service = email_service
        self._charge_service = charge_service
        self._code_generator = code_generator

    # ------------------------------------------------------------------ #
    # Inscrição
    # ------------------------------------------------------------------ #

    def _normalize_fields(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Valida e normaliza os campos presentes em `data`."""
        fields: Dict[str, Any] = {}

        if "full_name" in data:
            fields["full_name"] = _required_text(data, "full_name", "nome completo")
        if "email" in data:
            email = normalize_email(str(data.get("email") or ""))
            if not email:
                raise ValidationError("E-mail inválido.")
            fields["email"] = email
        if "cpf" in data:
            cpf = normalize_cpf(str(data.get("cpf") or ""))
            if not cpf:
                raise ValidationError("CPF inválido.")
            fields["cpf"] = cpf
        if "phone" in data:
            phone = normalize_phone(str(data.get("phone") or ""))
            if not phone:
                raise ValidationError("Telefone inválido. Informe DDD + número (10 ou 11 dígitos).")
            fields["phone"] = phone
        if "municipality" in data:
            fields["municipality"] = _required_text(data, "municipality", "município")
        if "postal_code" in data:
            raw_cep = _optional_text(data.get("postal_code"))
            if raw_cep is None:
                fields["postal_code"] = None
            else:
                cep = normalize_cep(raw_cep)
                if not cep:
                    raise ValidationError("CEP inválido.")
                fields["postal_code"] = cep
        for key in ("role", "company"):
            if key in data:
                fields[key] = _optional_text(data.get(key))
        for key in ("attends_day_1", "attends_day_2", "consents_communications",
                    "is_deleted", "wants_certificate"):
            if key in data and data[key] is not None:
                fields[key] = bool(data[key])
        return fields

    def create_registrant(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Valida e grava uma nova inscrição.

        O e-mail de confirmação não é enviado aqui; a camada HTTP agenda
        send_confirmation_safely como tarefa em segundo plano.
        """
        for key, label in (
            ("full_name", "nome completo"),
            ("email", "e-mail"),
            ("cpf", "CPF"),
            ("phone", "telefone"),
            ("municipality", "município"),
        ):
            _required_text(data, key, label)

        fields = self._normalize_fields(data)
        fields.setdefault("attends_day_1", False)
        fields.setdefault("attends_day_2", False)
        if not fields["attends_day_1"] and not fields["attends_day_2"]:
            raise ValidationError("Selecione pelo menos um dia de participação.")

        # Estado inicial do certificado é sempre o mesmo, independente do payload
        fields["wants_certificate"] = False
        fields["payment_status"] = PaymentStatus.NOT_REQUESTED.value
        fields["is_deleted"] = False

        db_session: Session = self._db_session_factory()
        try:
            repo = RegistrantRepository(db_session)
            for attempt in range(MAX_CODE_ATTEMPTS):
                code = self._code_generator()
                if repo.exists("registration_code", code):
                    logger.warning(f"Colisão de código de inscrição: code={code}, attempt={attempt + 1}")
                    continue
                try:
                    registrant = repo.insert(registration_code=code, **fields)
                except DuplicateRegistrantError as e:
                    if e.field == "registration_code":
                        continue
                    raise
                logger.info(
                    f"Inscrito criado: id={registrant.id}, code={registrant.registration_code}, "
                    f"email={registrant.email}, cpf={mask_cpf(registrant.cpf)}"
                )
                return registrant.to_dict()
        finally:
            db_session.close()

        logger.error(f"Não foi possível gerar código de inscrição único após {MAX_CODE_ATTEMPTS} tentativas")
        raise StoreError("Não foi possível gerar um código de inscrição único.")

    def send_confirmation_safely(self, to_email: str, full_name: str) -> None:
        """
        Envio "dispare e esqueça": falhas são logadas e nunca afetam a inscrição.
        """
        try:
            self._email_service.send_registration_confirmation(to_email=to_email, full_name=full_name)
            logger.debug(f"Processo de envio de e-mail concluído: to={to_email}")
        except Exception as email_error:
            logger.error(
                f"Falha ao enviar e-mail de confirmação: "
                f"to={to_email}, error={type(email_error).__name__}: {email_error}",
                exc_info=True,
            )

    def request_certificate(self, registrant_id: str, request_id: Optional[str] = None) -> ChargeResult:
        """
        Opção do inscrito pelo certificado: marca como pendente e gera a cobrança.
        """
        db_session: Session = self._db_session_factory()
        try:
            repo = RegistrantRepository(db_session)
            registrant = repo.get_by_id(registrant_id)
            if registrant is None or registrant.is_deleted:
                raise NotFoundError("Inscrição não encontrada.")

            if registrant.payment_status == PaymentStatus.PAID.value:
                raise ValidationError("O certificado desta inscrição já foi pago.")

            charge_request = CertificateChargeRequest(
                id=registrant.id,
                name=registrant.full_name,
                email=registrant.email,
                tax_id=registrant.cpf,
                phone=registrant.phone,
                municipality=registrant.municipality,
                postal_code=registrant.postal_code or "",
            )
            charge_request.validate()

            if registrant.payment_status != PaymentStatus.PENDING.value or not registrant.wants_certificate:
                repo.update_by_id(registrant.id, {
                    "wants_certificate": True,
                    "payment_status": PaymentStatus.PENDING.value,
                })
                logger.info(f"Inscrito optou pelo certificado: id={registrant.id}, status=pending")
        finally:
            db_session.close()

        return self._charge_service.create_charge(charge_request, request_id=request_id)

    # ------------------------------------------------------------------ #
    # Administração
    # ------------------------------------------------------------------ #

    def get_registrant(self, registrant_id: str) -> Dict[str, Any]:
        db_session: Session = self._db_session_factory()
        try:
            registrant = RegistrantRepository(db_session).get_by_id(registrant_id)
            if registrant is None:
                raise NotFoundError("Inscrição não encontrada.")
            return registrant.to_dict()
        finally:
            db_session.close()

    def list_registrants(
        self,
        include_deleted: bool = True,
        order_by: str = "created_at",
        descending: bool = True,
    ) -> List[Dict[str, Any]]:
        db_session: Session = self._db_session_factory()
        try:
            registrants = RegistrantRepository(db_session).list_all(
                order_by=order_by,
                descending=descending,
                include_deleted=include_deleted,
            )
            return [r.to_dict() for r in registrants]
        finally:
            db_session.close()

    def _prepare_changes(self, changes: Dict[str, Any]) -> Dict[str, Any]:
        unknown = sorted(set(changes) - set(EDITABLE_FIELDS))
        if unknown:
            raise ValidationError(f"Campos não editáveis: {', '.join(unknown)}")
        prepared = self._normalize_fields(changes)
        if "payment_status" in changes:
            try:
                prepared["payment_status"] = PaymentStatus(changes["payment_status"]).value
            except ValueError:
                raise ValidationError(f"Status de pagamento inválido: {changes['payment_status']}")
        if not prepared:
            raise ValidationError("Nenhum campo para atualizar.")
        return prepared

    @staticmethod
    def _check_payment_transition(registrant: Registrant, changes: Dict[str, Any]) -> None:
        """
        Garante o status monotônico e o invariante paid ⇒ wants_certificate.
        """
        current = PaymentStatus(registrant.payment_status)
        target = PaymentStatus(changes.get("payment_status", current.value))
        if not current.can_transition_to(target):
            raise ValidationError(
                f"Transição de pagamento inválida: {current.value} → {target.value}"
            )
        wants_certificate = changes.get("wants_certificate", registrant.wants_certificate)
        if target != PaymentStatus.NOT_REQUESTED and not wants_certificate:
            raise ValidationError("Inscrição com pagamento solicitado precisa manter o certificado.")

    def update_registrant(self, registrant_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        prepared = self._prepare_changes(changes)
        if prepared.get("payment_status") in (PaymentStatus.PENDING.value, PaymentStatus.PAID.value):
            prepared.setdefault("wants_certificate", True)

        db_session: Session = self._db_session_factory()
        try:
            repo = RegistrantRepository(db_session)
            registrant = repo.get_by_id(registrant_id)
            if registrant is None:
                raise NotFoundError("Inscrição não encontrada.")
            self._check_payment_transition(registrant, prepared)

            updated = repo.update_by_id(registrant_id, prepared)
            if updated is None:
                raise NotFoundError("Inscrição não encontrada.")
            logger.info(f"Inscrito atualizado pelo admin: id={registrant_id}, fields={sorted(prepared)}")
            return updated.to_dict()
        finally:
            db_session.close()

    def bulk_update(self, ids: Iterable[str], changes: Dict[str, Any]) -> int:
        """
        Atualização em lote (ex.: mover para a lixeira / restaurar).
        """
        ids = [i for i in ids if i]
        if not ids:
            raise ValidationError("Nenhum inscrito selecionado.")
        prepared = self._prepare_changes(changes)
        if set(prepared) & {"cpf", "email"}:
            raise ValidationError("CPF e e-mail não podem ser alterados em lote.")
        if prepared.get("payment_status") in (PaymentStatus.PENDING.value, PaymentStatus.PAID.value):
            prepared.setdefault("wants_certificate", True)

        db_session: Session = self._db_session_factory()
        try:
            repo = RegistrantRepository(db_session)
            if {"payment_status", "wants_certificate"} & set(prepared):
                for registrant_id in ids:
                    registrant = repo.get_by_id(registrant_id)
                    if registrant is not None:
                        self._check_payment_transition(registrant, prepared)

            count = repo.update_by_ids(ids, prepared)
            logger.info(f"Atualização em lote: count={count}, fields={sorted(prepared)}")
            return count
        finally:
            db_session.close()

    def delete_permanently(self, ids: Iterable[str]) -> int:
        ids = [i for i in ids if i]
        if not ids:
            raise ValidationError("Nenhum inscrito selecionado.")
        db_session: Session = self._db_session_factory()
        try:
            return RegistrantRepository(db_session).delete_by_ids(ids)
        finally:
            db_session.close()

    def metrics(self) -> Dict[str, int]:
        registrants = self.list_registrants(include_deleted=True)
        active = [r for r in registrants if not r["is_deleted"]]
        return {
            "total": len(active),
            "attends_day_1": sum(1 for r in active if r["attends_day_1"]),
            "attends_day_2": sum(1 for r in active if r["attends_day_2"]),
            "attends_both_days": sum(1 for r in active if r["attends_day_1"] and r["attends_day_2"]),
            "wants_certificate": sum(1 for r in active if r["wants_certificate"]),
            "paid": sum(1 for r in active if r["payment_status"] == PaymentStatus.PAID.value),
            "deleted": len(registrants) - len(active),
        }

    def export_csv(self) -> str:
        """
        CSV separado por ';' com os inscritos ativos, no formato da planilha do painel.
        """
        db_session: Session = self._db_session_factory()
        try:
            registrants = RegistrantRepository(db_session).list_all(include_deleted=False)
        finally:
            db_session.close()

        buffer = io.StringIO()
        buffer.write(";".join(CSV_HEADERS) + "\r\n")
        writer = csv.writer(buffer, delimiter=";", quoting=csv.QUOTE_ALL, lineterminator="\r\n")
        for r in registrants:
            writer.writerow([
                r.full_name,
                r.email,
                r.phone,
                r.company or "",
                r.municipality,
                _participation_days(r),
            ])
        return buffer.getvalue()
