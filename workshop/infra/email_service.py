import html
import logging
import smtplib
import ssl
from email.message import EmailMessage
from smtplib import SMTPException, SMTPServerDisconnected
from ..config import AppConfig
from ..core.errors import ConfigurationError, ValidationError

logger = logging.getLogger(__name__)

SUBJECT = "✅ Inscrição Confirmada: WORKSHOP Municípios Mais Resilientes"

TEXT_TEMPLATE = """Olá, {name}!

É com grande satisfação que confirmamos sua inscrição para o WORKSHOP: Municípios Mais Resilientes em Desastres.

Informações essenciais:
- Data: 13 e 14 de novembro de 2025
- Local: ISULPAR, Paranaguá - PR

Conheça mais sobre o evento: https://deept42.github.io/workshop/#sobre

Estamos ansiosos para recebê-lo!

Equipe de Organização do WMRD-PR
"""

HTML_TEMPLATE = """<!DOCTYPE html>
<html lang="pt-BR">
<head><meta charset="UTF-8"></head>
<body style="margin:0;padding:0;background-color:#f3f4f6;font-family:Arial,sans-serif;">
  <div style="max-width:600px;margin:20px auto;background-color:#ffffff;border-radius:12px;overflow:hidden;">
    <div style="background-color:#062E51;color:#ffffff;padding:40px 20px;text-align:center;">
      <h1 style="margin:0;font-size:28px;">Sua Vaga está Confirmada!</h1>
    </div>
    <div style="padding:35px;color:#374151;line-height:1.7;">
      <h2 style="color:#062E51;margin-top:0;">Olá, {name}!</h2>
      <p>É com grande satisfação que confirmamos sua inscrição para o <strong>WORKSHOP: Municípios Mais Resilientes em Desastres</strong>. Prepare-se para dois dias de muito aprendizado e networking.</p>
      <p><strong>Data:</strong> 13 e 14 de novembro de 2025<br><strong>Local:</strong> ISULPAR, Paranaguá - PR</p>
      <p>
        <a href="https://www.google.com/calendar/render?action=TEMPLATE&amp;text=WORKSHOP%3A+Munic%C3%ADpios+Mais+Resilientes+em+Desastres&amp;dates=20251113T110000Z/20251114T210000Z" style="color:#E63946;">Agendar Evento</a>
        &nbsp;|&nbsp;
        <a href="https://deept42.github.io/workshop/#sobre" style="color:#E63946;">Visitar Site</a>
      </p>
      <p>Estamos ansiosos para recebê-lo!</p>
      <p>Atenciosamente,<br><strong style="color:#062E51;">Equipe de Organização do WMRD-PR</strong></p>
    </div>
  </div>
</body>
</html>
"""


class EmailService:
    """
    Serviço para envio de e-mails de confirmação via SMTP.
    Com SMTP_HOST=dev-log, apenas loga no console.
    """

    def __init__(self, config: AppConfig) -> None:
        self._config = config

    @property
    def is_dev_log(self) -> bool:
        return self._config.smtp_host == "dev-log"

    def _sender(self) -> str:
        if self._config.smtp_from:
            return self._config.smtp_from
        return f'"Confirmação WMRD-PR" <{self._config.smtp_user}>'

    def check_configuration(self) -> None:
        """
        Falha rápido se o SMTP real estiver selecionado sem credenciais.
        """
        if self.is_dev_log:
            return
        if not self._config.smtp_host or not self._config.smtp_port \
                or not self._config.smtp_user or not self._config.smtp_password:
            logger.error(
                f"Credenciais SMTP incompletas: host={self._config.smtp_host}, "
                f"port={self._config.smtp_port}, user={self._config.smtp_user or '<vazio>'}"
            )
            raise ConfigurationError("As credenciais SMTP não estão configuradas corretamente.")

    def build_confirmation_message(self, to_email: str, full_name: str) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = SUBJECT
        msg["From"] = self._sender()
        msg["To"] = to_email
        msg.set_content(TEXT_TEMPLATE.format(name=full_name))
        msg.add_alternative(HTML_TEMPLATE.format(name=html.escape(full_name)), subtype="html")
        return msg

    def send_registration_confirmation(self, to_email: str, full_name: str) -> None:
        """
        Envia e-mail de confirmação de inscrição.
        """
        if not to_email or not to_email.strip():
            logger.error(f"Tentativa de envio de e-mail sem destinatário: full_name={full_name}")
            raise ValidationError("Nome e e-mail são obrigatórios.")

        if not full_name or not full_name.strip():
            logger.error(f"Tentativa de envio de e-mail sem nome: to_email={to_email}")
            raise ValidationError("Nome e e-mail são obrigatórios.")

        self.check_configuration()
        msg = self.build_confirmation_message(to_email.strip(), full_name.strip())

        if self.is_dev_log:
            logger.warning(
                f"⚠️ MODO DEV: E-mail NÃO foi enviado (apenas simulado). "
                f"Para enviar e-mails reais, configure SMTP_HOST no .env. "
                f"Destinatário: {to_email}"
            )
            logger.info(f"E-mail de confirmação (FAKE): to={msg['To']}, subject={msg['Subject']}")
            return

        try:
            logger.info(
                f"Iniciando conexão SMTP: host={self._config.smtp_host}, "
                f"port={self._config.smtp_port}, from={msg['From']}"
            )
            ssl_context = ssl.create_default_context()

            if self._config.smtp_port == 465:
                try:
                    self._send_ssl(msg, ssl_context)
                except (SMTPServerDisconnected, ConnectionError, OSError) as e:
                    logger.warning(
                        f"Porta 465 falhou: {type(e).__name__}: {e}. "
                        f"Tentando porta 587 com STARTTLS como fallback..."
                    )
                    self._send_starttls(msg, ssl_context, port=587)
                    logger.info("Email enviado com sucesso usando porta 587 (fallback)")
            else:
                self._send_starttls(msg, ssl_context, port=self._config.smtp_port)

            logger.info(
                f"✅ E-mail enviado com sucesso via SMTP: to={to_email}, "
                f"host={self._config.smtp_host}, port={self._config.smtp_port}"
            )
        except SMTPException as e:
            if isinstance(e, SMTPServerDisconnected) or "Connection unexpectedly closed" in str(e):
                logger.error(
                    f"Erro SMTP: Conexão fechada durante autenticação. "
                    f"Verifique: host={self._config.smtp_host}, port={self._config.smtp_port}, "
                    f"user={self._config.smtp_user}"
                )
            else:
                logger.error(
                    f"Erro SMTP ao enviar e-mail: to={to_email}, error={type(e).__name__}: {e}",
                    exc_info=True,
                )
            raise
        except Exception as e:
            logger.error(
                f"Erro inesperado ao enviar e-mail: to={to_email}, error={type(e).__name__}: {e}",
                exc_info=True,
            )
            raise

    def _send_ssl(self, msg: EmailMessage, ssl_context: ssl.SSLContext) -> None:
        logger.debug("Usando porta 465 com SMTP_SSL (SSL direto)")
        with smtplib.SMTP_SSL(
            self._config.smtp_host,
            self._config.smtp_port,
            timeout=30,
            context=ssl_context,
        ) as server:
            server.login(self._config.smtp_user, self._config.smtp_password)
            server.send_message(msg)

    def _send_starttls(self, msg: EmailMessage, ssl_context: ssl.SSLContext, port: int) -> None:
        logger.debug(f"Usando SMTP com STARTTLS: port={port}")
        with smtplib.SMTP(self._config.smtp_host, port, timeout=30) as server:
            server.starttls(context=ssl_context)
            server.login(self._config.smtp_user, self._config.smtp_password)
            server.send_message(msg)
