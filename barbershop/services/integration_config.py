"""
Integration configuration and audit log
Loads/saves per-shop integration rows with encrypted credentials
and writes the logs_integracao audit trail
"""

import base64
import hashlib
import logging
from typing import Any, Optional

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy.orm import Session

from ..config import SECRET_KEY
from ..exceptions import IntegrationNotConfiguredError
from ..models_integrations import Integracao, LogIntegracao

logger = logging.getLogger(__name__)

INTEGRATION_TYPES = ("whatsapp", "n8n", "ai", "google_calendar")

# Keys inside integracoes.configuracao stored encrypted
SECRET_FIELDS = {"accessToken", "refreshToken", "clientSecret", "apiKey", "appSecret"}
MASKED_VALUE = "••••••••"

_cipher_suite: Optional[Fernet] = None


def get_cipher() -> Fernet:
    """Fernet cipher keyed from SECRET_KEY"""
    global _cipher_suite
    if _cipher_suite is None:
        key = base64.urlsafe_b64encode(hashlib.sha256(SECRET_KEY.encode()).digest())
        _cipher_suite = Fernet(key)
    return _cipher_suite


def encrypt_credential(value: str) -> str:
    return get_cipher().encrypt(value.encode()).decode()


def decrypt_credential(encrypted_credential: str) -> str:
    """Decrypt a stored credential"""
    return get_cipher().decrypt(encrypted_credential.encode()).decode()


def encrypt_config(config: dict) -> dict:
    return {
        key: encrypt_credential(value) if key in SECRET_FIELDS and value else value
        for key, value in config.items()
    }


def decrypt_config(config: dict, tipo: str) -> dict:
    decrypted = {}
    for key, value in config.items():
        if key in SECRET_FIELDS and value:
            try:
                decrypted[key] = decrypt_credential(value)
            except InvalidToken as e:
                logger.error(f"❌ Failed to decrypt {tipo} credential '{key}'")
                raise IntegrationNotConfiguredError(tipo, "Stored credentials could not be decrypted") from e
        else:
            decrypted[key] = value
    return decrypted


def mask_config(config: dict) -> dict:
    """Config safe to return to the admin panel"""
    masked = {}
    for key, value in config.items():
        if key in SECRET_FIELDS and value:
            masked[key] = MASKED_VALUE
        else:
            masked[key] = value
    return masked


def get_integration(db: Session, tipo: str, barbearia_id: Optional[str] = None) -> Optional[Integracao]:
    return (
        db.query(Integracao)
        .filter(Integracao.tipo == tipo, Integracao.barbearia_id == barbearia_id)
        .first()
    )


def load_integration_config(
    db: Session, tipo: str, barbearia_id: Optional[str] = None
) -> Optional[dict]:
    """Decrypted config of the active integration row, or None"""
    integration = get_integration(db, tipo, barbearia_id)
    if not integration or not integration.ativo:
        return None
    return decrypt_config(integration.configuracao or {}, tipo)


def save_integration_config(
    db: Session,
    tipo: str,
    config: dict,
    barbearia_id: Optional[str] = None,
    ativo: Optional[bool] = None,
) -> Integracao:
    """Upsert an integration row; secret fields are encrypted before storage"""
    integration = get_integration(db, tipo, barbearia_id)
    encrypted = encrypt_config(config)
    if integration:
        integration.configuracao = encrypted
        if ativo is not None:
            integration.ativo = ativo
    else:
        integration = Integracao(
            barbearia_id=barbearia_id,
            tipo=tipo,
            configuracao=encrypted,
            ativo=True if ativo is None else ativo,
        )
        db.add(integration)
    db.commit()
    db.refresh(integration)
    return integration


class IntegrationLogger:
    """Writes logs_integracao rows. A failed audit write never breaks the caller."""

    def __init__(self, db: Session, tipo_integracao: str, barbearia_id: Optional[str] = None):
        self.db = db
        self.tipo_integracao = tipo_integracao
        self.barbearia_id = barbearia_id

    def log(
        self,
        acao: str,
        dados_entrada: Optional[dict[str, Any]] = None,
        dados_saida: Optional[dict[str, Any]] = None,
        erro: Optional[str] = None,
    ) -> None:
        try:
            self.db.add(
                LogIntegracao(
                    barbearia_id=self.barbearia_id,
                    tipo_integracao=self.tipo_integracao,
                    acao=acao,
                    dados_entrada=dados_entrada,
                    dados_saida=dados_saida,
                    status="erro" if erro else "sucesso",
                    erro_mensagem=erro,
                )
            )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Failed to write {self.tipo_integracao} audit log '{acao}': {e}")
