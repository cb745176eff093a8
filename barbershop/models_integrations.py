"""
Integration Models
Per-tenant integration config rows, the integration audit log,
AI conversations, automation rules and the calendar sync lease
"""

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.sql import func

from .database import Base
from .models import generate_id


class Integracao(Base):
    """Vendor credentials/settings for one integration type of one shop"""

    __tablename__ = "integracoes"
    __table_args__ = (UniqueConstraint("barbearia_id", "tipo", name="uq_integracao_tipo"),)

    id = Column(String(36), primary_key=True, default=generate_id)
    # NULL for global integrations (ai, n8n)
    barbearia_id = Column(String(36), ForeignKey("barbearias.id"), nullable=True, index=True)
    tipo = Column(String(50), nullable=False)  # whatsapp, n8n, ai, google_calendar
    # Secret keys inside are Fernet-encrypted
    configuracao = Column(JSON, nullable=False, default=dict)
    ativo = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class LogIntegracao(Base):
    """Audit row written for every vendor call"""

    __tablename__ = "logs_integracao"

    id = Column(String(36), primary_key=True, default=generate_id)
    barbearia_id = Column(String(36), nullable=True, index=True)
    tipo_integracao = Column(String(50), nullable=False, index=True)
    acao = Column(String(100), nullable=False)
    dados_entrada = Column(JSON, nullable=True)
    dados_saida = Column(JSON, nullable=True)
    status = Column(String(20), nullable=False)  # sucesso, erro
    erro_mensagem = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), index=True)


class CalendarSyncLease(Base):
    """One row per shop while a calendar sync runs; expired rows may be taken over"""

    __tablename__ = "calendar_sync_leases"

    barbearia_id = Column(String(36), primary_key=True)
    holder = Column(String(64), nullable=False)
    expires_at = Column(DateTime, nullable=False)


class ConversaAI(Base):
    __tablename__ = "conversas_ai"

    id = Column(String(36), primary_key=True, default=generate_id)
    user_id = Column(String(36), ForeignKey("usuarios.id"), nullable=False, index=True)
    messages = Column(JSON, nullable=False, default=list)
    context = Column(JSON, nullable=True)
    status = Column(String(20), nullable=False, default="active")  # active, resolved, escalated
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class AutomationRule(Base):
    __tablename__ = "automation_rules"

    id = Column(String(36), primary_key=True, default=generate_id)
    barbearia_id = Column(String(36), ForeignKey("barbearias.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    trigger = Column(JSON, nullable=False)  # {"type": "appointment", "action": "created"}
    actions = Column(JSON, nullable=False, default=list)
    active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
