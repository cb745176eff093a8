"""
WhatsApp Models
Message history and approved message templates
"""

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, String, Text
from sqlalchemy.sql import func

from .database import Base
from .models import generate_id


class WhatsAppMensagem(Base):
    __tablename__ = "whatsapp_mensagens"

    id = Column(String(36), primary_key=True, default=generate_id)
    barbearia_id = Column(String(36), ForeignKey("barbearias.id"), nullable=True, index=True)
    whatsapp_message_id = Column(String(255), index=True, nullable=True)
    from_number = Column(String(30), nullable=True)
    to_number = Column(String(30), nullable=True)
    contact_name = Column(String(255), nullable=True)
    message_type = Column(String(30), nullable=False, default="text")
    message_content = Column(Text, nullable=True)
    direction = Column(String(10), nullable=False)  # sent, received
    status = Column(String(20), nullable=False, default="sent")  # sent, delivered, read, failed, received
    timestamp = Column(DateTime, server_default=func.now(), index=True)


class WhatsAppTemplate(Base):
    __tablename__ = "whatsapp_templates"

    id = Column(String(36), primary_key=True, default=generate_id)
    barbearia_id = Column(String(36), ForeignKey("barbearias.id"), nullable=False, index=True)
    nome = Column(String(255), nullable=False)
    template_id = Column(String(255), nullable=False)  # name registered on Meta
    categoria = Column(String(50), nullable=True)
    conteudo = Column(JSON, nullable=True)
    ativo = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
