import uuid
from datetime import timedelta

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base

# Statuses that hold a barber's time slot
ACTIVE_APPOINTMENT_STATUSES = ("agendado", "confirmado", "em_andamento")
DEFAULT_APPOINTMENT_MINUTES = 60


def generate_id():
    """Generate a UUID primary key (Supabase tables use uuid ids)"""
    return str(uuid.uuid4())


class Barbearia(Base):
    """A tenant: one barbershop account"""

    __tablename__ = "barbearias"

    id = Column(String(36), primary_key=True, default=generate_id)
    nome = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, index=True, nullable=False)
    endereco = Column(String(500), nullable=True)
    telefone = Column(String(30), nullable=True)
    email = Column(String(255), nullable=True)
    whatsapp_business = Column(String(30), nullable=True)
    # e.g. {"seg-sex": "9h às 18h", "sab": "8h às 17h"}
    horario_funcionamento = Column(JSON, nullable=True)
    ativo = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    servicos = relationship("Servico", back_populates="barbearia")
    barbeiros = relationship("Barbeiro", back_populates="barbearia")


class Usuario(Base):
    __tablename__ = "usuarios"

    id = Column(String(36), primary_key=True, default=generate_id)
    auth_id = Column(String(255), unique=True, index=True, nullable=True)  # Supabase auth uid
    email = Column(String(255), index=True, nullable=True)
    nome = Column(String(255), nullable=False)
    telefone = Column(String(30), nullable=True)
    whatsapp = Column(String(30), nullable=True)
    tipo = Column(String(20), default="cliente", nullable=False)  # cliente, barbeiro, admin
    barbearia_id = Column(String(36), ForeignKey("barbearias.id"), nullable=True, index=True)
    data_nascimento = Column(Date, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    barbearia = relationship("Barbearia")


class Barbeiro(Base):
    __tablename__ = "barbeiros"

    id = Column(String(36), primary_key=True, default=generate_id)
    barbearia_id = Column(String(36), ForeignKey("barbearias.id"), nullable=False, index=True)
    usuario_id = Column(String(36), ForeignKey("usuarios.id"), nullable=True)
    nome = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    telefone = Column(String(30), nullable=True)
    especialidades = Column(JSON, nullable=True)
    ativo = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    barbearia = relationship("Barbearia", back_populates="barbeiros")
    usuario = relationship("Usuario")


class Servico(Base):
    __tablename__ = "servicos"

    id = Column(String(36), primary_key=True, default=generate_id)
    barbearia_id = Column(String(36), ForeignKey("barbearias.id"), nullable=False, index=True)
    nome = Column(String(255), nullable=False)
    descricao = Column(Text, nullable=True)
    preco = Column(Float, nullable=False, default=0)
    duracao_minutos = Column(Integer, nullable=False, default=30)
    categoria = Column(String(50), nullable=True)
    ativo = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    barbearia = relationship("Barbearia", back_populates="servicos")


class Agendamento(Base):
    """An appointment. data_hora/data_fim are shop wall-clock times."""

    __tablename__ = "agendamentos"

    id = Column(String(36), primary_key=True, default=generate_id)
    barbearia_id = Column(String(36), ForeignKey("barbearias.id"), nullable=False, index=True)
    cliente_id = Column(String(36), ForeignKey("usuarios.id"), nullable=False, index=True)
    barbeiro_id = Column(String(36), ForeignKey("barbeiros.id"), nullable=False, index=True)
    data_hora = Column(DateTime, nullable=False, index=True)
    data_fim = Column(DateTime, nullable=True)
    valor_total = Column(Float, nullable=False, default=0)
    # agendado, confirmado, em_andamento, concluido, cancelado
    status = Column(String(20), nullable=False, default="agendado")
    pagamento_status = Column(String(20), nullable=False, default="pendente")
    observacoes = Column(Text, nullable=True)
    google_calendar_event_id = Column(String(255), nullable=True)
    lembrete_enviado = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    barbearia = relationship("Barbearia")
    cliente = relationship("Usuario")
    barbeiro = relationship("Barbeiro")
    servicos = relationship(
        "AgendamentoServico", back_populates="agendamento", cascade="all, delete-orphan"
    )

    @property
    def duracao_minutos(self) -> int:
        total = sum(item.servico.duracao_minutos or 0 for item in self.servicos if item.servico)
        return total or DEFAULT_APPOINTMENT_MINUTES

    @property
    def fim(self):
        if self.data_fim:
            return self.data_fim
        return self.data_hora + timedelta(minutes=self.duracao_minutos)

    @property
    def nomes_servicos(self) -> list[str]:
        return [item.servico.nome for item in self.servicos if item.servico]


class AgendamentoServico(Base):
    __tablename__ = "agendamento_servicos"

    id = Column(String(36), primary_key=True, default=generate_id)
    agendamento_id = Column(String(36), ForeignKey("agendamentos.id"), nullable=False, index=True)
    servico_id = Column(String(36), ForeignKey("servicos.id"), nullable=False)
    preco = Column(Float, nullable=False, default=0)

    agendamento = relationship("Agendamento", back_populates="servicos")
    servico = relationship("Servico")


class Pagamento(Base):
    __tablename__ = "pagamentos"

    id = Column(String(36), primary_key=True, default=generate_id)
    barbearia_id = Column(String(36), ForeignKey("barbearias.id"), nullable=True, index=True)
    agendamento_id = Column(String(36), ForeignKey("agendamentos.id"), nullable=True, index=True)
    valor = Column(Float, nullable=False)
    metodo = Column(String(30), default="cartao")
    status = Column(String(30), nullable=False, default="pendente")
    stripe_payment_id = Column(String(255), index=True, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class Notificacao(Base):
    """In-app notification. usuario_id NULL means it is addressed to the shop admins."""

    __tablename__ = "notificacoes"

    id = Column(String(36), primary_key=True, default=generate_id)
    usuario_id = Column(String(36), ForeignKey("usuarios.id"), nullable=True, index=True)
    tipo = Column(String(50), nullable=False)
    titulo = Column(String(255), nullable=False)
    mensagem = Column(Text, nullable=False)
    dados = Column(JSON, nullable=True)
    lida = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
