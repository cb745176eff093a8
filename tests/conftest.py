"""
Pytest fixtures: in-memory SQLite database, model factories and an authenticated API client.
Environment is set before the application package is imported.
"""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["SUPABASE_JWT_SECRET"] = "test-jwt-secret"
os.environ["WHATSAPP_VERIFY_TOKEN"] = "test-verify-token"
os.environ["WHATSAPP_APP_SECRET"] = "test-app-secret"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["DB_LOG_SLOW_QUERIES"] = "false"
for _name in (
    "WHATSAPP_ACCESS_TOKEN",
    "WHATSAPP_PHONE_NUMBER_ID",
    "VAPID_PUBLIC_KEY",
    "VAPID_PRIVATE_KEY",
    "STRIPE_SECRET_KEY",
    "GOOGLE_CLIENT_ID",
    "GOOGLE_CLIENT_SECRET",
    "N8N_BASE_URL",
    "N8N_API_KEY",
    "N8N_WEBHOOK_URL",
    "REDIS_URL",
):
    os.environ.pop(_name, None)

import time  # noqa: E402
from datetime import datetime, timedelta  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from jose import jwt  # noqa: E402

from barbershop.database import Base, SessionLocal, engine, get_db  # noqa: E402
from barbershop.main import app  # noqa: E402
from barbershop.models import (  # noqa: E402
    Agendamento,
    AgendamentoServico,
    Barbearia,
    Barbeiro,
    Servico,
    Usuario,
)
from barbershop.shared.dates import business_now  # noqa: E402


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def api(db):
    """TestClient bound to the test session"""

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def make_token(user: Usuario, expires_in: int = 3600) -> str:
    claims = {
        "sub": user.auth_id,
        "email": user.email,
        "aud": "authenticated",
        "exp": int(time.time()) + expires_in,
    }
    return jwt.encode(claims, os.environ["SUPABASE_JWT_SECRET"], algorithm="HS256")


def auth_headers(user: Usuario) -> dict:
    return {"Authorization": f"Bearer {make_token(user)}"}


@pytest.fixture
def tenant(db):
    shop = Barbearia(nome="Barbearia do Zé", slug="barbearia-do-ze", telefone="5511999990000")
    db.add(shop)
    db.commit()
    db.refresh(shop)
    return shop


@pytest.fixture
def barber(db, tenant):
    barbeiro = Barbeiro(barbearia_id=tenant.id, nome="Carlos", especialidades=["corte", "barba"])
    db.add(barbeiro)
    db.commit()
    db.refresh(barbeiro)
    return barbeiro


@pytest.fixture
def services(db, tenant):
    corte = Servico(barbearia_id=tenant.id, nome="Corte", preco=40.0, duracao_minutos=30)
    barba = Servico(barbearia_id=tenant.id, nome="Barba", preco=25.5, duracao_minutos=30)
    db.add_all([corte, barba])
    db.commit()
    return [corte, barba]


@pytest.fixture
def client_user(db):
    user = Usuario(
        auth_id="auth-client-1",
        email="cliente@example.com",
        nome="João Cliente",
        whatsapp="11988887777",
        tipo="cliente",
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def admin_user(db, tenant):
    user = Usuario(
        auth_id="auth-admin-1",
        email="dono@example.com",
        nome="Dono",
        tipo="admin",
        barbearia_id=tenant.id,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def future_day():
    """A day far enough ahead that every slot is in the future"""
    return business_now().date() + timedelta(days=7)


@pytest.fixture
def make_appointment(db, tenant, barber, client_user, services):
    def _make(start: datetime, minutes: int = 30, status: str = "agendado", **fields) -> Agendamento:
        appointment = Agendamento(
            barbearia_id=tenant.id,
            cliente_id=client_user.id,
            barbeiro_id=barber.id,
            data_hora=start,
            data_fim=start + timedelta(minutes=minutes),
            valor_total=services[0].preco,
            status=status,
            **fields,
        )
        appointment.servicos.append(AgendamentoServico(servico_id=services[0].id, preco=services[0].preco))
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        return appointment

    return _make


@pytest.fixture
def headers_for():
    """Bearer headers for a user: headers_for(user)"""
    return auth_headers
