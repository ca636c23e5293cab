"""
Pytest configuration for the task lifecycle core.

This module provides:
1. An application bound to in-memory SQLite (tables created per test)
2. Actor sessions per role and tenant
3. Seeded recurrence rules and task factories
"""

import pytest
from datetime import date

from taskmanager import create_app, db
from taskmanager.models import Rule, get_brasilia_now
from taskmanager.storage import InMemoryBlobStorage
from taskmanager.utils.session import ActorSession, Role

TENANT_A = 'tenant-a'
TENANT_B = 'tenant-b'

USER_EMAIL = 'ana@empresa.com'
OTHER_USER_EMAIL = 'bruno@empresa.com'
LEADER_EMAIL = 'lider@empresa.com'
ADMIN_EMAIL = 'admin@empresa.com'

# Prazos fixos, bem no passado/futuro, para o status não depender do dia da execução
PAST_PRAZO = date(2024, 3, 10)
FUTURE_PRAZO = date(2099, 12, 31)


# -----------------------------------------------------------------------------
# Application
# -----------------------------------------------------------------------------
@pytest.fixture
def app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'LOG_TO_FILE': False,
        'LOG_LEVEL': 'WARNING',
        'UPLOAD_FOLDER': str(tmp_path / 'uploads'),
        'NOTIFICATION_WEBHOOK_URL': None,
    })
    app.extensions['blob_storage'] = InMemoryBlobStorage()

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def blob_storage(app):
    return app.extensions['blob_storage']


@pytest.fixture
def notifications(app):
    return app.extensions['notifications']


# -----------------------------------------------------------------------------
# Actors
# -----------------------------------------------------------------------------
def make_actor(email, role, area='Financeiro', tenant_id=TENANT_A, nome='', impersonating=False):
    return ActorSession(
        actor_id=email,
        tenant_id=tenant_id,
        role=role,
        area=area,
        nome=nome,
        is_impersonating=impersonating,
    )


@pytest.fixture
def user_actor():
    return make_actor(USER_EMAIL, Role.USER, nome='Ana')


@pytest.fixture
def other_user_actor():
    return make_actor(OTHER_USER_EMAIL, Role.USER, nome='Bruno')


@pytest.fixture
def leader_actor():
    return make_actor(LEADER_EMAIL, Role.LEADER, nome='Líder Financeiro')


@pytest.fixture
def other_leader_actor():
    return make_actor('lider.fiscal@empresa.com', Role.LEADER, area='Fiscal')


@pytest.fixture
def admin_actor():
    return make_actor(ADMIN_EMAIL, Role.ADMIN, area='')


@pytest.fixture
def foreign_admin_actor():
    return make_actor('admin@outra.com', Role.ADMIN, area='', tenant_id=TENANT_B)


def session_headers(actor):
    """Cabeçalhos que a camada de autenticação entregaria para o ator."""
    headers = {
        'X-Actor-Id': actor.actor_id,
        'X-Tenant-Id': actor.tenant_id,
        'X-Actor-Role': actor.role.value,
        'X-Actor-Area': actor.area,
        'X-Actor-Name': actor.nome,
    }
    if actor.is_impersonating:
        headers['X-Impersonating'] = 'true'
    return headers


# -----------------------------------------------------------------------------
# Data
# -----------------------------------------------------------------------------
@pytest.fixture
def seeded_rules(app):
    """Financeiro aceita só Mensal; Fiscal aceita Mensal e Trimestral."""
    rules = []
    for area, allowed in (('Financeiro', ['Mensal']), ('Fiscal', ['Mensal', 'Trimestral'])):
        rule = Rule(tenant_id=TENANT_A, area=area, updated_by='seed', updated_at=get_brasilia_now())
        rule.set_allowed_recorrencias(allowed)
        db.session.add(rule)
        rules.append(rule)
    db.session.commit()
    return rules


def task_payload(**overrides):
    payload = {
        'competenciaYm': '2024-03',
        'recorrencia': 'Mensal',
        'tipo': 'Obrigação',
        'atividade': 'Fechamento mensal',
        'responsavelEmail': USER_EMAIL,
        'responsavelNome': 'Ana',
        'area': 'Financeiro',
        'prazo': PAST_PRAZO.isoformat(),
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def make_task(app, seeded_rules, leader_actor):
    """Factory: cria tarefa pelo TaskService (padrão: líder do Financeiro)."""
    from taskmanager.tasks.services import TaskService

    def _make(actor=None, **overrides):
        return TaskService.create_task(actor or leader_actor, task_payload(**overrides))

    return _make
