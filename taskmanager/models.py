# -*- coding: utf-8 -*-
from . import db  # Importa a instância db de taskmanager/__init__.py
from datetime import datetime
import enum
import json
import uuid
import pytz
from flask import current_app, has_app_context

DEFAULT_TIMEZONE = 'America/Sao_Paulo'


def get_app_timezone():
    """Fuso horário configurado (padrão: Brasília)."""
    name = DEFAULT_TIMEZONE
    if has_app_context():
        name = current_app.config.get('APP_TIMEZONE', DEFAULT_TIMEZONE)
    return pytz.timezone(name)


def get_brasilia_now():
    """Retorna datetime atual no fuso horário da aplicação."""
    return datetime.now(get_app_timezone())


def get_today():
    """Data de hoje no fuso da aplicação; referência para status de prazo."""
    return get_brasilia_now().date()


def new_id():
    return str(uuid.uuid4())


class TaskStatus(enum.Enum):
    IN_PROGRESS = 'Em Andamento'
    OVERDUE = 'Em Atraso'
    DONE = 'Concluído'
    DONE_LATE = 'Concluído em Atraso'
    AWAITING_SUBTASKS = 'Aguardando subtarefas'

    @property
    def is_completed(self):
        return self in (TaskStatus.DONE, TaskStatus.DONE_LATE)


class JustificationStatus(enum.Enum):
    NONE = 'none'
    PENDING = 'pending'
    APPROVED = 'approved'
    REFUSED = 'refused'
    BLOCKED = 'blocked'


# Estados que ocupam a vaga de justificativa "ativa" da tarefa
ACTIVE_JUSTIFICATION_STATUSES = (JustificationStatus.PENDING.value, JustificationStatus.APPROVED.value)


class Task(db.Model):
    __tablename__ = 'task'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    tenant_id = db.Column(db.String(64), nullable=False, index=True)
    competencia_ym = db.Column(db.String(7), nullable=False)
    recorrencia = db.Column(db.String(80), nullable=False)
    tipo = db.Column(db.String(80), nullable=False, default='', server_default='')
    atividade = db.Column(db.String(200), nullable=False)
    observacoes = db.Column(db.Text, nullable=True)
    responsavel_email = db.Column(db.String(150), nullable=False)
    responsavel_nome = db.Column(db.String(150), nullable=False, default='', server_default='')
    area = db.Column(db.String(120), nullable=False)
    prazo = db.Column(db.Date, nullable=False)
    realizado = db.Column(db.Date, nullable=True)

    # Subtarefas: apenas um nível (subtarefa não tem filhas)
    parent_task_id = db.Column(db.String(36), db.ForeignKey('task.id'), nullable=True, index=True)
    subtasks = db.relationship('Task', backref=db.backref('parent', remote_side=[id]), lazy='dynamic')

    # Bloqueio administrativo do fluxo de justificativa
    justification_blocked = db.Column(db.Boolean, nullable=False, default=False, server_default='0')
    justification_blocked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    justification_blocked_by = db.Column(db.String(150), nullable=True)

    # Auditoria
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=get_brasilia_now)
    created_by = db.Column(db.String(150), nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=get_brasilia_now)
    updated_by = db.Column(db.String(150), nullable=False)
    prazo_modified_by = db.Column(db.String(150), nullable=True)
    prazo_modified_at = db.Column(db.DateTime(timezone=True), nullable=True)
    realizado_por = db.Column(db.String(150), nullable=True)

    justifications = db.relationship('Justification', backref='task', lazy='dynamic',
                                     order_by='Justification.created_at.desc()')
    evidences = db.relationship('Evidence', backref='task', lazy='dynamic',
                                order_by='Evidence.uploaded_at.desc()')

    __table_args__ = (
        db.Index('idx_task_tenant_area', 'tenant_id', 'area'),
        db.Index('idx_task_tenant_resp', 'tenant_id', 'responsavel_email'),
        db.Index('idx_task_tenant_ym', 'tenant_id', 'competencia_ym'),
    )

    @property
    def is_subtask(self):
        return self.parent_task_id is not None

    @classmethod
    def get_for_tenant(cls, tenant_id, task_id):
        """Busca por id sempre restrita ao tenant; outro tenant equivale a inexistente."""
        if not task_id:
            return None
        return cls.query.filter_by(id=str(task_id), tenant_id=tenant_id).first()

    @property
    def subtask_count(self):
        if self.is_subtask:
            return 0
        return self.subtasks.count()

    def subtask_statuses(self, today=None):
        return [s.current_status(today) for s in self.subtasks]

    def current_status(self, today=None):
        """Status derivado no momento da leitura (nunca persistido)."""
        from .tasks.status_engine import derive_status
        today = today or get_today()
        statuses = [] if self.is_subtask else self.subtask_statuses(today)
        return derive_status(self.prazo, self.realizado, today, len(statuses), statuses)

    def latest_justification(self):
        return self.justifications.first()

    def active_justification(self):
        return self.justifications.filter(
            Justification.status.in_(ACTIVE_JUSTIFICATION_STATUSES)
        ).first()

    @property
    def justification_status(self):
        from .tasks.status_engine import derive_justification_status
        latest = self.latest_justification()
        return derive_justification_status(self.justification_blocked, latest.status if latest else None)

    def __repr__(self):
        return f'<Task {self.id}: {self.atividade}>'


class Rule(db.Model):
    __tablename__ = 'rule'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    tenant_id = db.Column(db.String(64), nullable=False)
    area = db.Column(db.String(120), nullable=False)
    allowed_recorrencias = db.Column(db.Text, nullable=False, default='[]', server_default='[]')
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=get_brasilia_now)
    updated_by = db.Column(db.String(150), nullable=False)

    __table_args__ = (
        db.UniqueConstraint('tenant_id', 'area', name='uq_rule_tenant_area'),
    )

    def get_allowed_recorrencias(self):
        """Retorna lista de recorrências permitidas."""
        try:
            return json.loads(self.allowed_recorrencias) if self.allowed_recorrencias else []
        except ValueError:
            current_app.logger.error(f"Regra {self.id} com allowed_recorrencias inválido: {self.allowed_recorrencias!r}")
            return []

    def set_allowed_recorrencias(self, values):
        """Define a lista de recorrências permitidas (substitui a anterior)."""
        self.allowed_recorrencias = json.dumps(list(values), ensure_ascii=False)

    @classmethod
    def get_for_area(cls, tenant_id, area):
        return cls.query.filter_by(tenant_id=tenant_id, area=area).first()

    def __repr__(self):
        return f'<Rule {self.tenant_id}/{self.area}>'


class Justification(db.Model):
    __tablename__ = 'justification'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    tenant_id = db.Column(db.String(64), nullable=False, index=True)
    task_id = db.Column(db.String(36), db.ForeignKey('task.id'), nullable=False, index=True)
    description = db.Column(db.Text, nullable=False)
    status = db.Column(db.String(20), nullable=False, default=JustificationStatus.PENDING.value,
                       server_default=JustificationStatus.PENDING.value)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=get_brasilia_now)
    created_by = db.Column(db.String(150), nullable=False)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reviewed_by = db.Column(db.String(150), nullable=True)
    review_comment = db.Column(db.Text, nullable=True)

    evidences = db.relationship('Evidence', backref='justification', lazy='dynamic',
                                order_by='Evidence.uploaded_at.desc()')

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('pending', 'approved', 'refused', 'blocked')",
            name='ck_justification_status'
        ),
        # No máximo uma justificativa ativa (pendente ou aprovada) por tarefa
        db.Index(
            'uq_justification_active_task', 'task_id', unique=True,
            sqlite_where=db.text("status IN ('pending', 'approved')"),
            postgresql_where=db.text("status IN ('pending', 'approved')"),
        ),
    )

    @property
    def status_enum(self):
        return JustificationStatus(self.status)

    @classmethod
    def get_for_tenant(cls, tenant_id, justification_id):
        if not justification_id:
            return None
        return cls.query.filter_by(id=str(justification_id), tenant_id=tenant_id).first()

    def __repr__(self):
        return f'<Justification {self.id} ({self.status}) for Task {self.task_id}>'


class Evidence(db.Model):
    __tablename__ = 'evidence'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    tenant_id = db.Column(db.String(64), nullable=False, index=True)
    task_id = db.Column(db.String(36), db.ForeignKey('task.id'), nullable=True, index=True)
    justification_id = db.Column(db.String(36), db.ForeignKey('justification.id'), nullable=True, index=True)
    file_name = db.Column(db.String(255), nullable=False)
    mime_type = db.Column(db.String(120), nullable=False)
    file_size = db.Column(db.Integer, nullable=False, default=0)
    storage_ref = db.Column(db.String(500), nullable=False)
    uploaded_at = db.Column(db.DateTime(timezone=True), nullable=False, default=get_brasilia_now)
    uploaded_by = db.Column(db.String(150), nullable=False)

    __table_args__ = (
        db.CheckConstraint(
            "(task_id IS NULL) <> (justification_id IS NULL)",
            name='ck_evidence_owner'
        ),
    )

    @property
    def owner_task(self):
        """Tarefa dona da evidência (direta ou via justificativa)."""
        return self.task if self.task_id else self.justification.task

    @classmethod
    def get_for_tenant(cls, tenant_id, evidence_id):
        if not evidence_id:
            return None
        return cls.query.filter_by(id=str(evidence_id), tenant_id=tenant_id).first()

    def __repr__(self):
        return f'<Evidence {self.id}: {self.file_name}>'
