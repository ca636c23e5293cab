"""
Serviço de tarefas: criação, edição, conclusão e leituras.

Fluxo de escrita: TenantScopeGuard -> RuleValidator -> campos -> AuditRecorder
-> (conclusão em atraso) JustificationWorkflow. O status nunca é gravado.
"""

import re
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from flask import current_app
from sqlalchemy import or_

from .. import db
from ..errors import (ValidationError, AuthorizationError, ConflictError,
                      SubtaskBlockedError, NotFoundError)
from ..justifications.services import JustificationWorkflow
from ..models import Task, TaskStatus, JustificationStatus, get_today
from ..rules.services import RuleValidator
from ..utils.db_helper import rollback_on_error, safe_commit, with_db_retry
from ..utils.scope_guard import Capability, TenantScopeGuard
from ..utils.session import ActorSession, Role
from .audit import AuditRecorder
from .status_engine import all_completed, get_task_status, is_late_completion

COMPETENCIA_PATTERN = re.compile(r'^\d{4}-(0[1-9]|1[0-2])$')

# Tamanhos das colunas em models.Task
MAX_RECORRENCIA_LENGTH = 80
MAX_AREA_LENGTH = 120

# Campo da API -> atributo do modelo
EDITABLE_FIELDS = {
    'competenciaYm': 'competencia_ym',
    'recorrencia': 'recorrencia',
    'tipo': 'tipo',
    'atividade': 'atividade',
    'observacoes': 'observacoes',
    'responsavelEmail': 'responsavel_email',
    'responsavelNome': 'responsavel_nome',
    'area': 'area',
    'prazo': 'prazo',
    'realizado': 'realizado',
}

# O responsável (USER) só altera estes
USER_EDITABLE_ATTRS = ('observacoes', 'realizado')


# =====================================================
# Conversão e validação de entrada
# =====================================================

def parse_date(value, field) -> Optional[date]:
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value).strip()[:10], '%Y-%m-%d').date()
    except ValueError:
        raise ValidationError(f"Data inválida em '{field}' (use AAAA-MM-DD).", field=field)


def clean_text(value, field, max_length=None, required=False) -> str:
    if value is None:
        text = ''
    elif isinstance(value, str):
        text = value.strip()
    else:
        raise ValidationError(f"Campo '{field}' deve ser texto.", field=field)
    if required and not text:
        raise ValidationError(f"Campo '{field}' é obrigatório.", code='MISSING_FIELD', field=field)
    if max_length and len(text) > max_length:
        raise ValidationError(f"Campo '{field}' excede {max_length} caracteres.", field=field)
    return text


def parse_competencia(value, required=True) -> str:
    text = clean_text(value, 'competenciaYm', required=required)
    if text and not COMPETENCIA_PATTERN.match(text):
        raise ValidationError("Competência inválida (use AAAA-MM).", field='competenciaYm')
    return text


def parse_field(attr, value):
    """Converte um valor do patch para o tipo do atributo."""
    config = current_app.config
    if attr in ('prazo', 'realizado'):
        parsed = parse_date(value, attr)
        if attr == 'prazo' and parsed is None:
            raise ValidationError("Prazo é obrigatório.", code='MISSING_FIELD', field='prazo')
        return parsed
    if attr == 'competencia_ym':
        return parse_competencia(value)
    if attr == 'atividade':
        return clean_text(value, 'atividade', config['MAX_ATIVIDADE_LENGTH'], required=True)
    if attr == 'observacoes':
        return clean_text(value, 'observacoes', config['MAX_OBSERVACOES_LENGTH']) or None
    if attr == 'responsavel_email':
        return clean_text(value, 'responsavelEmail', 150, required=True).lower()
    if attr in ('recorrencia', 'area'):
        max_length = MAX_RECORRENCIA_LENGTH if attr == 'recorrencia' else MAX_AREA_LENGTH
        return clean_text(value, attr, max_length, required=True)
    if attr == 'tipo':
        return clean_text(value, 'tipo', 80)
    return clean_text(value, 'responsavelNome', 150)


# =====================================================
# Cadeia de guardas (ordem importa)
# =====================================================

def guard_subtasks_complete(task, today):
    if task.is_subtask:
        return
    if not all_completed(task.subtask_statuses(today)):
        raise SubtaskBlockedError("Conclua todas as subtarefas antes de concluir a tarefa principal.")


def guard_justification_not_final(task, today):
    if task.justification_blocked:
        raise ConflictError("Justificativa bloqueada para esta tarefa.", code='JUSTIFICATION_BLOCKED')
    latest = task.latest_justification()
    if latest is None:
        return
    if latest.status == JustificationStatus.APPROVED.value:
        raise ConflictError(
            "Conclusão em atraso já aprovada; datas não podem mais ser alteradas.",
            code='JUSTIFICATION_FINAL'
        )
    if latest.status == JustificationStatus.BLOCKED.value:
        raise ConflictError("Justificativa bloqueada para esta tarefa.", code='JUSTIFICATION_BLOCKED')


def guard_no_active_justification(task, today):
    if task.active_justification() is not None:
        raise ConflictError(
            "Existe justificativa ativa; a tarefa não pode ser reaberta.",
            code='ACTIVE_JUSTIFICATION_EXISTS'
        )


COMPLETION_GUARDS = (guard_subtasks_complete, guard_justification_not_final)
REOPEN_GUARDS = (guard_justification_not_final, guard_no_active_justification)
RESCHEDULE_GUARDS = (guard_justification_not_final,)


def run_guards(guards, task, today):
    for guard in guards:
        guard(task, today)


class TaskService:

    @staticmethod
    def get_task_status(task, subtask_statuses, today) -> TaskStatus:
        """Leitura pura, sem persistência."""
        return get_task_status(task, subtask_statuses, today)

    @staticmethod
    def get_scoped(actor: ActorSession, task_id) -> Task:
        task = Task.get_for_tenant(actor.tenant_id, task_id)
        if task is None:
            raise NotFoundError("Tarefa não encontrada.")
        return task

    # =====================================================
    # Leituras
    # =====================================================

    @classmethod
    def get_task(cls, actor: ActorSession, task_id) -> Task:
        task = cls.get_scoped(actor, task_id)
        TenantScopeGuard.authorize(actor, task.tenant_id, Capability.READ_TASK, task=task)
        return task

    @classmethod
    def list_subtasks(cls, actor: ActorSession, parent_id) -> List[Task]:
        parent = cls.get_task(actor, parent_id)
        return parent.subtasks.order_by(Task.created_at.asc()).all()

    @staticmethod
    def list_tasks(actor: ActorSession, filters: Optional[Dict[str, Any]] = None, today=None) -> List[Task]:
        """
        Lista conforme o papel: ADMIN todas as principais do tenant, LEADER as
        principais da sua área, USER as tarefas e subtarefas atribuídas a ele.
        O filtro de status é aplicado depois da derivação.
        """
        filters = filters or {}
        today = today or get_today()

        query = Task.query.filter(Task.tenant_id == actor.tenant_id)
        if actor.role is Role.ADMIN:
            query = query.filter(Task.parent_task_id.is_(None))
        elif actor.role is Role.LEADER:
            query = query.filter(Task.parent_task_id.is_(None), Task.area == actor.area)
        else:
            query = query.filter(Task.responsavel_email == actor.actor_id)

        if filters.get('area'):
            query = query.filter(Task.area == filters['area'])
        if filters.get('responsavel'):
            query = query.filter(Task.responsavel_email == str(filters['responsavel']).strip().lower())
        if filters.get('competenciaYm'):
            query = query.filter(Task.competencia_ym == filters['competenciaYm'])
        if filters.get('search'):
            pattern = f"%{filters['search']}%"
            query = query.filter(or_(Task.atividade.ilike(pattern), Task.observacoes.ilike(pattern)))

        tasks = query.order_by(
            Task.competencia_ym.desc(), Task.prazo.asc(), Task.created_at.desc()
        ).all()

        status_filter = filters.get('status')
        if status_filter:
            try:
                wanted = TaskStatus(status_filter)
            except ValueError:
                raise ValidationError(f"Status inválido: {status_filter}.", field='status')
            tasks = [t for t in tasks if t.current_status(today) is wanted]
        return tasks

    # =====================================================
    # Escritas
    # =====================================================

    @classmethod
    def _apply_realizado(cls, task, new_realizado, actor, today, justification_description=None):
        """Conclui, altera ou limpa o realizado passando pela cadeia de guardas."""
        if new_realizado == task.realizado:
            return
        if new_realizado is None:
            run_guards(REOPEN_GUARDS, task, today)
            AuditRecorder.record_realizado_change(task, None, actor.actor_id)
            current_app.logger.info(f"Tarefa {task.id} reaberta por {actor.actor_id}")
            return

        run_guards(COMPLETION_GUARDS, task, today)
        AuditRecorder.record_realizado_change(task, new_realizado, actor.actor_id)
        current_app.logger.info(
            f"Tarefa {task.id} concluída em {new_realizado.isoformat()} por {actor.actor_id} (tenant {task.tenant_id})"
        )
        if is_late_completion(task.prazo, task.realizado):
            JustificationWorkflow.create_pending_for_late_completion(task, actor, justification_description)

    @classmethod
    @with_db_retry()
    @rollback_on_error
    def create_task(cls, actor: ActorSession, data: Dict[str, Any]) -> Task:
        data = data or {}
        if data.get('parentTaskId'):
            return cls._create_subtask(actor, data['parentTaskId'], data)

        if actor.role is Role.USER:
            default_area, default_email = actor.area, actor.actor_id
        elif actor.role is Role.LEADER:
            default_area, default_email = actor.area, None
        else:
            default_area, default_email = None, None

        area = clean_text(data.get('area') or default_area, 'area', MAX_AREA_LENGTH)
        assignee = clean_text(data.get('responsavelEmail') or default_email, 'responsavelEmail', 150).lower()

        TenantScopeGuard.authorize(actor, actor.tenant_id, Capability.CREATE_TASK,
                                   area=area, assignee_email=assignee)

        config = current_app.config
        if not area:
            raise ValidationError("Área é obrigatória.", code='MISSING_FIELD', field='area')
        if not assignee:
            raise ValidationError("Responsável é obrigatório.", code='MISSING_FIELD', field='responsavelEmail')
        atividade = clean_text(data.get('atividade'), 'atividade', config['MAX_ATIVIDADE_LENGTH'], required=True)
        competencia_ym = parse_competencia(data.get('competenciaYm'))
        recorrencia = clean_text(data.get('recorrencia'), 'recorrencia', MAX_RECORRENCIA_LENGTH, required=True)
        prazo = parse_date(data.get('prazo'), 'prazo')
        if prazo is None:
            raise ValidationError("Prazo é obrigatório.", code='MISSING_FIELD', field='prazo')
        realizado = parse_date(data.get('realizado'), 'realizado')
        observacoes = clean_text(data.get('observacoes'), 'observacoes', config['MAX_OBSERVACOES_LENGTH'])

        RuleValidator.validate(actor.tenant_id, area, recorrencia, actor.role)

        responsavel_nome = clean_text(data.get('responsavelNome'), 'responsavelNome', 150)
        if not responsavel_nome and actor.same_actor(assignee):
            responsavel_nome = actor.nome

        task = Task(
            tenant_id=actor.tenant_id,
            competencia_ym=competencia_ym,
            recorrencia=recorrencia,
            tipo=clean_text(data.get('tipo'), 'tipo', 80),
            atividade=atividade,
            observacoes=observacoes or None,
            responsavel_email=assignee,
            responsavel_nome=responsavel_nome,
            area=area,
            prazo=prazo,
        )
        AuditRecorder.stamp_created(task, actor.actor_id)
        db.session.add(task)
        db.session.flush()

        if realizado is not None:
            cls._apply_realizado(task, realizado, actor, get_today(), data.get('justificationDescription'))

        safe_commit()
        current_app.logger.info(
            f"Tarefa {task.id} criada por {actor.actor_id} (tenant {actor.tenant_id}, área '{area}', "
            f"recorrência '{recorrencia}')"
        )
        return task

    @classmethod
    def _create_subtask(cls, actor: ActorSession, parent_id, data) -> Task:
        parent = cls.get_scoped(actor, parent_id)
        TenantScopeGuard.authorize(actor, parent.tenant_id, Capability.CREATE_SUBTASK, task=parent)

        if parent.is_subtask:
            raise ValidationError("Não é possível criar subtarefa de outra subtarefa.", field='parentTaskId')
        if parent.realizado is not None:
            raise ConflictError("Não é possível criar subtarefa em atividade já concluída.", code='TASK_CONCLUDED')

        config = current_app.config
        atividade = clean_text(data.get('atividade'), 'atividade', config['MAX_ATIVIDADE_LENGTH'], required=True)
        assignee = clean_text(data.get('responsavelEmail'), 'responsavelEmail', 150, required=True).lower()
        observacoes = clean_text(data.get('observacoes'), 'observacoes', config['MAX_OBSERVACOES_LENGTH'])
        realizado = parse_date(data.get('realizado'), 'realizado')

        # Herda da principal, que já passou pela validação de regra
        task = Task(
            tenant_id=parent.tenant_id,
            parent_task_id=parent.id,
            competencia_ym=parent.competencia_ym,
            recorrencia=parent.recorrencia,
            tipo=parent.tipo,
            area=parent.area,
            prazo=parent.prazo,
            atividade=atividade,
            observacoes=observacoes or None,
            responsavel_email=assignee,
            responsavel_nome=clean_text(data.get('responsavelNome'), 'responsavelNome', 150),
        )
        AuditRecorder.stamp_created(task, actor.actor_id)
        db.session.add(task)
        db.session.flush()

        if realizado is not None:
            cls._apply_realizado(task, realizado, actor, get_today(), data.get('justificationDescription'))

        safe_commit()
        current_app.logger.info(f"Subtarefa {task.id} criada em {parent.id} por {actor.actor_id}")
        return task

    @classmethod
    @with_db_retry()
    @rollback_on_error
    def update_task(cls, actor: ActorSession, task_id, patch: Dict[str, Any]) -> Task:
        task = cls.get_scoped(actor, task_id)
        TenantScopeGuard.authorize(actor, task.tenant_id, Capability.EDIT_TASK, task=task)
        patch = patch or {}
        today = get_today()

        changes = {}
        for key, attr in EDITABLE_FIELDS.items():
            if key not in patch:
                continue
            value = parse_field(attr, patch[key])
            if value != getattr(task, attr):
                changes[attr] = value

        if actor.role is Role.USER:
            forbidden = [attr for attr in changes if attr not in USER_EDITABLE_ATTRS]
            if forbidden:
                raise AuthorizationError(
                    "Responsável só pode alterar observações e data de realização.",
                    code='FORBIDDEN', field=forbidden[0]
                )
        if actor.role is Role.LEADER and 'area' in changes and changes['area'] != actor.area:
            raise AuthorizationError("Líder não pode mover a tarefa para fora da sua área.", field='area')

        if task.is_subtask and 'prazo' in changes:
            raise ValidationError("O prazo da subtarefa acompanha o da tarefa principal.", field='prazo')

        if 'recorrencia' in changes or 'area' in changes:
            RuleValidator.validate(
                task.tenant_id,
                changes.get('area', task.area),
                changes.get('recorrencia', task.recorrencia),
                actor.role,
            )

        if 'prazo' in changes:
            run_guards(RESCHEDULE_GUARDS, task, today)
            new_prazo = changes.pop('prazo')
            AuditRecorder.record_prazo_change(task, new_prazo, actor.actor_id)
            for subtask in task.subtasks:
                AuditRecorder.record_prazo_change(subtask, new_prazo, actor.actor_id)
            current_app.logger.info(f"Prazo da tarefa {task.id} alterado para {new_prazo.isoformat()} por {actor.actor_id}")

        realizado_changed = 'realizado' in changes
        new_realizado = changes.pop('realizado', None)

        for attr, value in changes.items():
            setattr(task, attr, value)

        if realizado_changed:
            cls._apply_realizado(task, new_realizado, actor, today, patch.get('justificationDescription'))

        AuditRecorder.stamp_updated(task, actor.actor_id)
        safe_commit()
        current_app.logger.info(f"Tarefa {task.id} atualizada por {actor.actor_id} (tenant {task.tenant_id})")
        return task

    @classmethod
    @with_db_retry()
    @rollback_on_error
    def complete_task(cls, actor: ActorSession, task_id, realizado, justification_description=None) -> Task:
        """Define a data de realização; em atraso cria justificativa pendente."""
        task = cls.get_scoped(actor, task_id)
        TenantScopeGuard.authorize(actor, task.tenant_id, Capability.COMPLETE_TASK, task=task)

        realizado_date = parse_date(realizado, 'realizado')
        if realizado_date is None:
            raise ValidationError("Data de realização é obrigatória.", code='MISSING_FIELD', field='realizado')

        cls._apply_realizado(task, realizado_date, actor, get_today(), justification_description)
        safe_commit()
        return task

    @classmethod
    @with_db_retry()
    @rollback_on_error
    def duplicate_task(cls, actor: ActorSession, task_id) -> Task:
        source = cls.get_scoped(actor, task_id)
        TenantScopeGuard.authorize(actor, source.tenant_id, Capability.DUPLICATE_TASK, task=source)

        if source.parent_task_id and source.parent.realizado is not None:
            raise ConflictError("Não é possível criar subtarefa em atividade já concluída.", code='TASK_CONCLUDED')

        copy = Task(
            tenant_id=source.tenant_id,
            parent_task_id=source.parent_task_id,
            competencia_ym=source.competencia_ym,
            recorrencia=source.recorrencia,
            tipo=source.tipo,
            atividade=source.atividade,
            observacoes=source.observacoes,
            responsavel_email=source.responsavel_email,
            responsavel_nome=source.responsavel_nome,
            area=source.area,
            prazo=source.prazo,
        )
        AuditRecorder.stamp_created(copy, actor.actor_id)
        db.session.add(copy)
        safe_commit()

        current_app.logger.info(f"Tarefa {source.id} duplicada como {copy.id} por {actor.actor_id}")
        return copy
