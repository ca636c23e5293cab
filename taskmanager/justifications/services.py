"""
Fluxo de justificativa de conclusão em atraso.

Estados: pending -> approved | refused | blocked; refused -> blocked.
Uma nova submissão depois de refused cria outra linha (a anterior vira histórico).
Toda transição de revisão é um compare-and-set no banco: quem perde a corrida
recebe InvalidTransitionError.
"""

from typing import List, Optional

from flask import current_app
from sqlalchemy import and_, exists
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import aliased

from .. import db
from ..errors import (ValidationError, ConflictError, InvalidTransitionError,
                      StateError, NotFoundError, AuthorizationError)
from ..evidences.services import EvidenceService
from ..models import Task, Justification, JustificationStatus, get_brasilia_now
from ..notifications import notify, JUSTIFICATION_SUBMITTED, JUSTIFICATION_REVIEWED
from ..utils.db_helper import rollback_on_error, safe_commit, with_db_retry
from ..utils.scope_guard import Capability, TenantScopeGuard
from ..utils.session import ActorSession, Role

DEFAULT_AUTO_DESCRIPTION = "Tarefa concluída após o prazo. Aguardando justificativa do responsável."

DECISION_APPROVE = 'approve'
DECISION_REFUSE = 'refuse'
DECISION_BLOCK = 'block'

# Estado de destino e estados de origem aceitos por decisão
TRANSITIONS = {
    DECISION_APPROVE: (JustificationStatus.APPROVED, (JustificationStatus.PENDING,)),
    DECISION_REFUSE: (JustificationStatus.REFUSED, (JustificationStatus.PENDING,)),
    DECISION_BLOCK: (JustificationStatus.BLOCKED, (JustificationStatus.PENDING, JustificationStatus.REFUSED)),
}

DECISION_ALIASES = {
    'approved': DECISION_APPROVE,
    'refused': DECISION_REFUSE,
    'blocked': DECISION_BLOCK,
    'refuse_and_block': DECISION_BLOCK,
}

LISTABLE_STATUSES = tuple(s.value for s in JustificationStatus if s is not JustificationStatus.NONE)


def _clean_text(value, field, max_length, required=True, code='VALIDATION'):
    text = (value or '').strip() if isinstance(value, str) or value is None else None
    if text is None:
        raise ValidationError(f"Campo '{field}' deve ser texto.", field=field)
    if required and not text:
        raise ValidationError(f"Campo '{field}' é obrigatório.", code=code, field=field)
    if len(text) > max_length:
        raise ValidationError(f"Campo '{field}' excede {max_length} caracteres.", field=field)
    return text


class JustificationWorkflow:

    @staticmethod
    def get_scoped(actor: ActorSession, justification_id) -> Justification:
        justification = Justification.get_for_tenant(actor.tenant_id, justification_id)
        if justification is None:
            raise NotFoundError("Justificativa não encontrada.")
        return justification

    @staticmethod
    def _insert(task, description, actor_id) -> Justification:
        """Insere a justificativa pendente; o índice parcial garante uma ativa por tarefa."""
        justification = Justification(
            tenant_id=task.tenant_id,
            task_id=task.id,
            description=description,
            status=JustificationStatus.PENDING.value,
            created_by=actor_id,
            created_at=get_brasilia_now(),
        )
        db.session.add(justification)
        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            current_app.logger.warning(f"Submissão concorrente recusada para a tarefa {task.id}")
            raise ConflictError(
                "Já existe uma justificativa ativa para esta tarefa.",
                code='ACTIVE_JUSTIFICATION_EXISTS'
            )
        return justification

    @classmethod
    def create_pending_for_late_completion(cls, task, actor: ActorSession,
                                           description: Optional[str] = None) -> Optional[Justification]:
        """
        Chamado pela conclusão em atraso, dentro da mesma transação (sem commit).
        Não faz nada se já houver justificativa ativa ou se o fluxo estiver bloqueado.
        """
        if task.justification_blocked or task.active_justification() is not None:
            return None

        max_length = current_app.config['MAX_JUSTIFICATION_LENGTH']
        text = _clean_text(description, 'justificationDescription', max_length, required=False)
        justification = cls._insert(task, text or DEFAULT_AUTO_DESCRIPTION, actor.actor_id)
        current_app.logger.info(
            f"Justificativa {justification.id} criada automaticamente (pending) para a tarefa {task.id} "
            f"concluída em atraso por {actor.actor_id}"
        )
        return justification

    @classmethod
    @with_db_retry()
    @rollback_on_error
    def submit(cls, actor: ActorSession, task_id, description, evidence_refs=None) -> Justification:
        """Submissão pelo responsável de uma tarefa concluída em atraso."""
        task = Task.get_for_tenant(actor.tenant_id, task_id)
        if task is None:
            raise NotFoundError("Tarefa não encontrada.")

        TenantScopeGuard.authorize(actor, task.tenant_id, Capability.SUBMIT_JUSTIFICATION, task=task)

        text = _clean_text(description, 'description', current_app.config['MAX_JUSTIFICATION_LENGTH'])

        if task.realizado is None or task.realizado <= task.prazo:
            raise StateError("Apenas tarefas concluídas em atraso podem ser justificadas.", code='NOT_LATE')
        if task.justification_blocked:
            raise ConflictError("Justificativa bloqueada para esta tarefa.", code='JUSTIFICATION_BLOCKED')
        if task.active_justification() is not None:
            raise ConflictError(
                "Já existe uma justificativa ativa para esta tarefa.",
                code='ACTIVE_JUSTIFICATION_EXISTS'
            )

        justification = cls._insert(task, text, actor.actor_id)
        if evidence_refs:
            EvidenceService.record_refs(actor, justification, evidence_refs)
        safe_commit()

        current_app.logger.info(
            f"Justificativa {justification.id} submetida para a tarefa {task.id} "
            f"(tenant {actor.tenant_id}) por {actor.actor_id}"
        )
        notify(JUSTIFICATION_SUBMITTED, {
            'tenantId': task.tenant_id,
            'taskId': task.id,
            'justificationId': justification.id,
            'area': task.area,
            'submittedBy': actor.actor_id,
        })
        return justification

    @staticmethod
    def normalize_decision(decision) -> str:
        key = str(decision or '').strip().lower()
        key = DECISION_ALIASES.get(key, key)
        if key not in TRANSITIONS:
            raise ValidationError(
                "Decisão inválida. Use approve, refuse ou block.",
                field='decision'
            )
        return key

    @classmethod
    @with_db_retry()
    @rollback_on_error
    def review(cls, actor: ActorSession, justification_id, decision, comment=None) -> Justification:
        """Aprova, recusa ou bloqueia uma justificativa (compare-and-set no status)."""
        justification = cls.get_scoped(actor, justification_id)
        task = justification.task
        TenantScopeGuard.authorize(actor, justification.tenant_id, Capability.REVIEW_JUSTIFICATION, task=task)

        decision = cls.normalize_decision(decision)
        max_length = current_app.config['MAX_REVIEW_COMMENT_LENGTH']
        review_comment = _clean_text(
            comment, 'reviewComment', max_length,
            required=decision == DECISION_REFUSE, code='MISSING_FIELD'
        )

        target, sources = TRANSITIONS[decision]
        if task.justification_blocked:
            raise ConflictError("Justificativa bloqueada para esta tarefa.", code='JUSTIFICATION_BLOCKED')

        # Só a justificativa mais recente da tarefa é revisável; as anteriores são histórico
        newer = aliased(Justification)
        superseded = exists().where(and_(
            newer.task_id == justification.task_id,
            newer.created_at > justification.created_at,
        ))
        task_blocked = exists().where(and_(
            Task.id == justification.task_id,
            Task.justification_blocked.is_(True),
        ))

        now = get_brasilia_now()
        updated = Justification.query.filter(
            Justification.id == justification.id,
            Justification.tenant_id == actor.tenant_id,
            Justification.status.in_([s.value for s in sources]),
            ~superseded,
            ~task_blocked,
        ).update({
            Justification.status: target.value,
            Justification.reviewed_by: actor.actor_id,
            Justification.reviewed_at: now,
            Justification.review_comment: review_comment or None,
        }, synchronize_session=False)

        if updated == 0:
            db.session.rollback()
            current_app.logger.warning(
                f"Transição '{decision}' inválida para a justificativa {justification.id} "
                f"(status atual: {justification.status}) por {actor.actor_id}"
            )
            raise InvalidTransitionError(
                f"Justificativa não está em um estado que permita '{decision}'."
            )

        if target is JustificationStatus.BLOCKED:
            task.justification_blocked = True
            task.justification_blocked_at = now
            task.justification_blocked_by = actor.actor_id

        safe_commit()

        current_app.logger.info(
            f"Justificativa {justification.id} -> {target.value} por {actor.actor_id} "
            f"(tarefa {task.id}, tenant {actor.tenant_id})"
        )
        notify(JUSTIFICATION_REVIEWED, {
            'tenantId': justification.tenant_id,
            'taskId': task.id,
            'justificationId': justification.id,
            'status': target.value,
            'reviewedBy': actor.actor_id,
            'assignee': task.responsavel_email,
        })
        return justification

    @staticmethod
    def get_justification(actor: ActorSession, justification_id) -> Justification:
        justification = JustificationWorkflow.get_scoped(actor, justification_id)
        TenantScopeGuard.authorize(actor, justification.tenant_id, Capability.READ_TASK, task=justification.task)
        return justification

    @staticmethod
    def list_task_justifications(actor: ActorSession, task_id) -> List[Justification]:
        """Histórico da tarefa, mais recente primeiro."""
        task = Task.get_for_tenant(actor.tenant_id, task_id)
        if task is None:
            raise NotFoundError("Tarefa não encontrada.")
        TenantScopeGuard.authorize(actor, task.tenant_id, Capability.READ_TASK, task=task)
        return task.justifications.all()

    @staticmethod
    def list_justifications(actor: ActorSession, status) -> List[Justification]:
        """Visão do revisor: líder vê a própria área, administrador vê o tenant."""
        status = str(status or JustificationStatus.PENDING.value).strip().lower()
        if status not in LISTABLE_STATUSES:
            raise ValidationError(f"Status inválido: {status}.", field='status')
        if actor.role not in (Role.LEADER, Role.ADMIN):
            raise AuthorizationError("Acesso apenas para líder ou administrador.")

        query = Justification.query.join(Task, Justification.task_id == Task.id).filter(
            Justification.tenant_id == actor.tenant_id,
            Justification.status == status,
        )
        if actor.role is Role.LEADER:
            query = query.filter(Task.area == actor.area)
        return query.order_by(Justification.created_at.desc()).all()

    @staticmethod
    def list_my_late_tasks(actor: ActorSession, competencia_ym=None):
        """
        Tarefas do próprio ator concluídas em atraso, com a justificativa mais recente.

        Returns:
            list[tuple[Task, Justification | None]]
        """
        query = Task.query.filter(
            Task.tenant_id == actor.tenant_id,
            Task.responsavel_email == actor.actor_id,
            Task.parent_task_id.is_(None),
            Task.realizado.isnot(None),
            Task.realizado > Task.prazo,
        )
        if competencia_ym:
            query = query.filter(Task.competencia_ym == competencia_ym)

        tasks = query.order_by(Task.competencia_ym.desc(), Task.realizado.desc()).all()
        return [(task, task.latest_justification()) for task in tasks]

