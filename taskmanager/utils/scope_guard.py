"""
Escopo de tenant e verificação de capacidades.

Toda leitura/escrita passa por TenantScopeGuard.authorize: primeiro o tenant,
depois o modo de impersonação (somente leitura) e por último o papel do ator.
"""

import enum

from flask import current_app

from ..errors import AuthorizationError
from .session import ActorSession, Role


class Capability(enum.Enum):
    READ_TASK = 'read_task'
    CREATE_TASK = 'create_task'
    CREATE_SUBTASK = 'create_subtask'
    DUPLICATE_TASK = 'duplicate_task'
    EDIT_TASK = 'edit_task'
    COMPLETE_TASK = 'complete_task'
    SUBMIT_JUSTIFICATION = 'submit_justification'
    REVIEW_JUSTIFICATION = 'review_justification'
    READ_RULE = 'read_rule'
    SAVE_RULE = 'save_rule'
    MANAGE_EVIDENCE = 'manage_evidence'

    @property
    def is_mutating(self):
        return self not in (Capability.READ_TASK, Capability.READ_RULE)


def _same_area(actor, area):
    return bool(actor.area) and str(area or '') == actor.area


def _is_assignee(actor, task):
    return task is not None and actor.same_actor(task.responsavel_email)


def _can_read_task(actor, task):
    if actor.role is Role.ADMIN:
        return True
    if actor.role is Role.LEADER:
        return _same_area(actor, task.area)
    # USER: a própria tarefa ou subtarefa de uma tarefa sua
    if _is_assignee(actor, task):
        return True
    parent = task.parent if task.parent_task_id else None
    return _is_assignee(actor, parent)


def _can_edit_task(actor, task):
    if actor.role is Role.ADMIN:
        return True
    if actor.role is Role.LEADER:
        return _same_area(actor, task.area)
    # Responsável pela tarefa-pai não gerencia as subtarefas
    return _is_assignee(actor, task)


def has_capability(actor: ActorSession, capability: Capability, task=None, area=None,
                   assignee_email=None, justification=None) -> bool:
    """
    Função única de capacidades por papel.

    Não olha o tenant nem a impersonação; isso fica em TenantScopeGuard.authorize.
    `area` é a área-alvo (criação, regra) e `assignee_email` o responsável
    pretendido numa criação.
    """
    if capability is Capability.READ_TASK:
        return task is not None and _can_read_task(actor, task)

    if capability is Capability.CREATE_TASK:
        if actor.role is Role.ADMIN:
            return True
        if actor.role is Role.LEADER:
            return _same_area(actor, area)
        return _same_area(actor, area) and actor.same_actor(assignee_email)

    if capability in (Capability.CREATE_SUBTASK, Capability.DUPLICATE_TASK):
        if actor.role is Role.ADMIN:
            return True
        target_area = task.area if task is not None else area
        return actor.role is Role.LEADER and _same_area(actor, target_area)

    if capability in (Capability.EDIT_TASK, Capability.COMPLETE_TASK):
        return task is not None and _can_edit_task(actor, task)

    if capability is Capability.SUBMIT_JUSTIFICATION:
        return _is_assignee(actor, task)

    if capability is Capability.REVIEW_JUSTIFICATION:
        if actor.role is Role.ADMIN:
            return True
        return actor.role is Role.LEADER and task is not None and _same_area(actor, task.area)

    if capability is Capability.READ_RULE:
        return actor.role is Role.ADMIN or _same_area(actor, area)

    if capability is Capability.SAVE_RULE:
        if actor.role is Role.ADMIN:
            return True
        return actor.role is Role.LEADER and _same_area(actor, area)

    if capability is Capability.MANAGE_EVIDENCE:
        if justification is not None:
            return _is_assignee(actor, justification.task)
        return task is not None and _can_edit_task(actor, task)

    return False


class TenantScopeGuard:
    """Autorização centralizada; chamada pelos serviços antes de qualquer transição."""

    @staticmethod
    def check_tenant(actor: ActorSession, target_tenant_id: str) -> None:
        if str(target_tenant_id or '') != actor.tenant_id:
            current_app.logger.warning(
                f"Tenant divergente: ator {actor.actor_id} ({actor.tenant_id}) tentou acessar {target_tenant_id}"
            )
            raise AuthorizationError("Acesso negado a este tenant.", code='TENANT_MISMATCH')

    @classmethod
    def authorize(cls, actor: ActorSession, target_tenant_id: str, capability: Capability, **context) -> None:
        """
        Autoriza `capability` para o ator no tenant alvo ou levanta AuthorizationError.

        Ordem: tenant, impersonação (mutações bloqueadas), papel.
        """
        cls.check_tenant(actor, target_tenant_id)

        if actor.is_impersonating and capability.is_mutating:
            current_app.logger.warning(
                f"Mutação {capability.value} bloqueada: {actor.actor_id} está em modo de impersonação"
            )
            raise AuthorizationError(
                "Modo de visualização (impersonação) é somente leitura.",
                code='IMPERSONATION_READ_ONLY'
            )

        if not has_capability(actor, capability, **context):
            current_app.logger.warning(
                f"Permissão negada: {actor.actor_id} ({actor.role.value}) sem {capability.value} no tenant {target_tenant_id}"
            )
            raise AuthorizationError("Sem permissão para esta operação.", code='FORBIDDEN')
