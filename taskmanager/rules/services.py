"""
Regras de recorrência por (tenant, área).

A validação falha fechado: área sem regra não aceita nenhuma recorrência.
Administradores ignoram a regra.
"""

from typing import List, Optional

from flask import current_app

from .. import db
from ..errors import ValidationError, NotFoundError
from ..models import Rule, get_brasilia_now
from ..utils.db_helper import rollback_on_error, safe_commit, with_db_retry
from ..utils.scope_guard import Capability, TenantScopeGuard
from ..utils.session import ActorSession, Role


def normalize_recorrencias(values) -> List[str]:
    """Remove vazios e duplicados preservando a ordem informada."""
    if not isinstance(values, (list, tuple, set, frozenset)):
        raise ValidationError("allowedRecorrencias deve ser uma lista.", field='allowedRecorrencias')
    result = []
    for value in values:
        if not isinstance(value, str):
            raise ValidationError("Recorrências devem ser textos.", field='allowedRecorrencias')
        label = value.strip()
        if label and label not in result:
            result.append(label)
    return result


class RuleValidator:

    @staticmethod
    def validate(tenant_id: str, area: str, recorrencia: str, actor_role: Role) -> None:
        """Levanta ValidationError se a recorrência não for permitida para a área."""
        if actor_role is Role.ADMIN:
            return

        rule = Rule.get_for_area(tenant_id, area)
        if rule is None:
            current_app.logger.info(f"Área '{area}' do tenant {tenant_id} sem regra: recorrência '{recorrencia}' recusada")
            raise ValidationError(
                f"A área '{area}' não possui recorrências permitidas configuradas.",
                code='NO_RULE', field='recorrencia'
            )

        if recorrencia not in rule.get_allowed_recorrencias():
            raise ValidationError(
                f"Recorrência '{recorrencia}' não permitida para a área '{area}'.",
                code='RECORRENCIA_NOT_ALLOWED', field='recorrencia'
            )

    @classmethod
    @with_db_retry()
    @rollback_on_error
    def save(cls, actor: ActorSession, tenant_id: str, area: str, allowed_recorrencias) -> Rule:
        """Upsert da regra: o conjunto informado substitui o anterior por completo."""
        area = (area or '').strip() if isinstance(area, str) else ''
        TenantScopeGuard.authorize(actor, tenant_id, Capability.SAVE_RULE, area=area)
        if not area:
            raise ValidationError("Área é obrigatória.", code='MISSING_FIELD', field='area')

        values = normalize_recorrencias(allowed_recorrencias)

        rule = Rule.get_for_area(tenant_id, area)
        if rule is None:
            rule = Rule(tenant_id=tenant_id, area=area)
            db.session.add(rule)

        rule.set_allowed_recorrencias(values)
        rule.updated_by = actor.actor_id
        rule.updated_at = get_brasilia_now()
        safe_commit()

        current_app.logger.info(f"Regra salva: tenant={tenant_id} area='{area}' recorrencias={values} por {actor.actor_id}")
        return rule

    @staticmethod
    def list_rules(actor: ActorSession) -> List[Rule]:
        query = Rule.query.filter_by(tenant_id=actor.tenant_id)
        if actor.role is not Role.ADMIN:
            query = query.filter_by(area=actor.area)
        return query.order_by(Rule.area.asc()).all()

    @staticmethod
    def get_rule(actor: ActorSession, area: Optional[str]) -> Rule:
        area = (area or '').strip()
        if not area:
            raise ValidationError("Área é obrigatória.", code='MISSING_FIELD', field='area')
        TenantScopeGuard.authorize(actor, actor.tenant_id, Capability.READ_RULE, area=area)

        rule = Rule.get_for_area(actor.tenant_id, area)
        if rule is None:
            raise NotFoundError(f"Nenhuma regra para a área '{area}'.")
        return rule
