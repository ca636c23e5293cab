"""
Carimbos de auditoria nas tarefas.

Guarda apenas o último autor por campo rastreado (sobrescreve, não acumula).
"""

from ..models import get_brasilia_now


class AuditRecorder:

    @staticmethod
    def stamp_created(task, actor_id, now=None):
        now = now or get_brasilia_now()
        # created_* só é definido uma vez
        if not task.created_by:
            task.created_by = actor_id
            task.created_at = now
        task.updated_by = actor_id
        task.updated_at = now

    @staticmethod
    def stamp_updated(task, actor_id, now=None):
        task.updated_by = actor_id
        task.updated_at = now or get_brasilia_now()

    @classmethod
    def record_prazo_change(cls, task, new_prazo, actor_id, now=None):
        """Aplica o novo prazo e carimba o autor. Retorna True se houve mudança."""
        if new_prazo == task.prazo:
            return False
        now = now or get_brasilia_now()
        task.prazo = new_prazo
        task.prazo_modified_by = actor_id
        task.prazo_modified_at = now
        cls.stamp_updated(task, actor_id, now)
        return True

    @classmethod
    def record_realizado_change(cls, task, new_realizado, actor_id, now=None):
        """Define/limpa o realizado; realizado_por acompanha quem definiu a data."""
        if new_realizado == task.realizado:
            return False
        task.realizado = new_realizado
        task.realizado_por = actor_id if new_realizado is not None else None
        cls.stamp_updated(task, actor_id, now)
        return True
