"""
Derivação de status da tarefa.

Funções puras: nenhum acesso a banco, nenhum relógio implícito. O status
nunca é persistido; é recalculado em toda leitura.
"""

from datetime import date
from typing import Iterable, Optional

from ..models import TaskStatus, JustificationStatus

COMPLETED_STATUSES = (TaskStatus.DONE, TaskStatus.DONE_LATE)


def _as_status(value) -> TaskStatus:
    return value if isinstance(value, TaskStatus) else TaskStatus(value)


def all_completed(subtask_statuses: Iterable) -> bool:
    return all(_as_status(s) in COMPLETED_STATUSES for s in subtask_statuses)


def derive_status(prazo: date, realizado: Optional[date], today: date,
                  subtask_count: int = 0, subtask_statuses: Iterable = ()) -> TaskStatus:
    """
    Status observável de uma tarefa, em ordem de prioridade:

    1. Subtarefas pendentes -> Aguardando subtarefas (independe das datas)
    2. Realizado <= prazo -> Concluído; realizado > prazo -> Concluído em Atraso
    3. Sem realizado: hoje > prazo -> Em Atraso; senão Em Andamento
    """
    if subtask_count > 0 and not all_completed(subtask_statuses):
        return TaskStatus.AWAITING_SUBTASKS

    if realizado is not None:
        return TaskStatus.DONE if realizado <= prazo else TaskStatus.DONE_LATE

    return TaskStatus.OVERDUE if today > prazo else TaskStatus.IN_PROGRESS


def get_task_status(task, subtask_statuses: Iterable, today: date) -> TaskStatus:
    """Versão sobre o objeto Task (ou qualquer objeto com prazo/realizado)."""
    subtask_statuses = list(subtask_statuses)
    subtask_count = getattr(task, 'subtask_count', None)
    if subtask_count is None:
        subtask_count = len(subtask_statuses)
    return derive_status(task.prazo, task.realizado, today, subtask_count, subtask_statuses)


def is_late_completion(prazo: date, realizado: Optional[date]) -> bool:
    return realizado is not None and realizado > prazo


def derive_justification_status(blocked: bool, latest_status: Optional[str]) -> JustificationStatus:
    """Bloqueio administrativo prevalece; senão vale a justificativa mais recente."""
    if blocked:
        return JustificationStatus.BLOCKED
    if not latest_status:
        return JustificationStatus.NONE
    return JustificationStatus(latest_status)
