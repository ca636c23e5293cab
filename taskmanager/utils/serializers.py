"""
Funções de serialização das entidades para as respostas JSON.
"""

from ..models import get_today


def serialize_evidence(evidence):
    if not evidence:
        return None
    return {
        'id': evidence.id,
        'taskId': evidence.task_id,
        'justificationId': evidence.justification_id,
        'fileName': evidence.file_name,
        'mimeType': evidence.mime_type,
        'fileSize': evidence.file_size,
        'uploadedBy': evidence.uploaded_by,
        'uploadedAt': evidence.uploaded_at,
    }


def serialize_justification(justification, include_evidences=True):
    if not justification:
        return None
    data = {
        'id': justification.id,
        'taskId': justification.task_id,
        'description': justification.description,
        'status': justification.status,
        'createdBy': justification.created_by,
        'createdAt': justification.created_at,
        'reviewedBy': justification.reviewed_by,
        'reviewedAt': justification.reviewed_at,
        'reviewComment': justification.review_comment,
    }
    if include_evidences:
        data['evidences'] = [serialize_evidence(e) for e in justification.evidences]
    return data


def serialize_task(task, today=None, include_evidences=False):
    """
    Tarefa com os campos derivados calculados na leitura:
    status, justificationStatus, subtaskCount e parentTaskAtividade.
    """
    if not task:
        return None

    today = today or get_today()
    data = {
        'id': task.id,
        'tenantId': task.tenant_id,
        'competenciaYm': task.competencia_ym,
        'recorrencia': task.recorrencia,
        'tipo': task.tipo,
        'atividade': task.atividade,
        'observacoes': task.observacoes,
        'responsavelEmail': task.responsavel_email,
        'responsavelNome': task.responsavel_nome,
        'area': task.area,
        'prazo': task.prazo,
        'realizado': task.realizado,
        'status': task.current_status(today),
        'justificationStatus': task.justification_status,
        'justificationBlocked': bool(task.justification_blocked),
        'parentTaskId': task.parent_task_id,
        'createdBy': task.created_by,
        'createdAt': task.created_at,
        'updatedBy': task.updated_by,
        'updatedAt': task.updated_at,
        'prazoModifiedBy': task.prazo_modified_by,
        'prazoModifiedAt': task.prazo_modified_at,
        'realizadoPor': task.realizado_por,
    }

    # subtaskCount só aparece em tarefas que possuem subtarefas
    subtask_count = task.subtask_count
    if subtask_count:
        data['subtaskCount'] = subtask_count
    if task.parent_task_id and task.parent is not None:
        data['parentTaskAtividade'] = task.parent.atividade

    if include_evidences:
        data['evidences'] = [serialize_evidence(e) for e in task.evidences]
    return data


def serialize_rule(rule):
    if not rule:
        return None
    return {
        'id': rule.id,
        'tenantId': rule.tenant_id,
        'area': rule.area,
        'allowedRecorrencias': rule.get_allowed_recorrencias(),
        'updatedBy': rule.updated_by,
        'updatedAt': rule.updated_at,
    }
