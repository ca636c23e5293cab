from flask import jsonify, request, g
from . import justifications_bp
from .services import JustificationWorkflow
from ..models import get_today
from ..utils.decorators import session_required
from ..utils.serializers import serialize_justification, serialize_task


def _with_task(justification):
    data = serialize_justification(justification)
    task = justification.task
    data['task'] = {
        'id': task.id,
        'atividade': task.atividade,
        'responsavelEmail': task.responsavel_email,
        'responsavelNome': task.responsavel_nome,
        'area': task.area,
        'prazo': task.prazo,
        'realizado': task.realizado,
    }
    return data


@justifications_bp.route('/mine', methods=['GET'])
@session_required
def my_late_tasks():
    """Tarefas do ator concluídas em atraso, com a justificativa mais recente"""
    today = get_today()
    rows = JustificationWorkflow.list_my_late_tasks(g.actor, request.args.get('competenciaYm'))
    items = []
    for task, latest in rows:
        items.append({
            'task': serialize_task(task, today),
            'justificationStatus': task.justification_status,
            'justification': serialize_justification(latest),
        })
    return jsonify({'items': items})


@justifications_bp.route('', methods=['GET'])
@session_required
def list_justifications():
    """Visão do revisor; ?status=pending|approved|refused|blocked (padrão pending)"""
    items = JustificationWorkflow.list_justifications(g.actor, request.args.get('status'))
    return jsonify({'items': [_with_task(j) for j in items]})


@justifications_bp.route('', methods=['POST'])
@session_required
def submit_justification():
    data = request.get_json(silent=True) or {}
    justification = JustificationWorkflow.submit(
        g.actor, data.get('taskId'), data.get('description'),
        evidence_refs=data.get('evidenceRefs')
    )
    return jsonify({'justification': serialize_justification(justification)}), 201


@justifications_bp.route('/<justification_id>', methods=['GET'])
@session_required
def get_justification(justification_id):
    justification = JustificationWorkflow.get_justification(g.actor, justification_id)
    return jsonify({'justification': _with_task(justification)})


@justifications_bp.route('/<justification_id>/review', methods=['PUT', 'POST'])
@session_required
def review_justification(justification_id):
    """Decisão: approve, refuse (exige reviewComment) ou block"""
    data = request.get_json(silent=True) or {}
    justification = JustificationWorkflow.review(
        g.actor, justification_id,
        data.get('decision') or data.get('action'),
        data.get('reviewComment')
    )
    return jsonify({'justification': serialize_justification(justification)})
