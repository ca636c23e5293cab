from flask import jsonify, request, g
from . import tasks_bp
from .services import TaskService
from ..justifications.services import JustificationWorkflow
from ..models import get_today
from ..utils.decorators import session_required
from ..utils.serializers import serialize_task, serialize_justification

# Erros de domínio sobem para os handlers registrados em errors.py

LIST_FILTERS = ('area', 'responsavel', 'status', 'competenciaYm', 'search')


@tasks_bp.route('', methods=['GET'])
@session_required
def list_tasks():
    """Lista tarefas visíveis ao ator, com filtros opcionais na query string"""
    filters = {key: request.args.get(key) for key in LIST_FILTERS if request.args.get(key)}
    today = get_today()
    tasks = TaskService.list_tasks(g.actor, filters, today=today)
    return jsonify({'tasks': [serialize_task(t, today) for t in tasks]})


@tasks_bp.route('', methods=['POST'])
@session_required
def create_task():
    data = request.get_json(silent=True) or {}
    task = TaskService.create_task(g.actor, data)
    return jsonify({'task': serialize_task(task, include_evidences=True)}), 201


@tasks_bp.route('/<task_id>', methods=['GET'])
@session_required
def get_task(task_id):
    task = TaskService.get_task(g.actor, task_id)
    return jsonify({'task': serialize_task(task, include_evidences=True)})


@tasks_bp.route('/<task_id>', methods=['PUT', 'PATCH'])
@session_required
def update_task(task_id):
    """Atualização parcial: apenas os campos enviados são considerados"""
    patch = request.get_json(silent=True) or {}
    task = TaskService.update_task(g.actor, task_id, patch)
    return jsonify({'task': serialize_task(task, include_evidences=True)})


@tasks_bp.route('/<task_id>/complete', methods=['POST'])
@session_required
def complete_task(task_id):
    data = request.get_json(silent=True) or {}
    task = TaskService.complete_task(
        g.actor, task_id, data.get('realizado'),
        justification_description=data.get('justificationDescription')
    )
    return jsonify({'task': serialize_task(task, include_evidences=True)})


@tasks_bp.route('/<task_id>/subtasks', methods=['GET'])
@session_required
def list_subtasks(task_id):
    today = get_today()
    subtasks = TaskService.list_subtasks(g.actor, task_id)
    return jsonify({'tasks': [serialize_task(t, today, include_evidences=True) for t in subtasks]})


@tasks_bp.route('/<task_id>/duplicate', methods=['POST'])
@session_required
def duplicate_task(task_id):
    task = TaskService.duplicate_task(g.actor, task_id)
    return jsonify({'task': serialize_task(task)}), 201


@tasks_bp.route('/<task_id>/justifications', methods=['GET'])
@session_required
def list_task_justifications(task_id):
    """Histórico de justificativas da tarefa (mais recente primeiro)"""
    items = JustificationWorkflow.list_task_justifications(g.actor, task_id)
    return jsonify({'justifications': [serialize_justification(j) for j in items]})
