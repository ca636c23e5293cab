from functools import wraps
from flask import g, request, current_app
from .session import ActorSession


def session_required(f):
    """
    Decorador que resolve a sessão do ator a partir dos cabeçalhos e a
    disponibiliza em `g.actor`.

    Usage:
        @tasks_bp.route('/api/tasks')
        @session_required
        def list_tasks():
            return jsonify(TaskService.list_tasks(g.actor))
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        # AuthorizationError (401/403) é traduzida pelos error handlers
        g.actor = ActorSession.from_request(request)
        current_app.logger.debug(
            f"Sessão: {g.actor.actor_id} [{g.actor.role.value}] tenant={g.actor.tenant_id}"
            f"{' (impersonação)' if g.actor.is_impersonating else ''}"
        )
        return f(*args, **kwargs)

    return decorated_function
