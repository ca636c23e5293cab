"""
Taxonomia de erros do núcleo de tarefas e tradução para respostas JSON.

Os serviços levantam estas exceções; a camada HTTP apenas as converte em
{'error', 'code', 'field'} com o status correspondente.
"""

from flask import jsonify, current_app
from werkzeug.exceptions import HTTPException


class TaskManagerError(Exception):
    """Erro base com código legível por máquina."""

    http_status = 400
    default_code = 'ERROR'

    def __init__(self, message, code=None, field=None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.field = field

    def to_dict(self):
        return {'error': self.message, 'code': self.code, 'field': self.field}


class ValidationError(TaskManagerError):
    http_status = 400
    default_code = 'VALIDATION'


class AuthorizationError(TaskManagerError):
    http_status = 403
    default_code = 'FORBIDDEN'

    def __init__(self, message, code=None, field=None):
        super().__init__(message, code, field)
        if self.code == 'UNAUTHENTICATED':
            self.http_status = 401


Forbidden = AuthorizationError


class ConflictError(TaskManagerError):
    http_status = 409
    default_code = 'CONFLICT'


class InvalidTransitionError(ConflictError):
    default_code = 'INVALID_TRANSITION'


class StateError(TaskManagerError):
    http_status = 409
    default_code = 'INVALID_STATE'


class SubtaskBlockedError(StateError):
    default_code = 'SUBTASKS_PENDING'


class NotFoundError(TaskManagerError):
    http_status = 404
    default_code = 'NOT_FOUND'


def register_error_handlers(app):
    """Registra a tradução das exceções do domínio em JSON."""

    @app.errorhandler(TaskManagerError)
    def handle_domain_error(e):
        from . import db
        db.session.rollback()
        if isinstance(e, (AuthorizationError, ConflictError, StateError)):
            current_app.logger.warning(f"[{e.code}] {e.message}")
        else:
            current_app.logger.info(f"[{e.code}] {e.message}")
        return jsonify(e.to_dict()), e.http_status

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({'error': e.description, 'code': e.name.upper().replace(' ', '_'), 'field': None}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        from . import db
        db.session.rollback()
        current_app.logger.error(f"Erro inesperado: {e}", exc_info=True)
        return jsonify({'error': 'Erro interno.', 'code': 'INTERNAL', 'field': None}), 500
