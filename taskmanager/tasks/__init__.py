from flask import Blueprint

# Cria o blueprint do módulo de tarefas
tasks_bp = Blueprint('tasks', __name__, url_prefix='/api/tasks')

# Importa as rotas após criar o blueprint para evitar importação circular
from . import routes
