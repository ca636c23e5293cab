from flask import Blueprint

# Cria o blueprint de evidências (anexos de tarefas e justificativas)
evidences_bp = Blueprint('evidences', __name__, url_prefix='/api/evidences')

# Importa as rotas após criar o blueprint para evitar importação circular
from . import routes
