from flask import Blueprint

# Cria o blueprint do fluxo de justificativas
justifications_bp = Blueprint('justifications', __name__, url_prefix='/api/justifications')

# Importa as rotas após criar o blueprint para evitar importação circular
from . import routes
