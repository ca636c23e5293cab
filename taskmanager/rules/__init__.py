from flask import Blueprint

# Cria o blueprint do módulo de regras de recorrência
rules_bp = Blueprint('rules', __name__, url_prefix='/api/rules')

# Importa as rotas após criar o blueprint para evitar importação circular
from . import routes
