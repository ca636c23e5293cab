# -*- coding: utf-8 -*-
# taskmanager/__init__.py

from flask import Flask
import logging
import os
from pathlib import Path
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from sqlalchemy import event
from sqlalchemy.engine import Engine

# Configuração para SQLite em ambientes concorrentes (um worker por requisição)
@event.listens_for(Engine, "connect")
def set_sqlite_pragma(dbapi_connection, connection_record):
    """
    Configura SQLite para concorrência entre workers.
    Ignorado silenciosamente em outros bancos (o cursor não entende PRAGMA).
    """
    if dbapi_connection.__class__.__module__.split('.')[0] not in ('sqlite3', 'pysqlite2'):
        return
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA encoding='UTF-8'")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()

from .utils.json_provider import TaskJSONProvider

BASE_DIR = Path(__file__).parent.parent
INSTANCE_FOLDER_PATH = BASE_DIR / 'instance'

# Extensões fora da factory para serem importáveis nos módulos
db = SQLAlchemy()
migrate = Migrate()

DEFAULT_ALLOWED_MIME_TYPES = (
    'application/pdf', 'application/octet-stream',
    'image/jpeg', 'image/png', 'image/gif', 'image/webp',
    'text/plain', 'text/csv',
    'application/msword',
    'application/vnd.openxmlformats-officedocument.wordprocessingml.document',
    'application/vnd.ms-excel',
    'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
)


def _env_flag(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def register_blueprints(app):
    """Registra todos os blueprints da aplicação."""
    app.logger.info("Registrando blueprints...")

    from .tasks import tasks_bp
    app.register_blueprint(tasks_bp)
    app.logger.info("✅ Blueprint 'tasks' registrado")

    from .justifications import justifications_bp
    app.register_blueprint(justifications_bp)
    app.logger.info("✅ Blueprint 'justifications' registrado")

    from .rules import rules_bp
    app.register_blueprint(rules_bp)
    app.logger.info("✅ Blueprint 'rules' registrado")

    from .evidences import evidences_bp
    app.register_blueprint(evidences_bp)
    app.logger.info("✅ Blueprint 'evidences' registrado")


def configure_logging(app):
    """Configura handlers de arquivo e console no logger da aplicação."""
    log_level = getattr(logging, str(app.config['LOG_LEVEL']).upper(), logging.DEBUG)
    log_format = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s [in %(pathname)s:%(lineno)d]'
    )

    # Evita handlers duplicados quando a factory é chamada várias vezes (testes)
    app.logger.handlers.clear()

    if app.config['LOG_TO_FILE']:
        log_dir = Path(app.config['LOG_DIR'])
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / 'app.log'
        # FileHandler simples para evitar problemas de rotação no Windows
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setFormatter(log_format)
        file_handler.setLevel(log_level)
        app.logger.addHandler(file_handler)
        app.logger.info(f"Logs sendo escritos em: {log_file}")

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(log_format)
    stream_handler.setLevel(log_level)
    app.logger.addHandler(stream_handler)
    app.logger.setLevel(log_level)


def create_app(test_config=None):
    """Cria e configura a instância da aplicação Flask."""
    INSTANCE_FOLDER_PATH.mkdir(parents=True, exist_ok=True)

    app = Flask(__name__, instance_path=str(INSTANCE_FOLDER_PATH))

    # --- Configurações da Aplicação ---
    db_path = INSTANCE_FOLDER_PATH / 'taskmanager.db'
    app.config.from_mapping(
        SECRET_KEY=os.environ.get('SECRET_KEY', 'dev_secret_key'),
        SQLALCHEMY_DATABASE_URI=os.environ.get('DATABASE_URL', f'sqlite:///{db_path.as_posix()}'),
        SQLALCHEMY_TRACK_MODIFICATIONS=False,
        APP_TIMEZONE=os.environ.get('APP_TIMEZONE', 'America/Sao_Paulo'),
        UPLOAD_FOLDER=os.environ.get('UPLOAD_FOLDER', str(INSTANCE_FOLDER_PATH / 'uploads')),
        MAX_EVIDENCE_SIZE=int(os.environ.get('MAX_EVIDENCE_SIZE', 10 * 1024 * 1024)),
        ALLOWED_EVIDENCE_MIME_TYPES=DEFAULT_ALLOWED_MIME_TYPES,
        MAX_ATIVIDADE_LENGTH=200,
        MAX_OBSERVACOES_LENGTH=1000,
        MAX_JUSTIFICATION_LENGTH=2000,
        MAX_REVIEW_COMMENT_LENGTH=2000,
        SESSION_HEADER_ACTOR='X-Actor-Id',
        SESSION_HEADER_TENANT='X-Tenant-Id',
        SESSION_HEADER_ROLE='X-Actor-Role',
        SESSION_HEADER_AREA='X-Actor-Area',
        SESSION_HEADER_NAME='X-Actor-Name',
        SESSION_HEADER_IMPERSONATING='X-Impersonating',
        NOTIFICATION_WEBHOOK_URL=os.environ.get('NOTIFICATION_WEBHOOK_URL'),
        NOTIFICATION_TIMEOUT=float(os.environ.get('NOTIFICATION_TIMEOUT', 5)),
        LOG_LEVEL=os.environ.get('LOG_LEVEL', 'DEBUG'),
        LOG_DIR=os.environ.get('LOG_DIR', str(BASE_DIR / 'logs')),
        LOG_TO_FILE=_env_flag('LOG_TO_FILE', True),
    )
    if test_config:
        app.config.from_mapping(test_config)

    app.json = TaskJSONProvider(app)

    # --- Inicialização das Extensões ---
    db.init_app(app)
    migrate.init_app(app, db)

    # Importa os modelos para que o Flask-Migrate os reconheça
    from . import models

    from . import commands
    commands.register_commands(app)

    configure_logging(app)
    app.logger.info("Aplicação Flask criada e logging configurado.")
    app.logger.info(f"Usando banco de dados em: {app.config['SQLALCHEMY_DATABASE_URI']}")

    from .storage import LocalBlobStorage
    app.extensions['blob_storage'] = LocalBlobStorage(app.config['UPLOAD_FOLDER'])

    from .notifications import NotificationService
    app.extensions['notifications'] = NotificationService(
        webhook_url=app.config['NOTIFICATION_WEBHOOK_URL'],
        timeout=app.config['NOTIFICATION_TIMEOUT'],
    )

    from .errors import register_error_handlers
    register_error_handlers(app)

    register_blueprints(app)

    @app.route('/health')
    def health():
        from .utils.db_helper import check_database_health
        return check_database_health()

    return app
