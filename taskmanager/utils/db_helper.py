"""
Helper para operações robustas de banco de dados.
Trata o "database is locked" do SQLite quando vários workers gravam ao mesmo tempo.
"""

import time
import logging
from functools import wraps
from sqlalchemy.exc import OperationalError
from .. import db

logger = logging.getLogger(__name__)


class DatabaseLockError(Exception):
    """Exceção customizada para problemas de lock do banco"""
    pass


def with_db_retry(max_retries=3, delay=0.1, backoff=2.0):
    """
    Decorator para retry automático em operações de banco de dados.

    Somente "database is locked" é repetido; qualquer outra exceção
    (inclusive IntegrityError de unicidade) sobe imediatamente.

    Args:
        max_retries (int): Número máximo de tentativas
        delay (float): Delay inicial entre tentativas (segundos)
        backoff (float): Multiplicador do delay a cada tentativa
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            current_delay = delay

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)

                except OperationalError as e:
                    if "database is locked" not in str(e).lower():
                        raise

                    if attempt >= max_retries:
                        logger.error(
                            f"Database locked após {max_retries + 1} tentativas. "
                            f"Falha definitiva na operação."
                        )
                        raise DatabaseLockError(
                            f"Banco de dados bloqueado após {max_retries + 1} tentativas"
                        ) from e

                    logger.warning(
                        f"Database locked (tentativa {attempt + 1}/{max_retries + 1}). "
                        f"Aguardando {current_delay:.2f}s antes da próxima tentativa..."
                    )

                    # Força rollback para limpar estado da transação (erro pode ter vindo de um flush)
                    try:
                        db.session.rollback()
                    except Exception as rollback_error:
                        logger.debug(f"Erro no rollback: {rollback_error}")

                    time.sleep(current_delay)
                    current_delay *= backoff

        return wrapper
    return decorator


def rollback_on_error(func):
    """
    Decorator para métodos de serviço que escrevem na sessão.

    Se a operação falhar (guarda, validação, conflito ou erro de banco), as
    alterações pendentes são descartadas antes de a exceção subir, para que
    o próximo commit da mesma sessão não grave uma edição recusada.

    Uso (por dentro de @with_db_retry):
        @classmethod
        @with_db_retry()
        @rollback_on_error
        def update_task(cls, actor, task_id, patch): ...
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except Exception:
            db.session.rollback()
            raise

    return wrapper


def safe_commit():
    """
    Commit com rollback garantido em caso de falha.

    Não repete sozinho: após o rollback as alterações pendentes se perdem,
    então o retry precisa envolver a operação inteira (use @with_db_retry
    no método de serviço, que relê o estado e refaz a escrita).

    Uso:
        from taskmanager.utils.db_helper import safe_commit

        db.session.add(novo_objeto)
        safe_commit()
    """
    try:
        db.session.commit()
        logger.debug("Commit realizado com sucesso")
    except Exception as e:
        logger.error(f"Erro no commit: {e}")
        db.session.rollback()
        raise


def check_database_health():
    """
    Verifica a saúde do banco de dados.

    Returns:
        dict: Status da verificação
    """
    try:
        db.session.execute(db.text("SELECT 1")).fetchone()
        return {
            'status': 'healthy',
            'message': 'Banco de dados respondendo normalmente'
        }

    except OperationalError as e:
        if "database is locked" in str(e).lower():
            return {
                'status': 'locked',
                'message': 'Banco de dados está bloqueado',
                'error': str(e)
            }
        return {
            'status': 'error',
            'message': 'Erro operacional no banco de dados',
            'error': str(e)
        }
