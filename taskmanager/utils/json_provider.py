# taskmanager/utils/json_provider.py
from datetime import date, datetime
from flask.json.provider import JSONProvider
import json
import logging
import enum

logger = logging.getLogger(__name__)


class TaskJSONProvider(JSONProvider):
    """
    JSONProvider que serializa datas em ISO-8601 e Enums pelo valor
    ('Concluído em Atraso', 'pending'), usando json.dumps diretamente.
    """
    def default(self, o):
        if isinstance(o, datetime):
            return o.isoformat()
        elif isinstance(o, date):
            return o.isoformat()
        elif isinstance(o, enum.Enum):
            return o.value
        elif isinstance(o, (set, frozenset)):
            return sorted(o)

        try:
            return json.JSONEncoder.default(self, o)
        except TypeError:
            logger.error(f"Tipo não serializável não tratado pelo default: {type(o).__name__}", exc_info=False)
            return None

    def dumps(self, obj, **kwargs):
        kwargs['default'] = self.default
        kwargs.setdefault('ensure_ascii', False)
        kwargs.setdefault('sort_keys', True)

        try:
            return json.dumps(obj, **kwargs)
        except TypeError as e:
            logger.error(f"Erro final de serialização JSON (TypeError): {e}. Objeto raiz (tipo): {type(obj)}", exc_info=True)
            raise

    def loads(self, s, **kwargs):
        return json.loads(s, **kwargs)

