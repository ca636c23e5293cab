"""
Sessão do ator já autenticado.

A autenticação acontece antes do núcleo (gateway/camada de login); aqui só
lemos a identidade entregue nos cabeçalhos configurados.
"""

import enum
from dataclasses import dataclass
from typing import Optional

from flask import current_app

from ..errors import AuthorizationError


class Role(enum.Enum):
    USER = 'USER'
    LEADER = 'LEADER'
    ADMIN = 'ADMIN'


TRUE_VALUES = ('1', 'true', 'yes', 'on')


@dataclass(frozen=True)
class ActorSession:
    actor_id: str
    tenant_id: str
    role: Role
    area: str = ''
    nome: str = ''
    is_impersonating: bool = False

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    @property
    def is_leader(self) -> bool:
        return self.role is Role.LEADER

    def same_actor(self, email: Optional[str]) -> bool:
        return bool(email) and email.strip().lower() == self.actor_id.strip().lower()

    @classmethod
    def from_request(cls, request) -> 'ActorSession':
        """Monta a sessão a partir dos cabeçalhos definidos em SESSION_HEADER_*."""
        config = current_app.config
        headers = request.headers

        actor_id = (headers.get(config['SESSION_HEADER_ACTOR']) or '').strip()
        tenant_id = (headers.get(config['SESSION_HEADER_TENANT']) or '').strip()
        if not actor_id or not tenant_id:
            raise AuthorizationError("Não autenticado.", code='UNAUTHENTICATED')

        raw_role = (headers.get(config['SESSION_HEADER_ROLE']) or Role.USER.value).strip().upper()
        try:
            role = Role(raw_role)
        except ValueError:
            current_app.logger.warning(f"Papel desconhecido na sessão de {actor_id}: {raw_role!r}")
            raise AuthorizationError("Papel de acesso inválido.", code='FORBIDDEN')

        impersonating = (headers.get(config['SESSION_HEADER_IMPERSONATING']) or '').strip().lower() in TRUE_VALUES

        return cls(
            actor_id=actor_id.lower(),
            tenant_id=tenant_id,
            role=role,
            area=(headers.get(config['SESSION_HEADER_AREA']) or '').strip(),
            nome=(headers.get(config['SESSION_HEADER_NAME']) or '').strip(),
            is_impersonating=impersonating,
        )
