"""
Metadados de evidências (anexos) de tarefas e justificativas.

Os bytes vão primeiro para o armazenamento externo; a linha de metadados só
é gravada depois que ele devolve a referência.
"""

from typing import List, Optional, Tuple

from flask import current_app

from .. import db
from ..errors import ValidationError, ConflictError, StateError, NotFoundError
from ..models import Task, Justification, Evidence, JustificationStatus, get_brasilia_now
from ..storage import get_blob_storage, BlobStorageError
from ..utils.db_helper import safe_commit
from ..utils.scope_guard import Capability, TenantScopeGuard
from ..utils.session import ActorSession


def normalize_mime_type(mime_type) -> str:
    value = (mime_type or 'application/octet-stream')
    return str(value).lower().split(';')[0].strip()


class EvidenceService:

    @staticmethod
    def validate_file(file_name, mime_type, size) -> Tuple[str, str]:
        """Valida nome, tipo e tamanho. Retorna (nome, mime normalizado)."""
        name = (file_name or '').strip() if isinstance(file_name, str) else ''
        if not name:
            raise ValidationError("Nome do arquivo é obrigatório.", code='MISSING_FIELD', field='fileName')

        mime = normalize_mime_type(mime_type)
        if mime not in current_app.config['ALLOWED_EVIDENCE_MIME_TYPES']:
            raise ValidationError("Tipo de arquivo não permitido.", code='INVALID_MIME', field='mimeType')

        if not size or size <= 0:
            raise ValidationError("Arquivo inválido.", code='INVALID_FILE', field='content')
        max_size = current_app.config['MAX_EVIDENCE_SIZE']
        if size > max_size:
            raise ValidationError(
                f"Arquivo excede {max_size // (1024 * 1024)}MB.",
                code='FILE_TOO_LARGE', field='content'
            )
        return name, mime

    @staticmethod
    def _ensure_task_open(task):
        if task.realizado is not None:
            raise ConflictError(
                "Não é possível alterar evidências de atividade já concluída.",
                code='TASK_CONCLUDED'
            )

    @staticmethod
    def _ensure_justification_pending(justification):
        if justification.status != JustificationStatus.PENDING.value:
            raise StateError(
                "Só é possível alterar evidências de justificativa pendente.",
                code='JUSTIFICATION_NOT_PENDING'
            )

    @staticmethod
    def _get_task(actor, task_id):
        task = Task.get_for_tenant(actor.tenant_id, task_id)
        if task is None:
            raise NotFoundError("Tarefa não encontrada.")
        return task

    @staticmethod
    def _get_justification(actor, justification_id):
        justification = Justification.get_for_tenant(actor.tenant_id, justification_id)
        if justification is None:
            raise NotFoundError("Justificativa não encontrada.")
        return justification

    @classmethod
    def _store(cls, actor, file_name, mime_type, content, task=None, justification=None) -> Evidence:
        content = content or b''
        name, mime = cls.validate_file(file_name, mime_type, len(content))

        # Bytes primeiro; metadados somente com a referência confirmada
        reference = get_blob_storage().put(actor.tenant_id, name, content)

        evidence = Evidence(
            tenant_id=actor.tenant_id,
            task_id=task.id if task is not None else None,
            justification_id=justification.id if justification is not None else None,
            file_name=name,
            mime_type=mime,
            file_size=len(content),
            storage_ref=reference,
            uploaded_by=actor.actor_id,
            uploaded_at=get_brasilia_now(),
        )
        db.session.add(evidence)
        try:
            safe_commit()
        except Exception:
            # Metadados não gravados: descarta o arquivo órfão e propaga
            get_blob_storage().delete(reference)
            raise
        return evidence

    @classmethod
    def upload_task_evidence(cls, actor: ActorSession, task_id, file_name, mime_type, content) -> Evidence:
        task = cls._get_task(actor, task_id)
        TenantScopeGuard.authorize(actor, task.tenant_id, Capability.MANAGE_EVIDENCE, task=task)
        cls._ensure_task_open(task)

        evidence = cls._store(actor, file_name, mime_type, content, task=task)
        current_app.logger.info(
            f"Evidência {evidence.id} ({evidence.file_name}, {evidence.file_size} bytes) anexada à tarefa {task.id} "
            f"por {actor.actor_id}"
        )
        return evidence

    @classmethod
    def upload_justification_evidence(cls, actor: ActorSession, justification_id, file_name,
                                      mime_type, content) -> Evidence:
        justification = cls._get_justification(actor, justification_id)
        TenantScopeGuard.authorize(actor, justification.tenant_id, Capability.MANAGE_EVIDENCE,
                                   justification=justification)
        cls._ensure_justification_pending(justification)

        evidence = cls._store(actor, file_name, mime_type, content, justification=justification)
        current_app.logger.info(
            f"Evidência {evidence.id} anexada à justificativa {justification.id} por {actor.actor_id}"
        )
        return evidence

    @classmethod
    def record_refs(cls, actor: ActorSession, justification, refs) -> List[Evidence]:
        """
        Registra referências já gravadas pelo chamador no armazenamento externo.
        Cada item: {reference, fileName, mimeType, fileSize}. Não faz commit.
        """
        if not isinstance(refs, (list, tuple)):
            raise ValidationError("evidenceRefs deve ser uma lista.", field='evidenceRefs')

        evidences = []
        for ref in refs:
            if not isinstance(ref, dict) or not ref.get('reference'):
                raise ValidationError("Referência de evidência inválida.", code='INVALID_FILE', field='evidenceRefs')
            try:
                size = int(ref.get('fileSize') or 0)
            except (TypeError, ValueError):
                raise ValidationError("Tamanho de arquivo inválido.", code='INVALID_FILE', field='evidenceRefs')
            name, mime = cls.validate_file(ref.get('fileName'), ref.get('mimeType'), size)

            evidence = Evidence(
                tenant_id=actor.tenant_id,
                justification_id=justification.id,
                file_name=name,
                mime_type=mime,
                file_size=size,
                storage_ref=str(ref['reference']),
                uploaded_by=actor.actor_id,
                uploaded_at=get_brasilia_now(),
            )
            db.session.add(evidence)
            evidences.append(evidence)
        return evidences

    @classmethod
    def list_evidences(cls, actor: ActorSession, task_id=None, justification_id=None) -> List[Evidence]:
        if justification_id:
            justification = cls._get_justification(actor, justification_id)
            TenantScopeGuard.authorize(actor, justification.tenant_id, Capability.READ_TASK,
                                       task=justification.task)
            return justification.evidences.all()

        task = cls._get_task(actor, task_id)
        TenantScopeGuard.authorize(actor, task.tenant_id, Capability.READ_TASK, task=task)
        return task.evidences.all()

    @staticmethod
    def get_evidence(actor: ActorSession, evidence_id) -> Evidence:
        evidence = Evidence.get_for_tenant(actor.tenant_id, evidence_id)
        if evidence is None:
            raise NotFoundError("Evidência não encontrada.")
        return evidence

    @classmethod
    def open_evidence(cls, actor: ActorSession, evidence_id):
        """Leitura autorizada: devolve (evidence, stream binário)."""
        evidence = cls.get_evidence(actor, evidence_id)
        TenantScopeGuard.authorize(actor, evidence.tenant_id, Capability.READ_TASK, task=evidence.owner_task)
        try:
            stream = get_blob_storage().open(evidence.storage_ref)
        except BlobStorageError as e:
            current_app.logger.error(f"Arquivo da evidência {evidence.id} indisponível: {e}")
            raise NotFoundError("Arquivo não encontrado.", code='FILE_NOT_FOUND')
        return evidence, stream

    @classmethod
    def remove_evidence(cls, actor: ActorSession, evidence_id) -> Optional[str]:
        evidence = cls.get_evidence(actor, evidence_id)
        if evidence.justification_id:
            justification = evidence.justification
            TenantScopeGuard.authorize(actor, evidence.tenant_id, Capability.MANAGE_EVIDENCE,
                                       justification=justification)
            cls._ensure_justification_pending(justification)
        else:
            task = evidence.task
            TenantScopeGuard.authorize(actor, evidence.tenant_id, Capability.MANAGE_EVIDENCE, task=task)
            cls._ensure_task_open(task)

        reference = evidence.storage_ref
        db.session.delete(evidence)
        safe_commit()
        get_blob_storage().delete(reference)

        current_app.logger.info(f"Evidência {evidence_id} removida por {actor.actor_id}")
        return reference
