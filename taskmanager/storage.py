"""
Armazenamento dos bytes das evidências.

O núcleo só guarda metadados e a referência devolvida por `put`; qualquer
objeto com put/open/delete serve (registrado em app.extensions['blob_storage']).
"""

import io
import logging
import os
from pathlib import Path

from flask import current_app
from werkzeug.utils import secure_filename

from .models import new_id

logger = logging.getLogger(__name__)


class BlobStorageError(Exception):
    pass


class LocalBlobStorage:
    """Grava os arquivos em disco, um diretório por tenant."""

    def __init__(self, root):
        self.root = Path(root)

    def _path_for(self, reference):
        path = (self.root / reference).resolve()
        if self.root.resolve() not in path.parents:
            raise BlobStorageError(f"Referência fora do diretório de uploads: {reference}")
        return path

    def put(self, tenant_id, file_name, content):
        safe_name = secure_filename(file_name) or 'arquivo'
        reference = f"{secure_filename(tenant_id) or 'tenant'}/{new_id()}_{safe_name}"
        path = self._path_for(reference)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'wb') as f:
            f.write(content)
        logger.info(f"Evidência gravada em disco: {reference} ({len(content)} bytes)")
        return reference

    def open(self, reference):
        path = self._path_for(reference)
        if not path.exists():
            raise BlobStorageError(f"Arquivo não encontrado: {reference}")
        return open(path, 'rb')

    def delete(self, reference):
        path = self._path_for(reference)
        if path.exists():
            os.remove(path)
            logger.info(f"Evidência removida do disco: {reference}")


class InMemoryBlobStorage:
    """Armazenamento em memória (testes e desenvolvimento)."""

    def __init__(self):
        self.blobs = {}

    def put(self, tenant_id, file_name, content):
        reference = f"mem://{tenant_id}/{new_id()}/{file_name}"
        self.blobs[reference] = bytes(content)
        return reference

    def open(self, reference):
        if reference not in self.blobs:
            raise BlobStorageError(f"Arquivo não encontrado: {reference}")
        return io.BytesIO(self.blobs[reference])

    def delete(self, reference):
        self.blobs.pop(reference, None)


def get_blob_storage():
    return current_app.extensions['blob_storage']
