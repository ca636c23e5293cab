import base64
import binascii

from flask import jsonify, request, g, send_file
from . import evidences_bp
from .services import EvidenceService
from ..errors import ValidationError
from ..utils.decorators import session_required
from ..utils.serializers import serialize_evidence


def _read_upload():
    """
    Aceita multipart (campo 'file') ou JSON {fileName, mimeType, contentBase64}.
    Retorna (nome, mime, bytes).
    """
    uploaded = request.files.get('file')
    if uploaded is not None:
        return uploaded.filename, uploaded.mimetype, uploaded.read()

    data = request.get_json(silent=True) or {}
    payload = (data.get('contentBase64') or '').strip()
    # Aceita data URL ("data:...;base64,XXXX")
    marker = payload.find('base64,')
    if marker >= 0:
        payload = payload[marker + len('base64,'):]
    try:
        content = base64.b64decode(payload, validate=True) if payload else b''
    except (binascii.Error, ValueError):
        raise ValidationError("Conteúdo do arquivo inválido.", code='INVALID_FILE', field='contentBase64')
    return data.get('fileName'), data.get('mimeType'), content


@evidences_bp.route('/tasks/<task_id>', methods=['GET'])
@session_required
def list_task_evidences(task_id):
    evidences = EvidenceService.list_evidences(g.actor, task_id=task_id)
    return jsonify({'evidences': [serialize_evidence(e) for e in evidences]})


@evidences_bp.route('/tasks/<task_id>', methods=['POST'])
@session_required
def upload_task_evidence(task_id):
    file_name, mime_type, content = _read_upload()
    evidence = EvidenceService.upload_task_evidence(g.actor, task_id, file_name, mime_type, content)
    return jsonify({'evidence': serialize_evidence(evidence)}), 201


@evidences_bp.route('/justifications/<justification_id>', methods=['GET'])
@session_required
def list_justification_evidences(justification_id):
    evidences = EvidenceService.list_evidences(g.actor, justification_id=justification_id)
    return jsonify({'evidences': [serialize_evidence(e) for e in evidences]})


@evidences_bp.route('/justifications/<justification_id>', methods=['POST'])
@session_required
def upload_justification_evidence(justification_id):
    file_name, mime_type, content = _read_upload()
    evidence = EvidenceService.upload_justification_evidence(
        g.actor, justification_id, file_name, mime_type, content
    )
    return jsonify({'evidence': serialize_evidence(evidence)}), 201


@evidences_bp.route('/<evidence_id>/download', methods=['GET'])
@session_required
def download_evidence(evidence_id):
    evidence, stream = EvidenceService.open_evidence(g.actor, evidence_id)
    return send_file(
        stream,
        mimetype=evidence.mime_type,
        as_attachment=True,
        download_name=evidence.file_name
    )


@evidences_bp.route('/<evidence_id>', methods=['DELETE'])
@session_required
def remove_evidence(evidence_id):
    EvidenceService.remove_evidence(g.actor, evidence_id)
    return jsonify({'ok': True})
