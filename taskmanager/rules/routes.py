from flask import jsonify, request, g
from . import rules_bp
from .services import RuleValidator
from ..utils.decorators import session_required
from ..utils.serializers import serialize_rule


@rules_bp.route('', methods=['GET'])
@session_required
def list_rules():
    """ADMIN vê todas as áreas do tenant; demais papéis, a própria área"""
    rules = RuleValidator.list_rules(g.actor)
    return jsonify({'rules': [serialize_rule(r) for r in rules]})


@rules_bp.route('/by-area', methods=['GET'])
@session_required
def get_rule():
    rule = RuleValidator.get_rule(g.actor, request.args.get('area'))
    return jsonify({'rule': serialize_rule(rule)})


@rules_bp.route('', methods=['PUT'])
@session_required
def save_rule():
    """Upsert da regra da área: a lista enviada substitui a anterior"""
    data = request.get_json(silent=True) or {}
    rule = RuleValidator.save(
        g.actor,
        data.get('tenantId') or g.actor.tenant_id,
        data.get('area'),
        data.get('allowedRecorrencias'),
    )
    return jsonify({'rule': serialize_rule(rule)})
