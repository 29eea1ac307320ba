# failure_analytics/api.py
import logging
from dataclasses import is_dataclass, asdict

from flask import Blueprint, jsonify, request, current_app, g
from pydantic import BaseModel

from .config_manager import get_config, set_config
from .errors import FailureAnalyticsError, ValidationError
from .monitoring import ORGANIZATION_HEADER
from .validators import validate_configuration

logger = logging.getLogger(__name__)

api_blueprint = Blueprint('api', __name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _services():
    return current_app.extensions['failure_analytics']


def _organization_id() -> str:
    organization_id = getattr(g, 'organization_id', None)
    if organization_id is None:
        organization_id = request.headers.get(ORGANIZATION_HEADER, '').strip()
    return organization_id


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None or not isinstance(data, dict):
        raise ValidationError("Invalid JSON body")
    return data


def _bool_arg(name: str):
    value = request.args.get(name)
    if value is None or value == '':
        return None
    return value.lower() in ('1', 'true', 'yes')


def _serialize(value):
    if isinstance(value, BaseModel):
        return value.model_dump(mode='json')
    if is_dataclass(value):
        return asdict(value)
    if isinstance(value, list):
        return [_serialize(v) for v in value]
    return value


def _not_found(entity: str, entity_id: str):
    return jsonify({'error': {'code': 'NOT_FOUND', 'message': f"{entity} {entity_id} not found"}}), 404


def register_error_handlers(app):
    """Render engine errors as {"error": {...}} with the error's status code."""

    @app.errorhandler(FailureAnalyticsError)
    def handle_engine_error(e):
        if e.status_code >= 500:
            logger.error(f"{e.code}: {e.message}")
        return jsonify({'error': e.to_dict()}), e.status_code

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({'error': {'code': 'NOT_FOUND', 'message': 'Resource not found'}}), 404

    @app.errorhandler(500)
    def server_error(e):
        logger.exception("Unhandled server error")
        return jsonify({'error': {'code': 'INTERNAL_ERROR', 'message': 'Internal server error'}}), 500


# ---------------------------------------------------------------------------
# Taxonomy
# ---------------------------------------------------------------------------

@api_blueprint.route('/taxonomy/categories', methods=['GET'])
def get_categories():
    """Closed vocabularies: failure categories, root-cause categories, severities."""
    taxonomy = _services().taxonomy
    return jsonify({
        'failure_categories': taxonomy.failure_categories(),
        'root_cause_categories': taxonomy.root_cause_categories(),
        'severities': taxonomy.severities(),
    })


@api_blueprint.route('/failure-codes', methods=['GET'])
def list_failure_codes():
    codes = _services().taxonomy.list_failure_codes(
        _organization_id(),
        category=request.args.get('category'),
        severity=request.args.get('severity'),
        is_active=_bool_arg('is_active'),
    )
    return jsonify(_serialize(codes))


@api_blueprint.route('/failure-codes', methods=['POST'])
def create_failure_code():
    code = _services().taxonomy.create_failure_code(_organization_id(), _json_body())
    return jsonify(_serialize(code)), 201


@api_blueprint.route('/failure-codes/<string:id>', methods=['GET'])
def get_failure_code(id):
    code = _services().taxonomy.get_failure_code(_organization_id(), id)
    if code is None:
        return _not_found('Failure code', id)
    return jsonify(_serialize(code))


@api_blueprint.route('/failure-codes/by-code/<string:code>', methods=['GET'])
def get_failure_code_by_code(code):
    failure_code = _services().taxonomy.get_failure_code_by_code(_organization_id(), code)
    if failure_code is None:
        return _not_found('Failure code', code)
    return jsonify(_serialize(failure_code))


@api_blueprint.route('/failure-codes/<string:id>', methods=['PUT'])
def update_failure_code(id):
    code = _services().taxonomy.update_failure_code(_organization_id(), id, _json_body())
    if code is None:
        return _not_found('Failure code', id)
    return jsonify(_serialize(code))


@api_blueprint.route('/failure-codes/<string:id>/deactivate', methods=['POST'])
def deactivate_failure_code(id):
    code = _services().taxonomy.deactivate_failure_code(_organization_id(), id)
    if code is None:
        return _not_found('Failure code', id)
    return jsonify(_serialize(code))


@api_blueprint.route('/failure-codes/<string:id>', methods=['DELETE'])
def delete_failure_code(id):
    """Delete a failure code; ?force=true cascades to referencing failure records."""
    deleted = _services().taxonomy.delete_failure_code(_organization_id(), id, force=bool(_bool_arg('force')))
    if not deleted:
        return _not_found('Failure code', id)
    return jsonify({'deleted': True, 'id': id})


@api_blueprint.route('/root-causes', methods=['GET'])
def list_root_causes():
    causes = _services().taxonomy.list_root_causes(_organization_id(), category=request.args.get('category'))
    return jsonify(_serialize(causes))


@api_blueprint.route('/root-causes', methods=['POST'])
def create_root_cause():
    cause = _services().taxonomy.create_root_cause(_organization_id(), _json_body())
    return jsonify(_serialize(cause)), 201


@api_blueprint.route('/root-causes/<string:id>', methods=['GET'])
def get_root_cause(id):
    cause = _services().taxonomy.get_root_cause(_organization_id(), id)
    if cause is None:
        return _not_found('Root cause', id)
    return jsonify(_serialize(cause))


@api_blueprint.route('/actions-taken', methods=['GET'])
def list_actions_taken():
    return jsonify(_serialize(_services().taxonomy.list_actions_taken(_organization_id())))


@api_blueprint.route('/actions-taken', methods=['POST'])
def create_action_taken():
    action = _services().taxonomy.create_action_taken(_organization_id(), _json_body())
    return jsonify(_serialize(action)), 201


@api_blueprint.route('/actions-taken/<string:id>', methods=['GET'])
def get_action_taken(id):
    action = _services().taxonomy.get_action_taken(_organization_id(), id)
    if action is None:
        return _not_found('Action taken', id)
    return jsonify(_serialize(action))


# ---------------------------------------------------------------------------
# Failure records
# ---------------------------------------------------------------------------

@api_blueprint.route('/failure-records', methods=['GET'])
def list_failure_records():
    """Filter by equipment, failure code, date range and recurrence; newest first unless order=asc."""
    records = _services().records.query(
        _organization_id(),
        equipment_id=request.args.get('equipment_id'),
        failure_code_id=request.args.get('failure_code_id'),
        start_date=request.args.get('start_date'),
        end_date=request.args.get('end_date'),
        is_recurring=_bool_arg('is_recurring'),
        ascending=request.args.get('order', 'desc').lower() == 'asc',
    )
    return jsonify(_serialize(records))


@api_blueprint.route('/failure-records', methods=['POST'])
def create_failure_record():
    record = _services().records.create(_organization_id(), _json_body())
    return jsonify(_serialize(record)), 201


@api_blueprint.route('/failure-records/<string:id>', methods=['GET'])
def get_failure_record(id):
    record = _services().records.get(_organization_id(), id)
    if record is None:
        return _not_found('Failure record', id)
    return jsonify(_serialize(record))


@api_blueprint.route('/failure-records/<string:id>', methods=['PUT'])
def update_failure_record(id):
    record = _services().records.update(_organization_id(), id, _json_body())
    if record is None:
        return _not_found('Failure record', id)
    return jsonify(_serialize(record))


@api_blueprint.route('/failure-records/<string:id>', methods=['DELETE'])
def delete_failure_record(id):
    deleted = _services().records.delete(_organization_id(), id, force=bool(_bool_arg('force')))
    if not deleted:
        return _not_found('Failure record', id)
    return jsonify({'deleted': True, 'id': id})


@api_blueprint.route('/failure-records/<string:id>/recurrence-chain', methods=['GET'])
def get_recurrence_chain(id):
    chain = _services().records.recurrence_chain(_organization_id(), id)
    if not chain:
        return _not_found('Failure record', id)
    return jsonify(_serialize(chain))


# ---------------------------------------------------------------------------
# Root cause analysis
# ---------------------------------------------------------------------------

@api_blueprint.route('/rca', methods=['GET'])
def list_analyses():
    analyses = _services().rca.list(
        _organization_id(),
        failure_record_id=request.args.get('failure_record_id'),
        equipment_id=request.args.get('equipment_id'),
        status=request.args.get('status'),
    )
    return jsonify(_serialize(analyses))


@api_blueprint.route('/rca', methods=['POST'])
def create_analysis():
    analysis = _services().rca.create(_organization_id(), _json_body())
    return jsonify(_serialize(analysis)), 201


@api_blueprint.route('/rca/<string:id>', methods=['GET'])
def get_analysis(id):
    analysis = _services().rca.get(_organization_id(), id)
    if analysis is None:
        return _not_found('Root cause analysis', id)
    return jsonify(_serialize(analysis))


@api_blueprint.route('/rca/<string:id>', methods=['PUT'])
def update_analysis(id):
    analysis = _services().rca.update(_organization_id(), id, _json_body())
    if analysis is None:
        return _not_found('Root cause analysis', id)
    return jsonify(_serialize(analysis))


@api_blueprint.route('/rca/<string:id>/transition', methods=['POST'])
def transition_analysis(id):
    """Body: {"status": "in_progress" | "completed" | "verified", "verified_by": ..., "verification_date": ...}"""
    data = _json_body()
    if not data.get('status'):
        raise ValidationError("Missing 'status' in request body")
    analysis = _services().rca.transition(
        _organization_id(), id, data['status'],
        verified_by=data.get('verified_by'),
        verification_date=data.get('verification_date'),
    )
    if analysis is None:
        return _not_found('Root cause analysis', id)
    return jsonify(_serialize(analysis))


@api_blueprint.route('/rca/<string:id>/action-items/<string:kind>', methods=['POST'])
def add_action_item(id, kind):
    analysis = _services().rca.add_action_item(_organization_id(), id, kind, _json_body())
    if analysis is None:
        return _not_found('Root cause analysis', id)
    return jsonify(_serialize(analysis)), 201


@api_blueprint.route('/rca/<string:id>/action-items/<string:kind>/<int:index>', methods=['PUT'])
def set_action_item_status(id, kind, index):
    data = _json_body()
    if not data.get('status'):
        raise ValidationError("Missing 'status' in request body")
    analysis = _services().rca.set_action_item_status(_organization_id(), id, kind, index, data['status'])
    if analysis is None:
        return _not_found('Root cause analysis', id)
    return jsonify(_serialize(analysis))


@api_blueprint.route('/rca/<string:id>/revise', methods=['POST'])
def revise_analysis(id):
    data = request.get_json(silent=True) or {}
    revision = _services().rca.revise(_organization_id(), id, performed_by=data.get('performed_by'))
    if revision is None:
        return _not_found('Root cause analysis', id)
    return jsonify(_serialize(revision)), 201


# ---------------------------------------------------------------------------
# Reliability
# ---------------------------------------------------------------------------

@api_blueprint.route('/reliability/equipment', methods=['GET'])
def list_equipment_reliability():
    return jsonify(_serialize(_services().reliability.all_equipment_reliability(_organization_id())))


@api_blueprint.route('/reliability/equipment/<string:equipment_id>', methods=['GET'])
def get_equipment_reliability(equipment_id):
    """404 means no failure records for the unit, which is not the same as zero failures."""
    metrics = _services().reliability.equipment_reliability(_organization_id(), equipment_id)
    if metrics is None:
        return _not_found('Reliability data for equipment', equipment_id)
    return jsonify(metrics.to_dict())


@api_blueprint.route('/reliability/fleet', methods=['GET'])
def get_fleet_reliability():
    fleet = _services().reliability.fleet_reliability(
        _organization_id(),
        equipment_count=request.args.get('equipment_count', type=int),
    )
    return jsonify(fleet.to_dict())


@api_blueprint.route('/reliability/trends', methods=['GET'])
def get_reliability_trends():
    points = _services().trends.trends(
        _organization_id(),
        window_months=request.args.get('window_months', type=int),
        equipment_id=request.args.get('equipment_id'),
    )
    return jsonify(_serialize(points))


@api_blueprint.route('/reliability/mtbf', methods=['GET'])
def get_mtbf_analysis():
    equipment_id = request.args.get('equipment_id')
    result = _services().reliability.mtbf_analysis(_organization_id(), equipment_id)
    if result is None:
        return _not_found('Reliability data for equipment', equipment_id)
    return jsonify(result)


@api_blueprint.route('/reliability/mttr', methods=['GET'])
def get_mttr_analysis():
    equipment_id = request.args.get('equipment_id')
    result = _services().reliability.mttr_analysis(_organization_id(), equipment_id)
    if result is None:
        return _not_found('Reliability data for equipment', equipment_id)
    return jsonify(result)


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------

@api_blueprint.route('/stats/by-code', methods=['GET'])
def get_stats_by_code():
    return jsonify(_serialize(_services().stats.by_failure_code(_organization_id())))


@api_blueprint.route('/stats/by-equipment', methods=['GET'])
def get_stats_by_equipment():
    return jsonify(_serialize(_services().stats.by_equipment(_organization_id())))


@api_blueprint.route('/stats/overall', methods=['GET'])
def get_overall_stats():
    overall = _services().stats.overall(
        _organization_id(),
        equipment_count=request.args.get('equipment_count', type=int),
    )
    return jsonify(overall.to_dict())


@api_blueprint.route('/stats/root-cause-categories', methods=['GET'])
def get_root_cause_category_stats():
    return jsonify(_services().stats.root_cause_categories(_organization_id()))


@api_blueprint.route('/stats/failure-metrics', methods=['GET'])
def get_failure_metrics():
    return jsonify(_services().stats.metrics(_organization_id()))


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@api_blueprint.route('/configuration', methods=['GET'])
def get_configuration():
    return jsonify(get_config())


@api_blueprint.route('/configuration', methods=['POST'])
def set_configuration():
    config_data = request.get_json(silent=True)
    is_valid, error = validate_configuration(config_data)
    if not is_valid:
        raise ValidationError(error)
    config = set_config(config_data)
    logger.info("Analytics configuration updated")
    return jsonify(config), 200
