# babylog/api/growth/routes.py
import logging
from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required
from marshmallow import ValidationError

from babylog.api.growth.schemas import GrowthCreateSchema, MilestoneCreateSchema
from babylog.core.exceptions import ValidationFailure
from babylog.core.security import caller_services, require_local_baby
from babylog.models.growth import GrowthRecord, MilestoneRecord

logger = logging.getLogger(__name__)

growth_bp = Blueprint('growth_bp', __name__)

# URL 경로 이름 -> (서비스 키, 요청 스키마, 모델)
_LEDGERS = {
    'growth': ('growth', GrowthCreateSchema, GrowthRecord),
    'milestones': ('milestones', MilestoneCreateSchema, MilestoneRecord),
}


def _record_to_dict(record):
    data = record.to_dict()
    data['id'] = record.identifier
    data['synced'] = bool(record.remote_id)
    return data


def _resolve_ledger(ledger: str):
    service_key, schema_cls, model_cls = _LEDGERS[ledger]
    return caller_services()[service_key], schema_cls, model_cls


@growth_bp.route('/<string:baby_id>/<any(growth, milestones):ledger>', methods=['POST'])
@jwt_required()
async def add_record(baby_id: str, ledger: str):
    require_local_baby(baby_id)
    service, schema_cls, model_cls = _resolve_ledger(ledger)
    try:
        data = schema_cls().load(request.get_json() or {})
        record = await service.add(model_cls.from_dict({**data, 'babyId': baby_id}))
        return jsonify(_record_to_dict(record)), 201
    except ValidationError as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "details": err.messages}), 400
    except ValidationFailure as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "message": str(err)}), 400


@growth_bp.route('/<string:baby_id>/<any(growth, milestones):ledger>', methods=['GET'])
@jwt_required()
async def list_records(baby_id: str, ledger: str):
    """날짜 최신순 목록."""
    require_local_baby(baby_id)
    service, _, _ = _resolve_ledger(ledger)
    records = await service.list(baby_id)
    return jsonify({"records": [_record_to_dict(r) for r in records]}), 200


@growth_bp.route('/<string:baby_id>/growth/latest', methods=['GET'])
@jwt_required()
async def latest_growth(baby_id: str):
    require_local_baby(baby_id)
    record = await caller_services()['growth'].latest(baby_id)
    if record is None:
        return jsonify({"error_code": "GROWTH_NOT_FOUND", "message": "성장 기록이 없습니다."}), 404
    return jsonify(_record_to_dict(record)), 200


@growth_bp.route('/<string:baby_id>/<any(growth, milestones):ledger>/<string:record_id>', methods=['DELETE'])
@jwt_required()
async def delete_record(baby_id: str, ledger: str, record_id: str):
    require_local_baby(baby_id)
    service, _, _ = _resolve_ledger(ledger)
    if not await service.remove(baby_id, record_id):
        return jsonify({"error_code": "RECORD_NOT_FOUND", "message": f"기록을 찾을 수 없습니다: {record_id}"}), 404
    return jsonify({"message": "기록이 삭제되었습니다.", "id": record_id}), 200
