# babylog/api/records/routes.py
import logging
from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required
from marshmallow import ValidationError

from babylog.api.records.schemas import (
    EventCreateSchema,
    EventResponseSchema,
    EventsQuerySchema,
    SummaryQuerySchema,
    WeeklySummaryQuerySchema,
    QuickActionSchema,
    QuickActionListSchema,
    QuickActionReorderSchema,
)
from babylog.core.exceptions import ValidationFailure
from babylog.core.security import caller_services, current_caller, require_local_baby
from babylog.models.event import ActivityEvent, EventKind
from babylog.models.quick_action import QuickAction
from babylog.utils.datetime_utils import DateTimeUtils

logger = logging.getLogger(__name__)

records_bp = Blueprint('records_bp', __name__)


def _validation_failure(err: ValidationFailure):
    return jsonify({"error_code": "VALIDATION_ERROR", "message": str(err)}), 400


# ================== 행동 기록 API ==================

@records_bp.route('/<string:baby_id>/events', methods=['POST'])
@jwt_required()
async def create_event(baby_id: str):
    """행동 기록 생성. 원격 저장에 실패하면 로컬에만 저장되고 synced=false 로 응답합니다."""
    require_local_baby(baby_id)
    service = caller_services()['records']
    try:
        data = EventCreateSchema().load(request.get_json() or {})
        event = ActivityEvent.from_dict({**data, 'babyId': baby_id, 'createdBy': current_caller().user_id})
        saved = await service.append(event)
        return jsonify(EventResponseSchema().dump(saved)), 201
    except ValidationError as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "details": err.messages}), 400
    except ValidationFailure as err:
        return _validation_failure(err)


@records_bp.route('/<string:baby_id>/events', methods=['GET'])
@jwt_required()
async def list_events(baby_id: str):
    """
    기간 내 기록을 최신순으로 조회합니다.

    쿼리 파라미터:
    - date: 하루 조회 (YYYY-MM-DD)
    - start, end: Unix time(ms) 범위 조회 (양 끝 포함)
    """
    require_local_baby(baby_id)
    service = caller_services()['records']
    try:
        params = EventsQuerySchema().load(request.args)
    except ValidationError as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "details": err.messages}), 400

    if 'date' in params:
        start_ts, end_ts = DateTimeUtils.day_range_ms(params['date'])
    else:
        start_ts, end_ts = params.get('start'), params.get('end')

    events = await service.query(baby_id, start_ts, end_ts)
    return jsonify({"events": EventResponseSchema(many=True).dump(events)}), 200


@records_bp.route('/<string:baby_id>/events/<string:event_id>', methods=['PUT'])
@jwt_required()
async def update_event(baby_id: str, event_id: str):
    """기록 수정. 본문에 없는 수량/지속 시간/메모는 비워집니다."""
    require_local_baby(baby_id)
    service = caller_services()['records']
    try:
        data = EventCreateSchema().load(request.get_json() or {})
        event = ActivityEvent.from_dict({**data, 'babyId': baby_id})
        existing = service.find_local(baby_id, event_id)
        if existing:
            event.remote_id, event.local_id = existing.remote_id, existing.local_id
        else:
            event.remote_id = event_id
        updated = await service.update(event)
        return jsonify(EventResponseSchema().dump(updated)), 200
    except ValidationError as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "details": err.messages}), 400
    except ValidationFailure as err:
        return _validation_failure(err)


@records_bp.route('/<string:baby_id>/events/<string:event_id>', methods=['DELETE'])
@jwt_required()
async def delete_event(baby_id: str, event_id: str):
    require_local_baby(baby_id)
    service = caller_services()['records']
    removed = await service.remove(baby_id, event_id)
    if not removed:
        return jsonify({"error_code": "EVENT_NOT_FOUND", "message": f"기록을 찾을 수 없습니다: {event_id}"}), 404
    return jsonify({"message": "기록이 삭제되었습니다.", "id": event_id}), 200


# ================== 통계 API ==================

@records_bp.route('/<string:baby_id>/summary', methods=['GET'])
@jwt_required()
async def get_daily_summary(baby_id: str):
    require_local_baby(baby_id)
    service = caller_services()['records']
    try:
        params = SummaryQuerySchema().load(request.args)
    except ValidationError as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "details": err.messages}), 400

    summary = await service.daily_summary(baby_id, params['date'])
    return jsonify(summary.to_dict()), 200


@records_bp.route('/<string:baby_id>/summary/week', methods=['GET'])
@jwt_required()
async def get_weekly_summary(baby_id: str):
    """최근 N일(기본 7일)의 일별 요약. 최신 날짜가 먼저 옵니다."""
    require_local_baby(baby_id)
    service = caller_services()['records']
    try:
        params = WeeklySummaryQuerySchema().load(request.args)
    except ValidationError as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "details": err.messages}), 400

    summaries = await service.weekly_summary(baby_id, params.get('today'), params['days'])
    return jsonify({"days": [s.to_dict() for s in summaries]}), 200


# ================== 빠른 기록 버튼 API ==================

def _actions_response(actions):
    return jsonify({"actions": [a.to_dict() for a in actions]}), 200


@records_bp.route('/<string:baby_id>/quick-actions', methods=['GET'])
@jwt_required()
def get_quick_actions(baby_id: str):
    require_local_baby(baby_id)
    return _actions_response(caller_services()['quick_actions'].get(baby_id))


@records_bp.route('/<string:baby_id>/quick-actions', methods=['PUT'])
@jwt_required()
def set_quick_actions(baby_id: str):
    require_local_baby(baby_id)
    service = caller_services()['quick_actions']
    try:
        data = QuickActionListSchema().load(request.get_json() or {})
        actions = [QuickAction.from_dict(item) for item in data['actions']]
        return _actions_response(service.set(baby_id, actions))
    except ValidationError as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "details": err.messages}), 400
    except ValidationFailure as err:
        return _validation_failure(err)


@records_bp.route('/<string:baby_id>/quick-actions', methods=['POST'])
@jwt_required()
def add_quick_action(baby_id: str):
    require_local_baby(baby_id)
    service = caller_services()['quick_actions']
    try:
        data = QuickActionSchema().load(request.get_json() or {})
        actions = service.add(baby_id, EventKind.decode(data['type']), data.get('label'))
        return jsonify({"actions": [a.to_dict() for a in actions]}), 201
    except ValidationError as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "details": err.messages}), 400
    except ValidationFailure as err:
        return _validation_failure(err)


@records_bp.route('/<string:baby_id>/quick-actions/<string:action_type>', methods=['DELETE'])
@jwt_required()
def remove_quick_action(baby_id: str, action_type: str):
    require_local_baby(baby_id)
    kind = EventKind.decode(action_type)
    if kind is EventKind.UNKNOWN:
        return jsonify({"error_code": "INVALID_EVENT_TYPE", "message": f"유효하지 않은 기록 유형입니다: {action_type}"}), 400
    return _actions_response(caller_services()['quick_actions'].remove(baby_id, kind))


@records_bp.route('/<string:baby_id>/quick-actions/reorder', methods=['POST'])
@jwt_required()
def reorder_quick_actions(baby_id: str):
    require_local_baby(baby_id)
    service = caller_services()['quick_actions']
    try:
        data = QuickActionReorderSchema().load(request.get_json() or {})
        if 'types' in data:
            actions = service.reorder(baby_id, [EventKind.decode(t) for t in data['types']])
        else:
            actions = service.move(baby_id, data['from_index'], data['to_index'])
        return _actions_response(actions)
    except ValidationError as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "details": err.messages}), 400
    except ValidationFailure as err:
        return _validation_failure(err)
