# babylog/api/babies/routes.py
import logging
from dataclasses import replace
from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required
from marshmallow import ValidationError

from babylog.api.babies.schemas import (
    BabyCreateSchema,
    BabyProfileSchema,
    BabyResponseSchema,
    CurrentBabySchema,
)
from babylog.core.exceptions import ValidationFailure
from babylog.core.security import caller_services, current_caller, require_local_baby
from babylog.models.baby import BabyProfile, DEFAULT_BABY_NAME

logger = logging.getLogger(__name__)

babies_bp = Blueprint('babies_bp', __name__)

_PROFILE_FIELDS = {'name': 'name', 'avatarUrl': 'avatar_url', 'gender': 'gender', 'birthday': 'birthday'}


def _write_response(baby: BabyProfile, result, status: int = 200):
    """로컬 저장은 항상 성공이며, synced=false 면 '저장됨, 아직 동기화 안 됨' 상태입니다."""
    return jsonify({
        "baby": BabyResponseSchema().dump(baby),
        "synced": result.synced,
        "remoteError": str(result.remote_error) if result.remote_error else None,
    }), status


@babies_bp.route('', methods=['GET'])
@jwt_required()
async def list_babies():
    """로컬 아기 목록, 현재 선택된 아기 ID, 표시용 아바타 URL 을 반환합니다."""
    services = caller_services()
    baby_service = services['babies']
    sharing_service = services['sharing']

    babies = baby_service.list_babies()
    avatars = await sharing_service.resolve_avatars(babies)
    return jsonify({
        "babies": BabyResponseSchema(many=True).dump(babies),
        "currentId": baby_service.get_current_id(),
        "avatars": avatars.urls,
        "avatarLimited": avatars.limited,
    }), 200


@babies_bp.route('', methods=['POST'])
@jwt_required()
async def create_baby():
    """새 아기를 소유자로 등록합니다."""
    baby_service = caller_services()['babies']
    try:
        data = BabyCreateSchema().load(request.get_json() or {})
        baby = BabyProfile(
            id=data['id'],
            name=data.get('name') or DEFAULT_BABY_NAME,
            avatar_url=data.get('avatarUrl') or "",
            gender=data.get('gender'),
            birthday=data.get('birthday'),
        )
        result = await baby_service.create_baby(baby, current_caller())
        return _write_response(baby_service.get_baby(baby.id), result, 201)
    except ValidationError as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "details": err.messages}), 400
    except ValidationFailure as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "message": str(err)}), 400


@babies_bp.route('/current', methods=['PUT'])
@jwt_required()
def set_current_baby():
    baby_service = caller_services()['babies']
    try:
        data = CurrentBabySchema().load(request.get_json() or {})
    except ValidationError as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "details": err.messages}), 400
    return jsonify({"currentId": baby_service.set_current_id(data['id'])}), 200


@babies_bp.route('/<string:baby_id>', methods=['PUT'])
@jwt_required()
async def update_baby(baby_id: str):
    """프로필 수정. 소유자는 원격 문서 전체를, 구성원은 표시 필드만 갱신합니다."""
    baby_service = caller_services()['babies']
    existing = require_local_baby(baby_id)

    try:
        data = BabyProfileSchema().load(request.get_json() or {})
    except ValidationError as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "details": err.messages}), 400

    changes = {attr: data[key] for key, attr in _PROFILE_FIELDS.items() if key in data}
    if 'name' in changes:
        changes['name'] = changes['name'] or DEFAULT_BABY_NAME
    if 'avatar_url' in changes:
        changes['avatar_url'] = changes['avatar_url'] or ""
    result = await baby_service.upsert(replace(existing, **changes), current_caller())
    return _write_response(baby_service.get_baby(baby_id), result)


@babies_bp.route('/<string:baby_id>', methods=['DELETE'])
@jwt_required()
async def soft_delete_baby(baby_id: str):
    """[소유자 전용] 아기 프로필 삭제 (원격 삭제 표시 + 로컬 삭제)."""
    baby_service = caller_services()['babies']
    await baby_service.soft_delete(baby_id, current_caller())
    return jsonify({"message": "아기 프로필이 삭제되었습니다.", "currentId": baby_service.get_current_id()}), 200


@babies_bp.route('/<string:baby_id>/exit', methods=['POST'])
@jwt_required()
async def exit_family(baby_id: str):
    """[구성원 전용] 가족 나가기."""
    baby_service = caller_services()['babies']
    removed = await baby_service.exit_family(baby_id, current_caller())
    return jsonify({
        "message": "가족에서 나갔습니다.",
        "removedJoinRecords": removed,
        "currentId": baby_service.get_current_id(),
    }), 200


@babies_bp.route('/<string:baby_id>/local', methods=['DELETE'])
@jwt_required()
def delete_local_baby(baby_id: str):
    """이 기기에서만 삭제합니다. 원격 데이터는 변경하지 않습니다."""
    baby_service = caller_services()['babies']
    if not baby_service.delete_local(baby_id):
        return jsonify({"error_code": "BABY_NOT_FOUND", "message": f"아기를 찾을 수 없습니다: {baby_id}"}), 404
    return jsonify({"message": "이 기기에서 삭제되었습니다.", "currentId": baby_service.get_current_id()}), 200
