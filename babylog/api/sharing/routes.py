# babylog/api/sharing/routes.py
import logging
from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required
from marshmallow import ValidationError

from babylog.api.babies.schemas import BabyResponseSchema
from babylog.api.sharing.schemas import (
    InvitationResponseSchema,
    JoinRecordResponseSchema,
    JoinRequestsQuerySchema,
    RedeemRequestSchema,
    ReviewRequestSchema,
)
from babylog.core.exceptions import ValidationFailure
from babylog.core.security import caller_services, current_caller
from babylog.models.sharing import JoinStatus

logger = logging.getLogger(__name__)

sharing_bp = Blueprint('sharing_bp', __name__)


@sharing_bp.route('/babies/<string:baby_id>/invitations', methods=['POST'])
@jwt_required()
async def issue_invitation(baby_id: str):
    """[소유자 전용] 30분간 유효한 6자리 초대 코드를 발급합니다."""
    invitation = await caller_services()['sharing'].issue_invitation(baby_id, current_caller())
    return jsonify(InvitationResponseSchema().dump(invitation)), 201


@sharing_bp.route('/sharing/redeem', methods=['POST'])
@jwt_required()
async def redeem_invitation():
    """초대 코드로 가족에 참여합니다."""
    service = caller_services()['sharing']
    try:
        data = RedeemRequestSchema().load(request.get_json() or {})
        result = await service.redeem_invitation(data['code'], current_caller())
    except ValidationError as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "details": err.messages}), 400
    except ValidationFailure as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "message": str(err)}), 400

    if not result.success:
        messages = {
            "INVALID_INVITATION": "초대 코드가 유효하지 않거나 만료되었습니다.",
            "BABY_NOT_FOUND": "초대된 아기 프로필을 찾을 수 없습니다.",
        }
        return jsonify({"error_code": result.reason, "message": messages.get(result.reason, "")}), 404

    response = {
        "success": True,
        "alreadyJoined": result.already_joined,
        "pending": result.pending,
        "baby": BabyResponseSchema().dump(result.baby) if result.baby else None,
    }
    return jsonify(response), 202 if result.pending else 200


@sharing_bp.route('/sharing/reconcile', methods=['POST'])
@jwt_required()
async def reconcile():
    """로컬 아기 목록을 원격 상태와 동기화합니다."""
    report = await caller_services()['sharing'].reconcile(current_caller())
    return jsonify(report.to_dict()), 200


@sharing_bp.route('/babies/<string:baby_id>/join-requests', methods=['GET'])
@jwt_required()
async def list_join_requests(baby_id: str):
    try:
        params = JoinRequestsQuerySchema().load(request.args)
    except ValidationError as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "details": err.messages}), 400

    status = JoinStatus(params['status']) if 'status' in params else None
    records = await caller_services()['sharing'].list_join_requests(baby_id, current_caller(), status)
    return jsonify({"requests": JoinRecordResponseSchema(many=True).dump(records)}), 200


@sharing_bp.route('/sharing/join-requests/<string:record_id>/review', methods=['POST'])
@jwt_required()
async def review_join_request(record_id: str):
    try:
        data = ReviewRequestSchema().load(request.get_json() or {})
    except ValidationError as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "details": err.messages}), 400

    record = await caller_services()['sharing'].review_join_request(record_id, data['approve'], current_caller())
    return jsonify(JoinRecordResponseSchema().dump(record)), 200


@sharing_bp.route('/babies/<string:baby_id>/members', methods=['GET'])
@jwt_required()
async def list_members(baby_id: str):
    members = await caller_services()['sharing'].list_members(baby_id, current_caller())
    return jsonify({"members": JoinRecordResponseSchema(many=True).dump(members)}), 200


@sharing_bp.route('/babies/<string:baby_id>/members/<string:user_id>', methods=['DELETE'])
@jwt_required()
async def remove_member(baby_id: str, user_id: str):
    try:
        removed = await caller_services()['sharing'].remove_member(baby_id, user_id, current_caller())
    except ValidationFailure as err:
        return jsonify({"error_code": "VALIDATION_ERROR", "message": str(err)}), 400
    return jsonify({"message": "구성원이 제거되었습니다.", "removedJoinRecords": removed}), 200
