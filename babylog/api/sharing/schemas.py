# babylog/api/sharing/schemas.py
from marshmallow import Schema, fields, validate


class RedeemRequestSchema(Schema):
    """POST /api/sharing/redeem 요청 본문. 형식 검사(6자리 숫자)는 서비스에서 수행합니다."""
    code = fields.Str(required=True)


class ReviewRequestSchema(Schema):
    approve = fields.Bool(required=True)


class JoinRequestsQuerySchema(Schema):
    status = fields.Str(validate=validate.OneOf(['pending', 'approved', 'rejected']))


class InvitationResponseSchema(Schema):
    code = fields.Str()
    babyId = fields.Str(attribute='baby_id')
    expiresAt = fields.Int(attribute='expires_at')
    status = fields.Method('get_status')
    createdAt = fields.Int(attribute='created_at', allow_none=True)

    def get_status(self, obj):
        return obj.status.value


class JoinRecordResponseSchema(Schema):
    id = fields.Str(attribute='record_id', allow_none=True)
    babyId = fields.Str(attribute='baby_id')
    userId = fields.Str(attribute='user_id')
    status = fields.Method('get_status')
    userInfo = fields.Dict(attribute='user_info')
    createdAt = fields.Int(attribute='created_at', allow_none=True)
    updatedAt = fields.Int(attribute='updated_at', allow_none=True)

    def get_status(self, obj):
        return obj.status.value
