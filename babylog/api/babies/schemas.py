# babylog/api/babies/schemas.py
from marshmallow import Schema, fields, validate, pre_load

DATE_KEY_REGEX = r'^\d{4}-\d{2}-\d{2}$'


class BabyProfileSchema(Schema):
    """아기 프로필 수정(PUT /api/babies/<baby_id>) 요청 본문 스키마."""
    name = fields.Str(required=False, allow_none=True, validate=validate.Length(max=30))
    avatarUrl = fields.Str(required=False, allow_none=True)
    gender = fields.Str(required=False, allow_none=True, validate=validate.OneOf(['male', 'female', 'unknown']))
    birthday = fields.Str(required=False, allow_none=True, validate=validate.Regexp(DATE_KEY_REGEX))


class BabyCreateSchema(BabyProfileSchema):
    """
    POST /api/babies 요청 본문 스키마.
    id 는 가족 공유에 사용하는 공유 코드이며 대소문자를 구분합니다.
    """
    id = fields.Str(required=True, validate=validate.Length(min=1, max=64))

    @pre_load
    def strip_id(self, data, **kwargs):
        processed_data = dict(data or {})
        if isinstance(processed_data.get('id'), str):
            processed_data['id'] = processed_data['id'].strip()
        return processed_data


class CurrentBabySchema(Schema):
    id = fields.Str(required=True, validate=validate.Length(min=1))


class BabyResponseSchema(Schema):
    id = fields.Str()
    name = fields.Str()
    avatarUrl = fields.Str(attribute='avatar_url')
    gender = fields.Str(allow_none=True)
    birthday = fields.Str(allow_none=True)
    role = fields.Method('get_role')
    creatorInfo = fields.Dict(attribute='creator_info')
    ownerId = fields.Str(attribute='owner_id', allow_none=True)
    synced = fields.Bool()

    def get_role(self, obj):
        return obj.role.value if obj.role else None
