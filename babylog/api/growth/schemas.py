# babylog/api/growth/schemas.py
from marshmallow import Schema, fields, validate, validates_schema, ValidationError


class GrowthCreateSchema(Schema):
    """POST /api/babies/<baby_id>/growth 요청 본문 스키마."""
    date = fields.Str(required=True, validate=validate.Length(min=1))  # YYYY-MM-DD (2024-1-5 형식도 허용)
    height = fields.Float(required=False, allow_none=True, validate=validate.Range(min=0, min_inclusive=False))  # cm
    weight = fields.Float(required=False, allow_none=True, validate=validate.Range(min=0, min_inclusive=False))  # kg

    @validates_schema
    def validate_measurement(self, data, **kwargs):
        if data.get('height') is None and data.get('weight') is None:
            raise ValidationError('키 또는 몸무게 중 하나는 입력해야 합니다.')


class MilestoneCreateSchema(Schema):
    """POST /api/babies/<baby_id>/milestones 요청 본문 스키마."""
    date = fields.Str(required=True, validate=validate.Length(min=1))  # YYYY-MM-DD (2024-1-5 형식도 허용)
    title = fields.Str(required=True, validate=validate.Length(min=1, max=50))
    description = fields.Str(required=False, allow_none=True)
    photoLocalPath = fields.Str(required=False, allow_none=True)
    photoFileId = fields.Str(required=False, allow_none=True)
