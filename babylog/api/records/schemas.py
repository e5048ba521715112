# babylog/api/records/schemas.py
from marshmallow import Schema, fields, validate, validates_schema, ValidationError, pre_load

EVENT_TYPES = ['feed', 'drink', 'pee', 'poop', 'sleep', 'wake']
DATE_KEY_REGEX = r'^\d{4}-\d{2}-\d{2}$'


class EventCreateSchema(Schema):
    """
    POST /api/babies/<baby_id>/events, PUT /api/babies/<baby_id>/events/<event_id> 요청 본문 스키마.
    키 이름은 로컬/원격 저장 형식과 같은 camelCase 를 사용합니다.
    """
    type = fields.Str(required=True, validate=validate.OneOf(EVENT_TYPES))
    timestamp = fields.Int(required=True, strict=True, validate=validate.Range(min=1))  # Unix time (ms)
    quantity = fields.Float(required=False, allow_none=True, validate=validate.Range(min=0))
    durationMinutes = fields.Int(required=False, allow_none=True, validate=validate.Range(min=0))
    notes = fields.Str(required=False, allow_none=True)

    @validates_schema
    def validate_fields_by_type(self, data, **kwargs):
        """수량은 feed/drink, 지속 시간은 sleep 에만 입력할 수 있습니다."""
        event_type = data.get('type')
        if data.get('quantity') is not None and event_type not in ('feed', 'drink'):
            raise ValidationError('수량은 수유(feed)/물(drink) 기록에만 입력할 수 있습니다.', 'quantity')
        if data.get('durationMinutes') is not None and event_type != 'sleep':
            raise ValidationError('지속 시간은 수면(sleep) 기록에만 입력할 수 있습니다.', 'durationMinutes')


class EventResponseSchema(Schema):
    id = fields.Str(attribute='identifier')
    remoteId = fields.Str(attribute='remote_id', allow_none=True)
    localId = fields.Str(attribute='local_id', allow_none=True)
    babyId = fields.Str(attribute='baby_id')
    type = fields.Method('get_type')
    timestamp = fields.Int()
    quantity = fields.Float(allow_none=True)
    durationMinutes = fields.Int(attribute='duration_minutes', allow_none=True)
    notes = fields.Str(allow_none=True)
    createdBy = fields.Str(attribute='created_by', allow_none=True)
    synced = fields.Bool(attribute='is_synced')

    def get_type(self, obj):
        return obj.kind.value


class EventsQuerySchema(Schema):
    """
    GET /api/babies/<baby_id>/events 쿼리 파라미터.
    date(하루) 또는 start/end(ms, 양 끝 포함) 중 하나로 기간을 지정합니다. 둘 다 없으면 전체 조회.
    """
    date = fields.Str(validate=validate.Regexp(DATE_KEY_REGEX))
    start = fields.Int(validate=validate.Range(min=0))
    end = fields.Int(validate=validate.Range(min=0))

    @validates_schema
    def validate_range(self, data, **kwargs):
        if 'date' in data and ('start' in data or 'end' in data):
            raise ValidationError('date 와 start/end 는 함께 사용할 수 없습니다.', 'date')
        if 'start' in data and 'end' in data and data['start'] > data['end']:
            raise ValidationError('start 는 end 보다 클 수 없습니다.', 'start')


class SummaryQuerySchema(Schema):
    date = fields.Str(required=True, validate=validate.Regexp(DATE_KEY_REGEX))


class WeeklySummaryQuerySchema(Schema):
    today = fields.Str(validate=validate.Regexp(DATE_KEY_REGEX))
    days = fields.Int(validate=validate.Range(min=1, max=31), load_default=7)


class QuickActionSchema(Schema):
    type = fields.Str(required=True, validate=validate.OneOf(EVENT_TYPES))
    label = fields.Str(required=False, allow_none=True, validate=validate.Length(max=20))


class QuickActionListSchema(Schema):
    actions = fields.List(fields.Nested(QuickActionSchema), required=True)


class QuickActionReorderSchema(Schema):
    """순서 변경: types(전체 순서) 또는 from/to(한 항목 이동) 중 하나."""
    types = fields.List(fields.Str(validate=validate.OneOf(EVENT_TYPES)))
    from_index = fields.Int(data_key='from', validate=validate.Range(min=0))
    to_index = fields.Int(data_key='to', validate=validate.Range(min=0))

    @pre_load
    def preprocess_data(self, data, **kwargs):
        # "feed,drink" 형태의 문자열도 허용합니다.
        processed_data = dict(data or {})
        if isinstance(processed_data.get('types'), str):
            processed_data['types'] = [t.strip() for t in processed_data['types'].split(',') if t.strip()]
        return processed_data

    @validates_schema
    def validate_mode(self, data, **kwargs):
        has_types = 'types' in data
        has_move = 'from_index' in data or 'to_index' in data
        if has_types == has_move:
            raise ValidationError('types 또는 from/to 중 하나만 지정해야 합니다.')
        if has_move and ('from_index' not in data or 'to_index' not in data):
            raise ValidationError('from 과 to 를 모두 지정해야 합니다.')
