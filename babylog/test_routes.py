# babylog/test_routes.py
"""
HTTP API 테스트 (Flask test client, 메모리 원격 저장소)

사용법: python -m pytest babylog/test_routes.py -v
"""
from babylog.core.security import create_caller_token
from babylog.models.sharing import CallerIdentity

T0 = 1710061200000  # 2024-03-10 09:00:00 UTC


def _create_baby(client, headers, baby_id='123456', name='하늘'):
    return client.post('/api/babies', json={'id': baby_id, 'name': name}, headers=headers)


def test_requests_without_token_are_rejected(client):
    """JWT 없이 호출하면 401"""
    assert client.get('/api/babies').status_code == 401
    assert client.post('/api/babies/b1/events', json={}).status_code == 401


def test_create_and_list_babies(client, auth_headers):
    response = _create_baby(client, auth_headers, baby_id='  123456 ')
    assert response.status_code == 201
    body = response.get_json()
    assert body['synced'] is True
    assert body['baby']['id'] == '123456'
    assert body['baby']['role'] == 'owner'
    assert body['baby']['ownerId'] == 'user-owner'

    listing = client.get('/api/babies', headers=auth_headers).get_json()
    assert [b['id'] for b in listing['babies']] == ['123456']
    assert listing['currentId'] == '123456'
    assert listing['avatars'] == {'123456': ''}
    assert listing['avatarLimited'] is False


def test_create_baby_validation(client, auth_headers):
    response = client.post('/api/babies', json={'id': '   '}, headers=auth_headers)
    assert response.status_code == 400
    assert response.get_json()['error_code'] == 'VALIDATION_ERROR'

    _create_baby(client, auth_headers)
    duplicate = _create_baby(client, auth_headers)
    assert duplicate.status_code == 400


def test_update_and_select_baby(client, auth_headers):
    _create_baby(client, auth_headers, baby_id='b1')
    _create_baby(client, auth_headers, baby_id='b2')

    updated = client.put('/api/babies/b2', json={'name': '바다', 'birthday': '2024-01-05'}, headers=auth_headers)
    assert updated.status_code == 200
    assert updated.get_json()['baby']['name'] == '바다'

    assert client.put('/api/babies/current', json={'id': 'b2'}, headers=auth_headers).get_json() == {'currentId': 'b2'}
    assert client.put('/api/babies/current', json={'id': 'nope'}, headers=auth_headers).status_code == 404
    assert client.put('/api/babies/nope', json={'name': 'x'}, headers=auth_headers).status_code == 404


def test_event_crud_and_summary(client, auth_headers):
    _create_baby(client, auth_headers, baby_id='b1')

    created = client.post('/api/babies/b1/events', json={'type': 'feed', 'timestamp': T0, 'quantity': 120},
                          headers=auth_headers)
    assert created.status_code == 201
    event = created.get_json()
    assert event['synced'] is True
    assert event['createdBy'] == 'user-owner'

    client.post('/api/babies/b1/events', json={'type': 'sleep', 'timestamp': T0 + 60_000}, headers=auth_headers)
    client.post('/api/babies/b1/events', json={'type': 'wake', 'timestamp': T0 + 46 * 60_000}, headers=auth_headers)

    listed = client.get('/api/babies/b1/events?date=2024-03-10', headers=auth_headers).get_json()['events']
    assert [e['type'] for e in listed] == ['wake', 'sleep', 'feed']
    assert listed[1]['durationMinutes'] == 45

    summary = client.get('/api/babies/b1/summary?date=2024-03-10', headers=auth_headers).get_json()
    assert summary['feedCount'] == 1
    assert summary['feedMl'] == 120
    assert summary['sleepSessions'] == 1
    assert summary['sleepMinutes'] == 45

    edited = client.put(f"/api/babies/b1/events/{event['id']}", json={'type': 'feed', 'timestamp': T0, 'quantity': 90},
                        headers=auth_headers)
    assert edited.status_code == 200
    assert edited.get_json()['quantity'] == 90

    assert client.delete(f"/api/babies/b1/events/{event['id']}", headers=auth_headers).status_code == 200
    assert client.delete(f"/api/babies/b1/events/{event['id']}", headers=auth_headers).status_code == 404


def test_event_validation_errors(client, auth_headers):
    _create_baby(client, auth_headers, baby_id='b1')
    invalid_bodies = [
        {'type': 'bath', 'timestamp': T0},
        {'type': 'feed', 'timestamp': '2024-03-10'},
        {'type': 'pee', 'timestamp': T0, 'quantity': 10},
        {'type': 'feed', 'timestamp': T0, 'quantity': -1},
        {'type': 'feed'},
    ]
    for body in invalid_bodies:
        response = client.post('/api/babies/b1/events', json=body, headers=auth_headers)
        assert response.status_code == 400, body
        assert response.get_json()['error_code'] == 'VALIDATION_ERROR'

    assert client.get('/api/babies/b1/events?date=2024-3-10', headers=auth_headers).status_code == 400
    assert client.get('/api/babies/b1/summary', headers=auth_headers).status_code == 400


def test_weekly_summary(client, auth_headers):
    _create_baby(client, auth_headers, baby_id='b1')
    client.post('/api/babies/b1/events', json={'type': 'drink', 'timestamp': T0, 'quantity': 30}, headers=auth_headers)

    response = client.get('/api/babies/b1/summary/week?today=2024-03-10&days=2', headers=auth_headers)
    days = response.get_json()['days']
    assert [d['dateKey'] for d in days] == ['2024-03-10', '2024-03-09']
    assert days[0]['drinkMl'] == 30


def test_quick_actions(client, auth_headers):
    _create_baby(client, auth_headers, baby_id='b1')
    actions = client.get('/api/babies/b1/quick-actions', headers=auth_headers).get_json()['actions']
    assert len(actions) == 6

    removed = client.delete('/api/babies/b1/quick-actions/wake', headers=auth_headers).get_json()['actions']
    assert 'wake' not in [a['type'] for a in removed]

    added = client.post('/api/babies/b1/quick-actions', json={'type': 'wake', 'label': '기상'}, headers=auth_headers)
    assert added.status_code == 201
    assert client.post('/api/babies/b1/quick-actions', json={'type': 'wake'}, headers=auth_headers).status_code == 400

    moved = client.post('/api/babies/b1/quick-actions/reorder', json={'from': 5, 'to': 0}, headers=auth_headers)
    assert moved.get_json()['actions'][0] == {'type': 'wake', 'label': '기상'}

    replaced = client.put('/api/babies/b1/quick-actions', json={'actions': [{'type': 'feed', 'label': '밥'}]},
                          headers=auth_headers)
    assert replaced.get_json()['actions'] == [{'type': 'feed', 'label': '밥'}]
    assert client.delete('/api/babies/b1/quick-actions/bath', headers=auth_headers).status_code == 400


def test_growth_ledger(client, auth_headers):
    _create_baby(client, auth_headers, baby_id='b1')
    created = client.post('/api/babies/b1/growth', json={'date': '2024-1-5', 'height': 55.5}, headers=auth_headers)
    assert created.status_code == 201
    assert created.get_json()['date'] == '2024-01-05'

    assert client.post('/api/babies/b1/growth', json={'date': '2024-01-06'}, headers=auth_headers).status_code == 400
    latest = client.get('/api/babies/b1/growth/latest', headers=auth_headers).get_json()
    assert latest['height'] == 55.5

    milestone = client.post('/api/babies/b1/milestones', json={'date': '2024-03-01', 'title': '첫 뒤집기'},
                            headers=auth_headers)
    assert milestone.status_code == 201
    records = client.get('/api/babies/b1/milestones', headers=auth_headers).get_json()['records']
    assert [r['title'] for r in records] == ['첫 뒤집기']


def test_invitation_redeem_and_member_permissions(client, auth_headers, member_client, member_headers):
    _create_baby(client, auth_headers)
    invitation = client.post('/api/babies/123456/invitations', headers=auth_headers)
    assert invitation.status_code == 201
    code = invitation.get_json()['code']

    # 구성원은 초대 코드를 발급할 수 없음
    redeemed = member_client.post('/api/sharing/redeem', json={'code': code}, headers=member_headers)
    assert redeemed.status_code == 200
    assert redeemed.get_json()['baby']['role'] == 'member'
    assert member_client.post('/api/babies/123456/invitations', headers=member_headers).status_code == 403

    # 구성원은 아기 프로필을 삭제할 수 없음
    forbidden = member_client.delete('/api/babies/123456', headers=member_headers)
    assert forbidden.status_code == 403
    assert forbidden.get_json()['error_code'] == 'FORBIDDEN'

    members = client.get('/api/babies/123456/members', headers=auth_headers).get_json()['members']
    assert [m['userId'] for m in members] == ['user-member']

    exited = member_client.post('/api/babies/123456/exit', headers=member_headers)
    assert exited.get_json()['removedJoinRecords'] == 1


def test_redeem_failures(member_client, member_headers):
    malformed = member_client.post('/api/sharing/redeem', json={'code': '12ab'}, headers=member_headers)
    assert malformed.status_code == 400

    unknown = member_client.post('/api/sharing/redeem', json={'code': '000000'}, headers=member_headers)
    assert unknown.status_code == 404
    assert unknown.get_json()['error_code'] == 'INVALID_INVITATION'


def test_reconcile_endpoint(client, auth_headers):
    _create_baby(client, auth_headers, baby_id='b1')
    report = client.post('/api/sharing/reconcile', headers=auth_headers).get_json()
    assert report == {'updated': ['b1'], 'removed': [], 'added': [], 'failed': []}


def test_remote_outage_maps_to_service_unavailable(client, auth_headers, remote):
    _create_baby(client, auth_headers, baby_id='b1')
    remote.offline = True
    response = client.post('/api/babies/b1/invitations', headers=auth_headers)
    assert response.status_code == 503
    assert response.get_json()['error_code'] == 'REMOTE_UNAVAILABLE'


def test_unknown_baby_routes_answer_not_found(client, auth_headers):
    assert client.get('/api/babies/b1/events?date=2024-03-10', headers=auth_headers).status_code == 404
    assert client.post('/api/babies/b1/growth', json={'date': '2024-01-05', 'height': 50},
                       headers=auth_headers).status_code == 404
    response = client.get('/api/babies/b1/quick-actions', headers=auth_headers)
    assert response.status_code == 404
    assert response.get_json()['error_code'] == 'NOT_FOUND'


def test_callers_on_one_server_keep_separate_baby_lists(app, client, auth_headers):
    """같은 서버에 접속한 다른 사용자는 자신의 아기 목록과 역할만 봄"""
    with app.app_context():
        other_token = create_caller_token(CallerIdentity(user_id='user-other', nickname='이모'))
    other_headers = {'Authorization': f'Bearer {other_token}'}

    _create_baby(client, auth_headers)
    client.post('/api/babies/123456/events', json={'type': 'feed', 'timestamp': T0, 'quantity': 120},
                headers=auth_headers)
    code = client.post('/api/babies/123456/invitations', headers=auth_headers).get_json()['code']

    assert client.get('/api/babies', headers=other_headers).get_json()['babies'] == []
    assert client.get('/api/babies/123456/events?date=2024-03-10', headers=other_headers).status_code == 404
    assert client.delete('/api/babies/123456', headers=other_headers).status_code == 404

    joined = client.post('/api/sharing/redeem', json={'code': code}, headers=other_headers)
    assert joined.get_json()['baby']['role'] == 'member'
    events = client.get('/api/babies/123456/events?date=2024-03-10', headers=other_headers).get_json()['events']
    assert [e['quantity'] for e in events] == [120]

    owner_view = client.get('/api/babies', headers=auth_headers).get_json()['babies']
    assert [(b['id'], b['role']) for b in owner_view] == [('123456', 'owner')]
    assert client.delete('/api/babies/123456', headers=other_headers).status_code == 403
    assert client.delete('/api/babies/123456', headers=auth_headers).status_code == 200
