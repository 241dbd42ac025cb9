from models import db, User


def register(client, **overrides):
    body = {'name': 'Rita', 'email': 'Rita@Example.com', 'password': 'secret123'}
    body.update(overrides)
    return client.post('/auth/register', json=body)


def login(client, email='rita@example.com', password='secret123'):
    return client.post('/auth/login', json={'email': email, 'password': password})


def bearer(token):
    return {'Authorization': f'Bearer {token}'}

# ============================================
# 註冊與登入
# ============================================

def test_register_creates_team_member(client):
    resp = register(client, role='admin')

    assert resp.status_code == 201
    user = resp.get_json()['user']
    assert user['email'] == 'rita@example.com'
    assert user['role'] == 'team_member'


def test_register_rejects_duplicates_and_bad_input(client):
    assert register(client).status_code == 201

    resp = register(client, email='RITA@example.com')
    assert resp.status_code == 409
    assert resp.get_json()['message'] == 'Email already exists'

    assert register(client, email='not-an-email').status_code == 400
    assert register(client, email='short@example.com', password='123').status_code == 400
    assert client.post('/auth/register', data='plain text').status_code == 400


def test_login_and_me(client):
    register(client)

    resp = login(client, email='RITA@example.com')
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['access_token'] and body['refresh_token']
    assert body['user']['name'] == 'Rita'

    resp = client.get('/auth/me', headers=bearer(body['access_token']))
    assert resp.status_code == 200
    assert resp.get_json()['email'] == 'rita@example.com'


def test_login_invalid_credentials(client):
    register(client)

    for resp in (login(client, password='wrong-password'), login(client, email='nobody@example.com')):
        assert resp.status_code == 401
        assert resp.get_json()['message'] == 'Invalid credentials'


def test_refresh_token(client):
    register(client)
    tokens = login(client).get_json()

    resp = client.post('/auth/refresh', headers=bearer(tokens['refresh_token']))
    assert resp.status_code == 200
    assert resp.get_json()['access_token']

    # access token 不能拿來 refresh
    resp = client.post('/auth/refresh', headers=bearer(tokens['access_token']))
    assert resp.status_code == 401


def test_missing_and_invalid_token(client):
    resp = client.get('/auth/me')
    assert resp.status_code == 401
    assert resp.get_json()['error'] == 'authorization_required'

    resp = client.get('/auth/me', headers=bearer('not.a.token'))
    assert resp.status_code == 401
    assert resp.get_json()['error'] == 'invalid_token'

# ============================================
# 個人資料與密碼
# ============================================

def test_update_profile(client, headers, users):
    resp = client.patch('/auth/me', json={'name': 'Mia Wong'}, headers=headers['member'])
    assert resp.status_code == 200
    assert resp.get_json()['user']['name'] == 'Mia Wong'

    resp = client.patch('/auth/me', json={'email': 'paula@example.com'}, headers=headers['member'])
    assert resp.status_code == 409

    resp = client.patch('/auth/me', json={'email': 'MIA.W@example.com'}, headers=headers['member'])
    assert resp.status_code == 200
    assert resp.get_json()['user']['email'] == 'mia.w@example.com'


def test_role_cannot_be_self_assigned(app, client, headers, users):
    client.patch('/auth/me', json={'role': 'admin'}, headers=headers['member'])

    with app.app_context():
        assert db.session.get(User, users['member']).role == 'team_member'


def test_change_password(client):
    register(client)
    token = login(client).get_json()['access_token']

    resp = client.post(
        '/auth/change-password',
        json={'currentPassword': 'wrong', 'newPassword': 'another123'},
        headers=bearer(token)
    )
    assert resp.status_code == 401

    resp = client.post(
        '/auth/change-password',
        json={'currentPassword': 'secret123', 'newPassword': 'another123'},
        headers=bearer(token)
    )
    assert resp.status_code == 200

    assert login(client).status_code == 401
    assert login(client, password='another123').status_code == 200
