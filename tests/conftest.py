import pytest
from flask_jwt_extended import create_access_token
from app import create_app
from auth import create_user
from config import TestingConfig
from models import db, ROLE_ADMIN, ROLE_PROJECT_MANAGER, ROLE_TEAM_MEMBER


@pytest.fixture
def app():
    """每個測試一個新的 app (記憶體資料庫)"""
    app = create_app(TestingConfig)
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    def _make_user(name, role=ROLE_TEAM_MEMBER, password='secret123'):
        with app.app_context():
            user = create_user(name, f'{name.lower()}@example.com', password, role=role)
            db.session.commit()
            return user.id
    return _make_user


@pytest.fixture
def auth_headers(app):
    def _auth_headers(user_id):
        with app.app_context():
            token = create_access_token(identity=str(user_id))
        return {'Authorization': f'Bearer {token}'}
    return _auth_headers


@pytest.fixture
def users(make_user):
    return {
        'admin': make_user('Admin', ROLE_ADMIN),
        'pm': make_user('Paula', ROLE_PROJECT_MANAGER),
        'pm2': make_user('Quinn', ROLE_PROJECT_MANAGER),
        'member': make_user('Mia'),
        'member2': make_user('Noah'),
    }


@pytest.fixture
def headers(users, auth_headers):
    return {key: auth_headers(user_id) for key, user_id in users.items()}


@pytest.fixture
def create_project(client, headers):
    def _create_project(owner='pm', **body):
        body.setdefault('name', 'Project')
        resp = client.post('/projects', json=body, headers=headers[owner])
        assert resp.status_code == 201, resp.get_json()
        return resp.get_json()
    return _create_project


@pytest.fixture
def create_task(client, headers):
    def _create_task(project_id, owner='pm', **body):
        body.setdefault('title', 'Task')
        body['projectId'] = project_id
        resp = client.post('/tasks', json=body, headers=headers[owner])
        assert resp.status_code == 201, resp.get_json()
        return resp.get_json()
    return _create_task
