import logging
import os
from logging.handlers import RotatingFileHandler
from app import setup_logging
from models import db, User


def test_health_check(client):
    resp = client.get('/health')

    assert resp.status_code == 200
    assert resp.get_json()['status'] == 'healthy'
    assert resp.headers['X-Content-Type-Options'] == 'nosniff'
    assert resp.headers['X-Frame-Options'] == 'DENY'


def test_home_lists_endpoints(client):
    body = client.get('/').get_json()

    assert body['version'] == '1.0.0'
    assert set(body['endpoints']) == {'health', 'auth', 'projects', 'tasks', 'activities', 'users'}


def test_unknown_route_returns_json(client):
    resp = client.get('/nowhere')

    assert resp.status_code == 404
    assert resp.get_json()['error'] == 'not_found'


def test_method_not_allowed_returns_json(client):
    resp = client.patch('/health')

    assert resp.status_code == 405
    assert resp.get_json()['status'] == 405


def test_create_admin_command(app):
    runner = app.test_cli_runner()

    result = runner.invoke(args=[
        'create-admin', '--name', 'Root', '--email', 'Root@Example.com', '--password', 'secret123'
    ])
    assert result.exit_code == 0
    assert 'Created admin root@example.com' in result.output

    with app.app_context():
        user = User.query.filter_by(email='root@example.com').one()
        assert user.role == 'admin'


def test_create_admin_promotes_existing_user(app, client, users):
    runner = app.test_cli_runner()

    result = runner.invoke(args=[
        'create-admin', '--name', 'Mia', '--email', 'mia@example.com', '--password', 'ignored1'
    ])
    assert result.exit_code == 0
    assert 'Promoted mia@example.com to admin' in result.output

    with app.app_context():
        assert db.session.get(User, users['member']).role == 'admin'

    # 密碼沒有被改
    resp = client.post('/auth/login', json={'email': 'mia@example.com', 'password': 'secret123'})
    assert resp.status_code == 200


def test_setup_logging_attaches_each_file_once(app, tmp_path):
    app.config['LOG_DIR'] = str(tmp_path)
    root_logger = logging.getLogger()

    setup_logging(app)
    setup_logging(app)

    attached = [
        h for h in root_logger.handlers
        if isinstance(h, RotatingFileHandler) and h.baseFilename.startswith(str(tmp_path))
    ]
    try:
        assert sorted(os.path.basename(h.baseFilename) for h in attached) == ['app.log', 'error.log']
    finally:
        for handler in attached:
            root_logger.removeHandler(handler)
            handler.close()
