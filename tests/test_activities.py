import pytest
from activities import record_activity, PROJECT_FEED_LIMIT
from models import db, Activity


def test_feed_is_newest_first_and_joined(client, headers, users, create_project, create_task):
    project = create_project(name='Alpha')
    task = create_task(project['id'], title='T1')
    client.put(f"/projects/{project['id']}", json={'status': 'completed'}, headers=headers['pm'])

    resp = client.get('/activities', headers=headers['member'])
    assert resp.status_code == 200
    feed = resp.get_json()

    assert [a['action'] for a in feed] == ['project_updated', 'task_created', 'project_created']
    assert feed[1]['user'] == {'id': users['pm'], 'name': 'Paula', 'email': 'paula@example.com'}
    assert feed[1]['project'] == {'id': project['id'], 'name': 'Alpha'}
    assert feed[1]['task'] == {'id': task['id'], 'title': 'T1'}
    assert feed[0]['task'] is None
    assert feed[0]['createdAt']


def test_feed_project_filter(client, headers, create_project):
    first = create_project(name='First')
    second = create_project(name='Second')

    resp = client.get(f"/activities?projectId={first['id']}", headers=headers['pm'])
    feed = resp.get_json()
    assert len(feed) == 1
    assert feed[0]['project']['id'] == first['id']

    resp = client.get(f"/activities/project/{second['id']}", headers=headers['pm'])
    assert [a['project']['name'] for a in resp.get_json()] == ['Second']


@pytest.mark.parametrize('raw_limit, expected', [
    ('2', 2),
    ('0', 4),
    ('-3', 4),
    ('abc', 4),
])
def test_feed_limit(client, headers, create_project, raw_limit, expected):
    for i in range(4):
        create_project(name=f'P{i}')

    resp = client.get(f'/activities?limit={raw_limit}', headers=headers['pm'])
    assert len(resp.get_json()) == expected


def test_feed_limit_is_capped(app, client, headers, create_project):
    for i in range(4):
        create_project(name=f'P{i}')
    app.config['MAX_PAGE_SIZE'] = 3

    resp = client.get('/activities?limit=500', headers=headers['pm'])
    assert len(resp.get_json()) == 3


def test_project_feed_is_capped(app, client, headers, users):
    with app.app_context():
        for i in range(PROJECT_FEED_LIMIT + 5):
            record_activity('project_updated', f'update {i}', users['pm'], project_id=77)
        db.session.commit()

    resp = client.get('/activities/project/77', headers=headers['pm'])
    feed = resp.get_json()
    assert len(feed) == PROJECT_FEED_LIMIT
    assert feed[0]['description'] == f'update {PROJECT_FEED_LIMIT + 4}'
    # 專案不存在時 project 顯示 null
    assert feed[0]['project'] is None


def test_record_activity_rejects_unknown_action(app, users):
    with app.app_context():
        with pytest.raises(ValueError):
            record_activity('project_archived', 'nope', users['pm'])
        assert Activity.query.count() == 0


def test_feed_requires_token(client):
    assert client.get('/activities').status_code == 401
