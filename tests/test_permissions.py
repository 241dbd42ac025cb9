from types import SimpleNamespace

from permissions import (
    has_capability, can_view_project, can_manage_project, can_create_project,
    can_create_task, can_manage_task, can_update_task_status_only
)


def make_user(user_id, role):
    return SimpleNamespace(id=user_id, role=role)


def make_project(owner_id, member_ids=()):
    return SimpleNamespace(owner_id=owner_id, member_ids=list(member_ids))


admin = make_user(1, 'admin')
pm = make_user(2, 'project_manager')
pm2 = make_user(3, 'project_manager')
member = make_user(4, 'team_member')


def test_capability_table_follows_role_order():
    for capability in ('create_project', 'create_task', 'delete_task', 'list_assignable_users'):
        assert has_capability(admin, capability)
        assert has_capability(pm, capability)
        assert not has_capability(member, capability)

    assert has_capability(admin, 'manage_users')
    assert not has_capability(pm, 'manage_users')
    assert not has_capability(None, 'create_project')


def test_unknown_role_has_no_capability():
    assert not has_capability(make_user(9, 'guest'), 'create_task')


def test_create_predicates():
    assert can_create_project(admin) and can_create_task(admin)
    assert can_create_project(pm) and can_create_task(pm)
    assert not can_create_project(member)
    assert not can_create_task(member)


def test_view_project():
    project = make_project(owner_id=pm.id, member_ids=[member.id])

    assert can_view_project(admin, project)
    assert can_view_project(pm, project)
    assert can_view_project(member, project)
    assert not can_view_project(pm2, project)
    assert not can_view_project(None, project)


def test_membership_does_not_grant_management():
    project = make_project(owner_id=admin.id, member_ids=[pm.id])

    assert can_view_project(pm, project)
    assert not can_manage_project(pm, project)
    assert can_manage_project(admin, project)


def test_manage_task_follows_project():
    project = make_project(owner_id=pm.id)
    task = SimpleNamespace(assigned_to=member.id)

    assert can_manage_task(pm, task, project)
    assert can_manage_task(admin, task, project)
    assert not can_manage_task(pm2, task, project)
    assert not can_manage_task(member, task, project)


def test_status_only_requires_team_member_assignee():
    assigned = SimpleNamespace(assigned_to=member.id)
    unassigned = SimpleNamespace(assigned_to=None)
    assigned_to_pm = SimpleNamespace(assigned_to=pm.id)

    assert can_update_task_status_only(member, assigned)
    assert not can_update_task_status_only(member, unassigned)
    assert not can_update_task_status_only(make_user(5, 'team_member'), assigned)
    # 非 team_member 走完整更新的流程
    assert not can_update_task_status_only(pm, assigned_to_pm)
