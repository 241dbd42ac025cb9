from functools import wraps
from flask import jsonify
from models import ROLE_ADMIN, ROLE_PROJECT_MANAGER, ROLE_TEAM_MEMBER
from auth import get_current_user
import logging

logger = logging.getLogger(__name__)

# ============================================
# 角色權限表
# ============================================

# 角色高低: admin ⊇ project_manager ⊇ team_member
ROLE_RANK = {
    ROLE_TEAM_MEMBER: 0,
    ROLE_PROJECT_MANAGER: 1,
    ROLE_ADMIN: 2,
}

# 每個功能需要的最低角色,路由裡不要再寫 ['admin', 'project_manager'] 這種 list
CAPABILITIES = {
    'create_project': ROLE_PROJECT_MANAGER,
    'create_task': ROLE_PROJECT_MANAGER,
    'delete_task': ROLE_PROJECT_MANAGER,
    'list_assignable_users': ROLE_PROJECT_MANAGER,
    'manage_users': ROLE_ADMIN,
}


def has_capability(user, capability):
    """user 的角色是否達到 capability 需要的最低角色"""
    if user is None:
        return False
    required = CAPABILITIES[capability]
    return ROLE_RANK.get(user.role, -1) >= ROLE_RANK[required]


def is_admin(user):
    return user is not None and user.role == ROLE_ADMIN

# ============================================
# 授權判斷 (純函數,不碰資料庫)
# ============================================

def is_project_owner(user, project):
    return user is not None and project.owner_id == user.id


def can_view_project(user, project):
    """admin、owner 或成員可以查看專案"""
    return (
        is_admin(user)
        or is_project_owner(user, project)
        or (user is not None and user.id in project.member_ids)
    )


def can_manage_project(user, project):
    """
    admin 或 owner 可以管理專案

    包含更新、刪除、新增/移除成員,以及在專案內建立/刪除任務。
    只是成員不代表可以管理。
    """
    return is_admin(user) or is_project_owner(user, project)


def can_create_project(user):
    return has_capability(user, 'create_project')


def can_create_task(user):
    return has_capability(user, 'create_task')


def can_manage_task(user, task, project):
    return can_manage_project(user, project)


def can_update_task_status_only(user, task):
    """被指派的 team_member 只能改任務狀態"""
    return (
        user is not None
        and user.role == ROLE_TEAM_MEMBER
        and task.assigned_to is not None
        and task.assigned_to == user.id
    )

# ============================================
# Route 裝飾器
# ============================================

def capability_required(capability):
    """
    檢查目前使用者的角色是否有某個功能的權限

    需要放在 @jwt_required() 下面
    """
    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            current_user = get_current_user()
            if not current_user:
                return jsonify({'message': 'Authentication required'}), 401

            if not has_capability(current_user, capability):
                logger.warning(
                    f"User {current_user.id} ({current_user.role}) denied capability {capability}"
                )
                return jsonify({
                    'message': f"Role '{current_user.role}' is not authorized to access this route"
                }), 403

            return view(*args, **kwargs)
        return wrapper
    return decorator
