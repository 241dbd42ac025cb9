from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import jwt_required
from models import db, Activity, User, Project, Task, ACTIVITY_ACTIONS, isoformat, load_by_ids
from auth import get_current_user
import logging

activities_bp = Blueprint('activities', __name__)
logger = logging.getLogger(__name__)

# 專案頁面固定只顯示最新 50 筆
PROJECT_FEED_LIMIT = 50

# ============================================
# 寫入動態紀錄
# ============================================

def record_activity(action, description, actor_id, project_id=None, task_id=None):
    """
    新增一筆動態紀錄

    只加進 session,不 commit:跟主要的資料變更在同一個 commit 寫入。
    紀錄寫入後不會再被修改或刪除。
    """
    if action not in ACTIVITY_ACTIONS:
        raise ValueError(f"Unknown activity action: {action}")

    activity = Activity(
        action=action,
        description=description,
        user_id=actor_id,
        project_id=project_id,
        task_id=task_id
    )
    db.session.add(activity)
    return activity

# ============================================
# 輸出格式
# ============================================

def serialize_activities(activities):
    """
    把 user / project / task 的 id 轉成顯示用資料

    每種關聯各一次 IN 查詢;對應不到 (已刪除) 的就給 None
    """
    users = load_by_ids(User, [a.user_id for a in activities])
    projects = load_by_ids(Project, [a.project_id for a in activities])
    tasks = load_by_ids(Task, [a.task_id for a in activities])

    result = []
    for activity in activities:
        user = users.get(activity.user_id)
        project = projects.get(activity.project_id)
        task = tasks.get(activity.task_id)
        result.append({
            'id': activity.id,
            'action': activity.action,
            'description': activity.description,
            'user': user.to_summary() if user else None,
            'project': {'id': project.id, 'name': project.name} if project else None,
            'task': {'id': task.id, 'title': task.title} if task else None,
            'createdAt': isoformat(activity.created_at)
        })
    return result


def newest_first(query):
    return query.order_by(Activity.created_at.desc(), Activity.id.desc())


def resolve_limit(raw_limit):
    """limit 沒帶、不是數字或 <= 0 時用預設值,超過上限就截到上限"""
    default_limit = current_app.config['ACTIVITY_DEFAULT_LIMIT']
    max_limit = current_app.config['MAX_PAGE_SIZE']
    if raw_limit is None or raw_limit <= 0:
        return default_limit
    return min(raw_limit, max_limit)

# ============================================
# 查詢動態紀錄
# ============================================

@activities_bp.route('', methods=['GET'])
@jwt_required()
def get_activities():
    """
    查詢動態紀錄 (最新的在前)

    Query params:
        projectId: 只看某個專案
        limit: 筆數,預設 50
    """
    current_user = get_current_user()
    if not current_user:
        return jsonify({'message': 'Authentication required'}), 401

    project_id = request.args.get('projectId', type=int)
    limit = resolve_limit(request.args.get('limit', type=int))

    query = Activity.query
    if project_id:
        query = query.filter_by(project_id=project_id)

    activities = newest_first(query).limit(limit).all()
    return jsonify(serialize_activities(activities)), 200


@activities_bp.route('/project/<int:project_id>', methods=['GET'])
@jwt_required()
def get_project_activities(project_id):
    """查詢某個專案的動態紀錄 (最多 50 筆)"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'message': 'Authentication required'}), 401

    activities = newest_first(
        Activity.query.filter_by(project_id=project_id)
    ).limit(PROJECT_FEED_LIMIT).all()

    return jsonify(serialize_activities(activities)), 200
