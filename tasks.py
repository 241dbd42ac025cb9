from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import jwt_required
from marshmallow import fields, validate
from models import (
    db, Task, Project, User, ROLE_TEAM_MEMBER, TASK_STATUSES, TASK_PRIORITIES,
    isoformat, load_by_ids
)
from auth import get_current_user
from activities import record_activity
from permissions import (
    capability_required, can_manage_project, can_manage_task, can_update_task_status_only
)
from validation import BlankAwareSchema, LooseDate, validate_request_data
import logging

tasks_bp = Blueprint('tasks', __name__)
logger = logging.getLogger(__name__)

# ============================================
# Input Validation Schemas
# ============================================

class CreateTaskSchema(BlankAwareSchema):
    """建立任務驗證"""
    KEEP_IF_BLANK = ('priority',)
    CLEAR_IF_BLANK = ('description', 'assignedTo', 'dueDate')

    title = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=255),
        error_messages={'required': 'Task title is required'}
    )
    description = fields.Str(allow_none=True, validate=validate.Length(max=5000))
    project_id = fields.Int(
        required=True,
        data_key='projectId',
        error_messages={'required': 'Project is required'}
    )
    assigned_to = fields.Int(allow_none=True, data_key='assignedTo')
    priority = fields.Str(validate=validate.OneOf(TASK_PRIORITIES), load_default='medium')
    due_date = LooseDate(allow_none=True, data_key='dueDate')

class UpdateTaskSchema(BlankAwareSchema):
    """
    更新任務驗證 (admin / project_manager)

    title / status / priority 空值保留舊值;
    description / assignedTo / dueDate 有帶就覆蓋,空字串或 null 代表清空
    """
    KEEP_IF_BLANK = ('title', 'status', 'priority')
    CLEAR_IF_BLANK = ('description', 'assignedTo', 'dueDate')

    title = fields.Str(validate=validate.Length(min=1, max=255))
    description = fields.Str(allow_none=True, validate=validate.Length(max=5000))
    assigned_to = fields.Int(allow_none=True, data_key='assignedTo')
    status = fields.Str(validate=validate.OneOf(TASK_STATUSES))
    priority = fields.Str(validate=validate.OneOf(TASK_PRIORITIES))
    due_date = LooseDate(allow_none=True, data_key='dueDate')

class StatusUpdateSchema(BlankAwareSchema):
    """被指派的 team_member 只能改 status,其他欄位直接忽略"""
    KEEP_IF_BLANK = ('status',)

    status = fields.Str(validate=validate.OneOf(TASK_STATUSES))

# ============================================
# 輔助函數
# ============================================

def serialize_tasks(tasks, detailed=False):
    """
    任務輸出格式

    project 與 assignedTo 用 IN 查詢一次取回;detailed 時 project 會多帶 owner / members
    """
    projects = load_by_ids(Project, [t.project_id for t in tasks])
    users = load_by_ids(User, [t.assigned_to for t in tasks])

    result = []
    for task in tasks:
        project = projects.get(task.project_id)
        assignee = users.get(task.assigned_to)

        project_data = None
        if project:
            project_data = {'id': project.id, 'name': project.name}
            if detailed:
                project_data['owner'] = project.owner_id
                project_data['members'] = project.member_ids

        result.append({
            'id': task.id,
            'title': task.title,
            'description': task.description,
            'status': task.status,
            'priority': task.priority,
            'dueDate': isoformat(task.due_date),
            'project': project_data,
            'assignedTo': assignee.to_summary() if assignee else None,
            'createdAt': isoformat(task.created_at),
            'updatedAt': isoformat(task.updated_at)
        })
    return result


def serialize_task(task, detailed=False):
    return serialize_tasks([task], detailed=detailed)[0]


def newest_first(query):
    return query.order_by(Task.created_at.desc(), Task.id.desc())


def assignee_exists(user_id):
    return user_id is None or db.session.get(User, user_id) is not None


def clean_text(value):
    return value.strip() if isinstance(value, str) else value

# ============================================
# 查詢任務
# ============================================

@tasks_bp.route('', methods=['GET'])
@jwt_required()
def get_tasks():
    """
    查詢任務列表

    team_member 只看得到指派給自己的任務 (projectId 篩選仍然有效)
    """
    current_user = get_current_user()
    if not current_user:
        return jsonify({'message': 'Authentication required'}), 401

    query = Task.query

    project_id = request.args.get('projectId', type=int)
    if project_id:
        query = query.filter_by(project_id=project_id)

    if current_user.role == ROLE_TEAM_MEMBER:
        query = query.filter_by(assigned_to=current_user.id)

    tasks = newest_first(query).all()
    return jsonify(serialize_tasks(tasks)), 200


@tasks_bp.route('/<int:task_id>', methods=['GET'])
@jwt_required()
def get_task(task_id):
    current_user = get_current_user()
    if not current_user:
        return jsonify({'message': 'Authentication required'}), 401

    task = db.session.get(Task, task_id)
    if not task:
        return jsonify({'message': 'Task not found'}), 404

    return jsonify(serialize_task(task, detailed=True)), 200


@tasks_bp.route('/project/<int:project_id>', methods=['GET'])
@jwt_required()
def get_tasks_by_project(project_id):
    """查詢某個專案的所有任務 (看板與專案頁面用)"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'message': 'Authentication required'}), 401

    tasks = newest_first(Task.query.filter_by(project_id=project_id)).all()
    return jsonify(serialize_tasks(tasks)), 200

# ============================================
# 建立任務
# ============================================

@tasks_bp.route('', methods=['POST'])
@jwt_required()
@capability_required('create_task')
def create_task():
    """
    在專案中建立任務

    只有該專案的 owner 或 admin 可以建立
    """
    current_user = get_current_user()

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'message': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(CreateTaskSchema, data)
    if not is_valid:
        return jsonify({'message': 'Validation failed', 'details': result}), 400

    title = clean_text(result['title'])
    if not title:
        return jsonify({'message': 'Task title is required'}), 400

    project = db.session.get(Project, result['project_id'])
    if not project:
        return jsonify({'message': 'Project not found'}), 404

    if not can_manage_project(current_user, project):
        return jsonify({'message': 'Not authorized to create tasks in this project'}), 403

    if not assignee_exists(result.get('assigned_to')):
        return jsonify({'message': 'Assigned user not found'}), 400

    task = Task(
        title=title,
        description=clean_text(result.get('description')),
        project_id=project.id,
        assigned_to=result.get('assigned_to'),
        priority=result.get('priority') or 'medium',
        due_date=result.get('due_date')
    )

    try:
        db.session.add(task)
        db.session.flush()  # 取得 task.id

        record_activity(
            'task_created',
            f'Task "{task.title}" was created in project "{project.name}"',
            current_user.id,
            project_id=project.id,
            task_id=task.id
        )

        db.session.commit()

        logger.info(f"Task created: {task.title} in project {project.id} by user {current_user.email}")

        return jsonify(serialize_task(task)), 201

    except Exception as e:
        db.session.rollback()
        logger.error(f"Task creation error: {str(e)}", exc_info=True)
        return jsonify({'message': 'Task creation failed due to server error'}), 500

# ============================================
# 更新任務
# ============================================

def can_update_task(user, task):
    """
    team_member 只能更新指派給自己的任務;
    admin / project_manager 在 STRICT_TASK_MANAGEMENT 開啟時必須能管理該專案
    """
    if user.role == ROLE_TEAM_MEMBER:
        return can_update_task_status_only(user, task)

    if current_app.config['STRICT_TASK_MANAGEMENT']:
        project = db.session.get(Project, task.project_id)
        return can_manage_task(user, task, project)

    return True


def update_status_as_assignee(task, data, current_user):
    """
    team_member 更新自己被指派的任務

    只處理 status;沒帶 status 就什麼都不寫,直接回傳原本的任務
    """
    is_valid, result = validate_request_data(StatusUpdateSchema, data)
    if not is_valid:
        return jsonify({'message': 'Validation failed', 'details': result}), 400

    if 'status' not in result:
        return jsonify(serialize_task(task)), 200

    old_status = task.status
    task.status = result['status']

    try:
        record_activity(
            'task_status_changed',
            f'Task "{task.title}" status changed from "{old_status}" to "{task.status}"',
            current_user.id,
            project_id=task.project_id,
            task_id=task.id
        )

        db.session.commit()

        logger.info(f"Task {task.id} status {old_status} -> {task.status} by user {current_user.email}")

        return jsonify(serialize_task(task)), 200

    except Exception as e:
        db.session.rollback()
        logger.error(f"Task status update error: {str(e)}", exc_info=True)
        return jsonify({'message': 'Task update failed due to server error'}), 500


def update_as_manager(task, data, current_user):
    """admin / project_manager 可以更新所有欄位"""
    is_valid, result = validate_request_data(UpdateTaskSchema, data)
    if not is_valid:
        return jsonify({'message': 'Validation failed', 'details': result}), 400

    if 'assigned_to' in result and not assignee_exists(result['assigned_to']):
        return jsonify({'message': 'Assigned user not found'}), 400

    for field in ['title', 'description', 'assigned_to', 'status', 'priority', 'due_date']:
        if field in result:
            setattr(task, field, clean_text(result[field]))

    try:
        record_activity(
            'task_updated',
            f'Task "{task.title}" was updated',
            current_user.id,
            project_id=task.project_id,
            task_id=task.id
        )

        db.session.commit()

        logger.info(f"Task {task.id} updated by user {current_user.email}")

        return jsonify(serialize_task(task)), 200

    except Exception as e:
        db.session.rollback()
        logger.error(f"Task update error: {str(e)}", exc_info=True)
        return jsonify({'message': 'Task update failed due to server error'}), 500


@tasks_bp.route('/<int:task_id>', methods=['PUT'])
@jwt_required()
def update_task(task_id):
    """
    更新任務

    team_member: 只能改指派給自己的任務的 status
    admin / project_manager: 可以改所有欄位
    """
    current_user = get_current_user()
    if not current_user:
        return jsonify({'message': 'Authentication required'}), 401

    task = db.session.get(Task, task_id)
    if not task:
        return jsonify({'message': 'Task not found'}), 404

    # 先檢查權限再看 body
    if not can_update_task(current_user, task):
        return jsonify({'message': 'Not authorized to update this task'}), 403

    data = request.get_json(silent=True)
    if data is None:
        return jsonify({'message': 'Request body must be JSON'}), 400

    if current_user.role == ROLE_TEAM_MEMBER:
        return update_status_as_assignee(task, data, current_user)

    return update_as_manager(task, data, current_user)

# ============================================
# 刪除任務
# ============================================

@tasks_bp.route('/<int:task_id>', methods=['DELETE'])
@jwt_required()
@capability_required('delete_task')
def delete_task(task_id):
    """
    刪除任務

    只有專案 owner 或 admin;動態紀錄只帶 project,因為任務即將不存在
    """
    current_user = get_current_user()

    task = db.session.get(Task, task_id)
    if not task:
        return jsonify({'message': 'Task not found'}), 404

    project = db.session.get(Project, task.project_id)
    if not can_manage_task(current_user, task, project):
        return jsonify({'message': 'Not authorized to delete this task'}), 403

    try:
        task_title = task.title

        record_activity(
            'task_deleted',
            f'Task "{task_title}" was deleted from project "{project.name}"',
            current_user.id,
            project_id=project.id
        )

        db.session.delete(task)
        db.session.commit()

        logger.info(f"Task deleted: {task_title} by user {current_user.email}")

        return jsonify({'message': 'Task removed'}), 200

    except Exception as e:
        db.session.rollback()
        logger.error(f"Task deletion error: {str(e)}", exc_info=True)
        return jsonify({'message': 'Task deletion failed due to server error'}), 500
