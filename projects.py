from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required
from sqlalchemy import or_
from marshmallow import Schema, EXCLUDE, fields, validate
from models import db, Project, ProjectMember, Task, User, PROJECT_STATUSES, isoformat, load_by_ids
from auth import get_current_user
from activities import record_activity
from permissions import capability_required, can_view_project, can_manage_project, is_admin
from validation import BlankAwareSchema, validate_request_data
import logging

projects_bp = Blueprint('projects', __name__)
logger = logging.getLogger(__name__)

# ============================================
# Input Validation Schemas
# ============================================

class CreateProjectSchema(Schema):
    """建立專案驗證"""
    class Meta:
        unknown = EXCLUDE

    name = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=255),
        error_messages={'required': 'Project name is required'}
    )
    description = fields.Str(allow_none=True, validate=validate.Length(max=2000))
    members = fields.List(fields.Int(), load_default=list, allow_none=True)

class UpdateProjectSchema(BlankAwareSchema):
    """
    更新專案驗證

    name / status 空值保留舊值;description 有帶就覆蓋 (可以清空);
    members 有帶而且不是 null 就整個取代
    """
    KEEP_IF_BLANK = ('name', 'status', 'members')
    CLEAR_IF_BLANK = ('description',)

    name = fields.Str(validate=validate.Length(min=1, max=255))
    description = fields.Str(allow_none=True, validate=validate.Length(max=2000))
    status = fields.Str(validate=validate.OneOf(PROJECT_STATUSES))
    members = fields.List(fields.Int())

class AddMemberSchema(Schema):
    """新增成員驗證"""
    class Meta:
        unknown = EXCLUDE

    user_id = fields.Int(required=True, data_key='userId')

# ============================================
# 輔助函數
# ============================================

def visible_projects_query(user):
    """admin 看全部,其他人只看自己是 owner 或成員的專案"""
    query = Project.query
    if not is_admin(user):
        member_project_ids = db.session.query(ProjectMember.project_id).filter(
            ProjectMember.user_id == user.id
        )
        query = query.filter(or_(
            Project.owner_id == user.id,
            Project.id.in_(member_project_ids)
        ))
    return query


def serialize_projects(projects):
    """
    專案輸出格式,owner 與 members 轉成 {id, name, email}

    所有專案的使用者用一次查詢取回
    """
    user_ids = []
    for project in projects:
        user_ids.append(project.owner_id)
        user_ids.extend(project.member_ids)
    users = load_by_ids(User, user_ids)

    result = []
    for project in projects:
        owner = users.get(project.owner_id)
        result.append({
            'id': project.id,
            'name': project.name,
            'description': project.description,
            'status': project.status,
            'owner': owner.to_summary() if owner else None,
            'members': [users[uid].to_summary() for uid in project.member_ids if uid in users],
            'createdAt': isoformat(project.created_at),
            'updatedAt': isoformat(project.updated_at)
        })
    return result


def serialize_project(project):
    return serialize_projects([project])[0]


def find_unknown_users(user_ids):
    known = load_by_ids(User, user_ids)
    return sorted({uid for uid in user_ids if uid not in known})


def clean_text(value):
    return value.strip() if isinstance(value, str) else value


def load_managed_project(project_id, current_user, forbidden_message='Not authorized'):
    """
    取得專案並檢查管理權限 (owner 或 admin)

    Returns:
        tuple: (project, error_response)
    """
    project = db.session.get(Project, project_id)
    if not project:
        return None, (jsonify({'message': 'Project not found'}), 404)

    if not can_manage_project(current_user, project):
        return None, (jsonify({'message': forbidden_message}), 403)

    return project, None

# ============================================
# 查詢專案
# ============================================

@projects_bp.route('', methods=['GET'])
@jwt_required()
def get_projects():
    """查詢我看得到的所有專案 (最新的在前)"""
    current_user = get_current_user()
    if not current_user:
        return jsonify({'message': 'Authentication required'}), 401

    projects = visible_projects_query(current_user).order_by(
        Project.created_at.desc(), Project.id.desc()
    ).all()

    return jsonify(serialize_projects(projects)), 200


@projects_bp.route('/<int:project_id>', methods=['GET'])
@jwt_required()
def get_project(project_id):
    current_user = get_current_user()
    if not current_user:
        return jsonify({'message': 'Authentication required'}), 401

    project = db.session.get(Project, project_id)
    if not project:
        return jsonify({'message': 'Project not found'}), 404

    if not can_view_project(current_user, project):
        return jsonify({'message': 'Not authorized to view this project'}), 403

    return jsonify(serialize_project(project)), 200

# ============================================
# 建立專案
# ============================================

@projects_bp.route('', methods=['POST'])
@jwt_required()
@capability_required('create_project')
def create_project():
    """
    建立新專案

    建立者就是 owner,owner 不會被放進 members
    """
    current_user = get_current_user()

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'message': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(CreateProjectSchema, data)
    if not is_valid:
        return jsonify({'message': 'Validation failed', 'details': result}), 400

    name = clean_text(result['name'])
    if not name:
        return jsonify({'message': 'Project name is required'}), 400

    members = result['members'] or []
    unknown = find_unknown_users(members)
    if unknown:
        return jsonify({'message': f"Unknown user id(s): {', '.join(map(str, unknown))}"}), 400

    project = Project(
        name=name,
        description=clean_text(result.get('description')),
        owner_id=current_user.id
    )
    project.set_members(members)

    try:
        db.session.add(project)
        db.session.flush()  # 取得 project.id 但不 commit

        record_activity(
            'project_created',
            f'Project "{project.name}" was created',
            current_user.id,
            project_id=project.id
        )

        db.session.commit()

        logger.info(f"Project created: {project.name} by user {current_user.email}")

        return jsonify(serialize_project(project)), 201

    except Exception as e:
        db.session.rollback()
        logger.error(f"Project creation error: {str(e)}", exc_info=True)
        return jsonify({'message': 'Project creation failed due to server error'}), 500

# ============================================
# 更新專案
# ============================================

@projects_bp.route('/<int:project_id>', methods=['PUT'])
@jwt_required()
def update_project(project_id):
    """
    部分更新專案

    只有 owner 或 admin 可以更新;沒帶的欄位維持原值
    """
    current_user = get_current_user()
    if not current_user:
        return jsonify({'message': 'Authentication required'}), 401

    project, error = load_managed_project(
        project_id, current_user, 'Not authorized to update this project'
    )
    if error:
        return error

    data = request.get_json(silent=True)
    if data is None:
        return jsonify({'message': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(UpdateProjectSchema, data)
    if not is_valid:
        return jsonify({'message': 'Validation failed', 'details': result}), 400

    if 'members' in result:
        unknown = find_unknown_users(result['members'])
        if unknown:
            return jsonify({'message': f"Unknown user id(s): {', '.join(map(str, unknown))}"}), 400

    if 'name' in result:
        project.name = clean_text(result['name'])
    if 'description' in result:
        project.description = clean_text(result['description'])
    if 'status' in result:
        project.status = result['status']
    if 'members' in result:
        project.set_members(result['members'])

    try:
        record_activity(
            'project_updated',
            f'Project "{project.name}" was updated',
            current_user.id,
            project_id=project.id
        )

        db.session.commit()

        logger.info(f"Project {project_id} updated by user {current_user.email}")

        return jsonify(serialize_project(project)), 200

    except Exception as e:
        db.session.rollback()
        logger.error(f"Project update error: {str(e)}", exc_info=True)
        return jsonify({'message': 'Project update failed due to server error'}), 500

# ============================================
# 刪除專案
# ============================================

@projects_bp.route('/<int:project_id>', methods=['DELETE'])
@jwt_required()
def delete_project(project_id):
    """
    刪除專案,連同專案內所有任務

    順序: 刪任務 → 寫動態紀錄 (不帶 project,因為專案即將不存在) → 刪專案,
    全部在同一個 commit
    """
    current_user = get_current_user()
    if not current_user:
        return jsonify({'message': 'Authentication required'}), 401

    project, error = load_managed_project(
        project_id, current_user, 'Not authorized to delete this project'
    )
    if error:
        return error

    try:
        project_name = project.name

        deleted_tasks = Task.query.filter_by(project_id=project.id).delete(
            synchronize_session=False
        )

        record_activity(
            'project_deleted',
            f'Project "{project_name}" was deleted',
            current_user.id
        )

        db.session.delete(project)
        db.session.commit()

        logger.info(
            f"Project deleted: {project_name} ({deleted_tasks} tasks) by user {current_user.email}"
        )

        return jsonify({'message': 'Project and associated tasks removed'}), 200

    except Exception as e:
        db.session.rollback()
        logger.error(f"Project deletion error: {str(e)}", exc_info=True)
        return jsonify({'message': 'Project deletion failed due to server error'}), 500

# ============================================
# 專案成員管理
# ============================================

@projects_bp.route('/<int:project_id>/members', methods=['POST'])
@jwt_required()
def add_project_member(project_id):
    """
    新增專案成員

    已經是成員 (或本來就是 owner) 回 400,成員列表不變
    """
    current_user = get_current_user()
    if not current_user:
        return jsonify({'message': 'Authentication required'}), 401

    project, error = load_managed_project(project_id, current_user)
    if error:
        return error

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'message': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(AddMemberSchema, data)
    if not is_valid:
        return jsonify({'message': 'Validation failed', 'details': result}), 400

    user_id = result['user_id']
    user = db.session.get(User, user_id)
    if not user:
        return jsonify({'message': 'User not found'}), 404

    if user_id == project.owner_id or user_id in project.member_ids:
        return jsonify({'message': 'User is already a member'}), 400

    try:
        project.add_member(user_id)

        record_activity(
            'member_added',
            f'A member was added to project "{project.name}"',
            current_user.id,
            project_id=project.id
        )

        db.session.commit()

        logger.info(f"Member added to project {project_id}: user {user.email}")

        return jsonify(serialize_project(project)), 200

    except Exception as e:
        db.session.rollback()
        logger.error(f"Error adding member: {str(e)}", exc_info=True)
        return jsonify({'message': 'Failed to add member due to server error'}), 500


@projects_bp.route('/<int:project_id>/members/<int:user_id>', methods=['DELETE'])
@jwt_required()
def remove_project_member(project_id, user_id):
    """
    移除專案成員

    不是成員也不算錯誤,一樣回 200 並寫動態紀錄
    """
    current_user = get_current_user()
    if not current_user:
        return jsonify({'message': 'Authentication required'}), 401

    project, error = load_managed_project(project_id, current_user)
    if error:
        return error

    try:
        project.remove_member(user_id)

        record_activity(
            'member_removed',
            f'A member was removed from project "{project.name}"',
            current_user.id,
            project_id=project.id
        )

        db.session.commit()

        logger.info(f"Member {user_id} removed from project {project_id} by user {current_user.email}")

        return jsonify(serialize_project(project)), 200

    except Exception as e:
        db.session.rollback()
        logger.error(f"Error removing member: {str(e)}", exc_info=True)
        return jsonify({'message': 'Failed to remove member due to server error'}), 500
