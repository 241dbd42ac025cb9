from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required
from marshmallow import Schema, fields, validate
from models import db, User, Project, ProjectMember, Task, ROLES
from auth import get_current_user
from permissions import capability_required
from validation import validate_request_data
import logging

users_bp = Blueprint('users', __name__)
logger = logging.getLogger(__name__)

# ============================================
# Input Validation Schemas
# ============================================

class UpdateRoleSchema(Schema):
    """角色調整驗證"""
    role = fields.Str(
        required=True,
        validate=validate.OneOf(ROLES, error='Role must be one of: admin, project_manager, team_member'),
        error_messages={'required': 'Role is required'}
    )

# ============================================
# 查詢使用者
# ============================================

@users_bp.route('/assignable', methods=['GET'])
@jwt_required()
@capability_required('list_assignable_users')
def get_assignable_users():
    """可以被指派任務的使用者 (依名字排序)"""
    users = User.query.order_by(User.name.asc(), User.id.asc()).all()
    return jsonify([
        {'id': u.id, 'name': u.name, 'email': u.email, 'role': u.role}
        for u in users
    ]), 200


@users_bp.route('', methods=['GET'])
@jwt_required()
@capability_required('manage_users')
def get_users():
    users = User.query.order_by(User.created_at.desc(), User.id.desc()).all()
    return jsonify([u.to_dict() for u in users]), 200


@users_bp.route('/<int:user_id>', methods=['GET'])
@jwt_required()
@capability_required('manage_users')
def get_user(user_id):
    user = db.session.get(User, user_id)
    if not user:
        return jsonify({'message': 'User not found'}), 404
    return jsonify(user.to_dict()), 200

# ============================================
# 調整角色
# ============================================

@users_bp.route('/<int:user_id>/role', methods=['PUT'])
@jwt_required()
@capability_required('manage_users')
def update_user_role(user_id):
    current_user = get_current_user()

    user = db.session.get(User, user_id)
    if not user:
        return jsonify({'message': 'User not found'}), 404

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'message': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(UpdateRoleSchema, data)
    if not is_valid:
        return jsonify({'message': 'Validation failed', 'details': result}), 400

    old_role = user.role
    user.role = result['role']

    try:
        db.session.commit()

        logger.info(f"User {user.email} role {old_role} -> {user.role} by admin {current_user.email}")

        return jsonify(user.to_dict()), 200

    except Exception as e:
        db.session.rollback()
        logger.error(f"Role update error: {str(e)}", exc_info=True)
        return jsonify({'message': 'Role update failed due to server error'}), 500

# ============================================
# 刪除使用者
# ============================================

@users_bp.route('/<int:user_id>', methods=['DELETE'])
@jwt_required()
@capability_required('manage_users')
def delete_user(user_id):
    """
    刪除使用者 (只有 admin,不能刪自己)

    還擁有專案的使用者不能刪,要先把專案刪掉;
    會一併移除他的專案成員身分,並把指派給他的任務改成未指派。
    動態紀錄保留原樣。
    """
    current_user = get_current_user()

    if user_id == current_user.id:
        return jsonify({'message': 'You cannot delete your own account'}), 400

    user = db.session.get(User, user_id)
    if not user:
        return jsonify({'message': 'User not found'}), 404

    owned_count = Project.query.filter_by(owner_id=user.id).count()
    if owned_count:
        return jsonify({
            'message': f'User still owns {owned_count} project(s); delete them first'
        }), 400

    try:
        ProjectMember.query.filter_by(user_id=user.id).delete(synchronize_session=False)
        Task.query.filter_by(assigned_to=user.id).update(
            {'assigned_to': None}, synchronize_session=False
        )

        db.session.delete(user)
        db.session.commit()

        logger.info(f"User deleted: {user.email} by admin {current_user.email}")

        return jsonify({'message': 'User removed'}), 200

    except Exception as e:
        db.session.rollback()
        logger.error(f"User deletion error: {str(e)}", exc_info=True)
        return jsonify({'message': 'User deletion failed due to server error'}), 500
