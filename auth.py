from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import create_access_token, create_refresh_token, jwt_required, get_jwt_identity
from marshmallow import Schema, EXCLUDE, fields, validate
from models import db, User, ROLE_TEAM_MEMBER
from validation import validate_request_data
import logging

auth_bp = Blueprint('auth', __name__)
logger = logging.getLogger(__name__)

# ============================================
# Input Validation Schemas (用 marshmallow)
# ============================================

class RegisterSchema(Schema):
    """註冊輸入驗證 (role 之類多帶的欄位直接忽略)"""
    class Meta:
        unknown = EXCLUDE

    name = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=100, error='Name must be 1-100 characters'),
        error_messages={'required': 'Name is required'}
    )
    email = fields.Email(required=True, error_messages={
        'required': 'Email is required',
        'invalid': 'Invalid email format'
    })
    password = fields.Str(
        required=True,
        validate=validate.Length(min=6, max=128, error='Password must be 6-128 characters'),
        error_messages={'required': 'Password is required'}
    )

class LoginSchema(Schema):
    """登入輸入驗證"""
    email = fields.Email(required=True)
    password = fields.Str(required=True)

class UpdateProfileSchema(Schema):
    """個人資料更新驗證"""
    class Meta:
        unknown = EXCLUDE

    name =fields.Str(validate=validate.Length(min=1, max=100))
    email = fields.Email()

class ChangePasswordSchema(Schema):
    """密碼修改驗證"""
    current_password = fields.Str(required=True, data_key='currentPassword')
    new_password = fields.Str(
        required=True,
        data_key='newPassword',
        validate=validate.Length(min=6, max=128)
    )

# ============================================
# Helper Functions
# ============================================

def get_bcrypt():
    """從 Flask app extensions 取得 bcrypt 實例 (不用 global variable)"""
    return current_app.extensions['bcrypt']


def normalize_email(email):
    return email.strip().lower()


def get_current_user():
    """
    取得當前登入的使用者

    token 有效但使用者已被刪除時回傳 None
    """
    user_id = get_jwt_identity()
    if not user_id:
        return None
    return db.session.get(User, int(user_id))


def create_user(name, email, password, role=ROLE_TEAM_MEMBER):
    """建立使用者 (不 commit)"""
    hashed_password = get_bcrypt().generate_password_hash(password).decode('utf-8')
    user = User(
        name=name.strip(),
        email=normalize_email(email),
        password_hash=hashed_password,
        role=role
    )
    db.session.add(user)
    return user

# ============================================
# 註冊 API
# ============================================

@auth_bp.route('/register', methods=['POST'])
def register():
    """
    使用者註冊

    新註冊的使用者一律是 team_member,角色只能由 admin 調整
    """
    data = request.get_json(silent=True)
    if not data:
        return jsonify({'message': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(RegisterSchema, data)
    if not is_valid:
        return jsonify({'message': 'Validation failed', 'details': result}), 400

    email = normalize_email(result['email'])
    if User.query.filter_by(email=email).first():
        return jsonify({'message': 'Email already exists'}), 409

    try:
        user = create_user(result['name'], email, result['password'])
        db.session.commit()

        logger.info(f"New user registered: {user.email}")

        return jsonify({
            'message': 'User registered successfully',
            'user': user.to_dict()
        }), 201

    except Exception as e:
        db.session.rollback()
        # 不要把 exception 細節洩漏給前端
        logger.error(f"Registration error for {email}: {str(e)}", exc_info=True)
        return jsonify({'message': 'Registration failed due to server error'}), 500

# ============================================
# 登入 API
# ============================================

@auth_bp.route('/login', methods=['POST'])
def login():
    """
    使用者登入

    不區分是 email 錯還是 password 錯,避免帳號枚舉攻擊
    """
    data = request.get_json(silent=True)
    if not data:
        return jsonify({'message': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(LoginSchema, data)
    if not is_valid:
        return jsonify({'message': 'Validation failed', 'details': result}), 400

    user = User.query.filter_by(email=normalize_email(result['email'])).first()

    if not user or not get_bcrypt().check_password_hash(user.password_hash, result['password']):
        logger.warning(f"Failed login attempt for email: {result['email']}")
        return jsonify({'message': 'Invalid credentials'}), 401

    access_token = create_access_token(identity=str(user.id))
    refresh_token = create_refresh_token(identity=str(user.id))

    logger.info(f"User logged in: {user.email}")

    return jsonify({
        'message': 'Login successful',
        'access_token': access_token,
        'refresh_token': refresh_token,
        'user': user.to_dict()
    }), 200

# ============================================
# Token 刷新 API
# ============================================

@auth_bp.route('/refresh', methods=['POST'])
@jwt_required(refresh=True)
def refresh():
    """用 refresh token 換新的 access token"""
    user = get_current_user()
    if not user:
        return jsonify({'message': 'Invalid user'}), 401

    return jsonify({
        'access_token': create_access_token(identity=str(user.id))
    }), 200

# ============================================
# 當前使用者資訊
# ============================================

@auth_bp.route('/me', methods=['GET'])
@jwt_required()
def get_me():
    user = get_current_user()
    if not user:
        logger.warning(f"Token valid but user not found: {get_jwt_identity()}")
        return jsonify({'message': 'User not found'}), 404

    return jsonify(user.to_dict()), 200


@auth_bp.route('/me', methods=['PATCH'])
@jwt_required()
def update_me():
    """更新當前使用者資料 (角色不能自己改)"""
    user = get_current_user()
    if not user:
        return jsonify({'message': 'User not found'}), 404

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'message': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(UpdateProfileSchema, data)
    if not is_valid:
        return jsonify({'message': 'Validation failed', 'details': result}), 400

    if 'email' in result:
        email = normalize_email(result['email'])
        existing = User.query.filter_by(email=email).first()
        if existing and existing.id != user.id:
            return jsonify({'message': 'Email already exists'}), 409
        user.email = email

    if 'name' in result:
        user.name = result['name'].strip()

    try:
        db.session.commit()
        logger.info(f"User profile updated: {user.email}")
        return jsonify({
            'message': 'Profile updated successfully',
            'user': user.to_dict()
        }), 200

    except Exception as e:
        db.session.rollback()
        logger.error(f"Profile update error for {user.email}: {str(e)}", exc_info=True)
        return jsonify({'message': 'Update failed due to server error'}), 500

# ============================================
# 修改密碼
# ============================================

@auth_bp.route('/change-password', methods=['POST'])
@jwt_required()
def change_password():
    user = get_current_user()
    if not user:
        return jsonify({'message': 'User not found'}), 404

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'message': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(ChangePasswordSchema, data)
    if not is_valid:
        return jsonify({'message': 'Validation failed', 'details': result}), 400

    bcrypt = get_bcrypt()
    if not bcrypt.check_password_hash(user.password_hash, result['current_password']):
        return jsonify({'message': 'Current password is incorrect'}), 401

    user.password_hash = bcrypt.generate_password_hash(result['new_password']).decode('utf-8')

    try:
        db.session.commit()
        logger.info(f"Password changed for user: {user.email}")
        return jsonify({'message': 'Password changed successfully'}), 200

    except Exception as e:
        db.session.rollback()
        logger.error(f"Password change error for {user.email}: {str(e)}", exc_info=True)
        return jsonify({'message': 'Password change failed due to server error'}), 500
