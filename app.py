from flask import Flask, request, jsonify
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from flask_bcrypt import Bcrypt
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.exceptions import HTTPException
from config import get_config
from models import db, User, ROLE_ADMIN
from sqlalchemy import text
from datetime import datetime, timezone
import click
import logging
from logging.handlers import RotatingFileHandler
import os

logger = logging.getLogger(__name__)

# Rate Limiting
# storage 由 RATELIMIT_STORAGE_URI 決定: 開發環境用記憶體,production 用 Redis
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["1000 per day", "200 per hour"]
)

# ============================================
# Logging 設定
# ============================================

def setup_logging(app):
    """
    設定 logging

    1. 分開 info 和 error logs
    2. 使用 RotatingFileHandler 避免 log 檔案過大
    3. 掛在 root logger,各模組的 logging.getLogger(__name__) 都會寫進來
    """
    log_dir = app.config['LOG_DIR']
    os.makedirs(log_dir, exist_ok=True)

    formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )

    # Info log handler (記錄一般資訊)
    info_handler = RotatingFileHandler(
        os.path.join(log_dir, 'app.log'),
        maxBytes=10240000,  # 10MB
        backupCount=10
    )
    info_handler.setLevel(logging.INFO)
    info_handler.setFormatter(formatter)

    # Error log handler (只記錄錯誤)
    error_handler = RotatingFileHandler(
        os.path.join(log_dir, 'error.log'),
        maxBytes=10240000,  # 10MB
        backupCount=10
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    attached = {
        h.baseFilename for h in root_logger.handlers if isinstance(h, RotatingFileHandler)
    }
    for handler in (info_handler, error_handler):
        # 同一個 process 建立多個 app 時,同一個檔案只掛一次
        if handler.baseFilename in attached:
            handler.close()
        else:
            root_logger.addHandler(handler)
    root_logger.setLevel(app.config['LOG_LEVEL'])

    app.logger.info('Application startup')

# ============================================
# JWT 錯誤處理
# ============================================

def register_jwt_handlers(jwt):
    @jwt.expired_token_loader
    def expired_token_callback(jwt_header, jwt_payload):
        """處理 token 過期"""
        logger.warning(f"Expired token attempt from: {request.remote_addr}")
        return jsonify({
            'error': 'token_expired',
            'message': 'The token has expired. Please refresh your token or login again.'
        }), 401

    @jwt.invalid_token_loader
    def invalid_token_callback(error):
        """處理無效的 token"""
        logger.warning(f"Invalid token attempt from: {request.remote_addr}, error: {error}")
        return jsonify({
            'error': 'invalid_token',
            'message': 'Token validation failed. Please provide a valid token.'
        }), 401

    @jwt.unauthorized_loader
    def unauthorized_callback(error):
        """處理缺少 token"""
        logger.warning(f"Unauthorized access attempt from: {request.remote_addr}, error: {error}")
        return jsonify({
            'error': 'authorization_required',
            'message': 'Access token is required. Please provide an authorization token.'
        }), 401

    @jwt.revoked_token_loader
    def revoked_token_callback(jwt_header, jwt_payload):
        return jsonify({
            'error': 'token_revoked',
            'message': 'The token has been revoked. Please login again.'
        }), 401

# ============================================
# 全域錯誤處理
# ============================================

def register_error_handlers(app):
    @app.errorhandler(400)
    def bad_request(error):
        return jsonify({
            'error': 'bad_request',
            'message': 'The request is malformed or invalid',
            'status': 400
        }), 400

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({
            'error': 'not_found',
            'message': 'The requested resource does not exist',
            'status': 404
        }), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({
            'error': 'method_not_allowed',
            'message': 'The HTTP method is not allowed for this endpoint',
            'status': 405
        }), 405

    @app.errorhandler(429)
    def rate_limit_exceeded(error):
        """處理 rate limit 超過"""
        logger.warning(f"Rate limit exceeded from: {request.remote_addr}")
        return jsonify({
            'error': 'rate_limit_exceeded',
            'message': 'Too many requests. Please try again later.',
            'status': 429
        }), 429

    @app.errorhandler(500)
    def internal_server_error(error):
        """
        處理 500 錯誤

        不洩漏錯誤細節給前端,完整的 stack trace 只寫進 log
        """
        db.session.rollback()
        logger.error(f"Internal server error: {str(error)}", exc_info=True)

        return jsonify({
            'error': 'internal_server_error',
            'message': 'An internal error occurred. Please try again later.',
            'status': 500
        }), 500

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        """處理所有沒被處理的 exception"""
        # 其他 HTTP 錯誤 (401、415 等) 保留原本的狀態碼
        if isinstance(error, HTTPException):
            return jsonify({
                'error': error.name.lower().replace(' ', '_'),
                'message': error.description,
                'status': error.code
            }), error.code

        db.session.rollback()
        logger.error(f"Unexpected error: {str(error)}", exc_info=True)

        return jsonify({
            'error': 'unexpected_error',
            'message': 'An unexpected error occurred. Please try again later.',
            'status': 500
        }), 500

# ============================================
# Request/Response Logging
# ============================================

def register_request_hooks(app):
    @app.before_request
    def log_request():
        if not app.debug:
            logger.info(f"Request: {request.method} {request.path} from {request.remote_addr}")

    @app.after_request
    def log_response(response):
        if not app.debug:
            logger.info(f"Response: {response.status_code} for {request.method} {request.path}")

        # security headers
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['X-XSS-Protection'] = '1; mode=block'

        return response

# ============================================
# 系統端點
# ============================================

def register_system_routes(app):
    @app.route('/health', methods=['GET'])
    def health_check():
        """
        健康檢查端點

        用於 load balancer 或監控系統檢查服務是否正常
        """
        try:
            db.session.execute(text('SELECT 1'))

            return jsonify({
                'status': 'healthy',
                'database': 'connected',
                'timestamp': datetime.now(timezone.utc).isoformat()
            }), 200
        except Exception as e:
            logger.error(f"Health check failed: {str(e)}")
            return jsonify({
                'status': 'unhealthy',
                'database': 'disconnected',
                'error': 'Database connection failed'
            }), 503

    @app.route('/')
    @limiter.limit("10 per minute")
    def home():
        """API 首頁"""
        return jsonify({
            'message': 'Project Management API',
            'version': app.config['API_VERSION'],
            'endpoints': {
                'health': {'path': '/health', 'methods': ['GET']},
                'auth': {
                    'register': {'path': '/auth/register', 'methods': ['POST']},
                    'login': {'path': '/auth/login', 'methods': ['POST']},
                    'refresh': {'path': '/auth/refresh', 'methods': ['POST']},
                    'me': {'path': '/auth/me', 'methods': ['GET', 'PATCH']},
                    'change_password': {'path': '/auth/change-password', 'methods': ['POST']}
                },
                'projects': {
                    'list': {'path': '/projects', 'methods': ['GET', 'POST']},
                    'detail': {'path': '/projects/:id', 'methods': ['GET', 'PUT', 'DELETE']},
                    'members': {'path': '/projects/:id/members', 'methods': ['POST']},
                    'member': {'path': '/projects/:id/members/:userId', 'methods': ['DELETE']}
                },
                'tasks': {
                    'list': {'path': '/tasks', 'methods': ['GET', 'POST']},
                    'detail': {'path': '/tasks/:id', 'methods': ['GET', 'PUT', 'DELETE']},
                    'by_project': {'path': '/tasks/project/:projectId', 'methods': ['GET']}
                },
                'activities': {
                    'list': {'path': '/activities', 'methods': ['GET']},
                    'by_project': {'path': '/activities/project/:projectId', 'methods': ['GET']}
                },
                'users': {
                    'list': {'path': '/users', 'methods': ['GET']},
                    'assignable': {'path': '/users/assignable', 'methods': ['GET']},
                    'detail': {'path': '/users/:id', 'methods': ['GET', 'DELETE']},
                    'role': {'path': '/users/:id/role', 'methods': ['PUT']}
                }
            }
        })

# ============================================
# CLI 指令
# ============================================

def register_commands(app):
    @app.cli.command('create-admin')
    @click.option('--name', required=True, help='Display name')
    @click.option('--email', required=True, help='Login email')
    @click.option('--password', required=True, help='Initial password (ignored when promoting)')
    def create_admin(name, email, password):
        """建立 admin 帳號;email 已存在時把該帳號升級成 admin"""
        from auth import create_user, normalize_email

        user = User.query.filter_by(email=normalize_email(email)).first()
        if user:
            user.role = ROLE_ADMIN
            db.session.commit()
            click.echo(f"Promoted {user.email} to admin")
            return

        user = create_user(name, email, password, role=ROLE_ADMIN)
        db.session.commit()
        click.echo(f"Created admin {user.email}")

# ============================================
# App Factory
# ============================================

def create_app(config_class=None):
    app = Flask(__name__)

    config_class = config_class or get_config()
    app.config.from_object(config_class)

    if app.config['ENV'] == 'production':
        config_class.validate()

    # 不要用 '*',允許的來源從 CORS_ORIGINS 讀取
    CORS(app,
         supports_credentials=True,
         origins=app.config['CORS_ORIGINS'],
         methods=['GET', 'POST', 'PUT', 'PATCH', 'DELETE', 'OPTIONS'],
         allow_headers=['Content-Type', 'Authorization'])

    # 擴展初始化
    db.init_app(app)
    jwt = JWTManager(app)
    app.extensions['bcrypt'] = Bcrypt(app)
    limiter.init_app(app)

    if not app.debug and not app.testing:
        setup_logging(app)

    with app.app_context():
        db.create_all()

    # 註冊 Blueprints
    from auth import auth_bp
    from projects import projects_bp
    from tasks import tasks_bp
    from activities import activities_bp
    from users import users_bp

    app.register_blueprint(auth_bp, url_prefix='/auth')
    app.register_blueprint(projects_bp, url_prefix='/projects')
    app.register_blueprint(tasks_bp, url_prefix='/tasks')
    app.register_blueprint(activities_bp, url_prefix='/activities')
    app.register_blueprint(users_bp, url_prefix='/users')

    register_jwt_handlers(jwt)
    register_error_handlers(app)
    register_request_hooks(app)
    register_system_routes(app)
    register_commands(app)

    return app

# ============================================
# 啟動應用
# ============================================

if __name__ == '__main__':
    # production 不要用 Flask 內建的 server,用 gunicorn
    app = create_app()
    port = int(os.getenv('FLASK_PORT', 8888))

    app.run(
        debug=app.config['DEBUG'],
        port=port,
        host='0.0.0.0'
    )
