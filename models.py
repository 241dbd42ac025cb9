from flask_sqlalchemy import SQLAlchemy
from datetime import datetime

db = SQLAlchemy()

# ============================================
# 列舉值
# ============================================

ROLE_ADMIN = 'admin'
ROLE_PROJECT_MANAGER = 'project_manager'
ROLE_TEAM_MEMBER = 'team_member'
ROLES = (ROLE_ADMIN, ROLE_PROJECT_MANAGER, ROLE_TEAM_MEMBER)

PROJECT_STATUSES = ('active', 'completed', 'on_hold')
TASK_STATUSES = ('todo', 'in_progress', 'review', 'completed')
TASK_PRIORITIES = ('low', 'medium', 'high')

ACTIVITY_ACTIONS = (
    'project_created',
    'project_updated',
    'project_deleted',
    'task_created',
    'task_updated',
    'task_deleted',
    'task_status_changed',
    'member_added',
    'member_removed',
)


def isoformat(value):
    return value.isoformat() if value else None

# ============================================
# 1. User 模型
# ============================================
class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), nullable=False, default=ROLE_TEAM_MEMBER)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # 關聯
    owned_projects = db.relationship('Project', backref='owner', lazy=True)
    project_memberships = db.relationship('ProjectMember', backref='user', lazy=True)

    def to_summary(self):
        """給 owner / members / assignee 用的精簡資料"""
        return {'id': self.id, 'name': self.name, 'email': self.email}

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'role': self.role,
            'createdAt': isoformat(self.created_at)
        }

# ============================================
# 2. Project 模型
# ============================================
class Project(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    owner_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    status = db.Column(db.String(20), nullable=False, default='active')  # active, completed, on_hold
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # 成員依 position 排列 (owner 不會出現在這裡)
    memberships = db.relationship(
        'ProjectMember',
        backref='project',
        lazy=True,
        cascade='all,delete-orphan',
        order_by=lambda: [ProjectMember.position, ProjectMember.id]
    )

    __table_args__ = (
        db.Index('idx_project_status', 'status'),
        db.Index('idx_project_owner', 'owner_id'),
    )

    @property
    def member_ids(self):
        return [m.user_id for m in self.memberships]

    def touch(self):
        """成員異動不會改到 project 這一列,要手動更新 updated_at"""
        self.updated_at = datetime.utcnow()

    def set_members(self, user_ids):
        """
        整個覆蓋成員列表

        owner 與重複的 id 會被忽略;結果依傳入順序排列,
        原本就在的成員沿用原本的 ProjectMember (保留 joined_at)
        """
        wanted = []
        for user_id in user_ids:
            if user_id != self.owner_id and user_id not in wanted:
                wanted.append(user_id)

        current = {m.user_id: m for m in self.memberships}
        memberships = []
        for position, user_id in enumerate(wanted):
            membership = current.get(user_id) or ProjectMember(user_id=user_id)
            membership.position = position
            memberships.append(membership)

        self.memberships = memberships
        self.touch()

    def add_member(self, user_id):
        positions = [m.position for m in self.memberships if m.position is not None]
        self.memberships.append(
            ProjectMember(user_id=user_id, position=max(positions, default=-1) + 1)
        )
        self.touch()

    def remove_member(self, user_id):
        """不是成員也不會出錯"""
        self.memberships = [m for m in self.memberships if m.user_id != user_id]
        self.touch()

# ============================================
# 3. ProjectMember 模型
# ============================================
class ProjectMember(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    project_id = db.Column(db.Integer, db.ForeignKey('project.id'), nullable=False)
    position = db.Column(db.Integer, nullable=False, default=0)
    joined_at = db.Column(db.DateTime, default=datetime.utcnow)

    # 唯一性約束
    __table_args__ = (
        db.UniqueConstraint('project_id', 'user_id', name='unique_project_member'),
    )

# ============================================
# 4. Task 模型
# ============================================
class Task(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), nullable=False, default='todo')  # todo, in_progress, review, completed
    priority = db.Column(db.String(20), nullable=False, default='medium')  # low, medium, high

    # 關聯欄位
    project_id = db.Column(db.Integer, db.ForeignKey('project.id'), nullable=False)
    assigned_to = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)

    # 時間欄位
    due_date = db.Column(db.Date, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # 索引
    __table_args__ = (
        db.Index('idx_task_project_status', 'project_id', 'status'),
        db.Index('idx_task_assigned_status', 'assigned_to', 'status'),
        db.Index('idx_task_created_at', 'created_at'),
    )

# ============================================
# 5. Activity 模型
# ============================================
class Activity(db.Model):
    """
    動態紀錄 (append-only)

    user_id / project_id / task_id 只存 id,不設 foreign key:
    專案或任務被刪除後,舊的紀錄仍然保留,查詢時對應不到就回傳 null
    """
    id = db.Column(db.Integer, primary_key=True)
    action = db.Column(db.String(50), nullable=False)
    description = db.Column(db.String(500), nullable=False)
    user_id = db.Column(db.Integer, nullable=False, index=True)
    project_id = db.Column(db.Integer, nullable=True, index=True)
    task_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

# ============================================
# 關聯查詢 (join step)
# ============================================

def load_by_ids(model, ids):
    """
    用一次 IN 查詢把 id 轉成物件,回傳 {id: obj}

    找不到的 id 不會出現在結果裡,呼叫端拿到 None 就當作已刪除
    """
    ids = {i for i in ids if i is not None}
    if not ids:
        return {}
    return {obj.id: obj for obj in model.query.filter(model.id.in_(ids)).all()}
