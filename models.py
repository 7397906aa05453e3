from flask_sqlalchemy import SQLAlchemy
from datetime import datetime
import uuid
import bcrypt
from enum import Enum
from helper_function import (
    result_to_string, get_user_status_string, get_student_status_string, get_batch_status_string
)

db = SQLAlchemy()

class UserStatus(Enum):
    DELETED = -2
    INACTIVE = 0
    ACTIVE = 1

class StudentStatus(Enum):
    CREATED_BY_USER = 0
    SYNCED_WITH_ATLAS = 1
    OFFLINE = 10
    ONLINE = 11

class BatchStatus(Enum):
    DELETED = -2
    REGISTERING = -1
    PENDING = 0
    ACTIVE = 1
    RUNNING = 2
    COMPLETED = 3


def generate_id():
    return str(uuid.uuid4())


class Department(db.Model):
    __tablename__ = 'department'

    department_code = db.Column('DepartmentCode', db.String(50), primary_key=True)
    battalion = db.Column('Battalion', db.String(50))
    course = db.Column('Course', db.String(50))
    character_code = db.Column('CharacterCode', db.String(20))

    # Relationships
    students = db.relationship('Student', backref='department_ref')

    @property
    def display_name(self):
        if self.battalion and self.course:
            return f'{self.department_code} - {self.battalion} - {self.course}'
        elif self.battalion:
            return f'{self.department_code} - {self.battalion}'
        elif self.course:
            return f'{self.department_code} - {self.course}'
        return self.department_code

    @property
    def full_description(self):
        parts = [self.department_code]
        if self.battalion:
            parts.append(f'Tiểu đoàn: {self.battalion}')
        if self.course:
            parts.append(f'Khóa: {self.course}')
        if self.character_code:
            parts.append(f'Ký hiệu: {self.character_code}')
        return ' | '.join(parts)

    def to_dict(self):
        return {
            'department_code': self.department_code,
            'battalion': self.battalion,
            'course': self.course,
            'character_code': self.character_code,
            'display_name': self.display_name,
            'full_description': self.full_description
        }

class Group(db.Model):
    __tablename__ = 'groups'

    group_id = db.Column('GroupID', db.String(50), primary_key=True)
    group_name = db.Column('GroupName', db.String(100), nullable=False, unique=True)
    is_active = db.Column('IsActive', db.Boolean, nullable=False, default=True)

    # Relationships
    users = db.relationship('User', backref='group')
    group_roles = db.relationship('GroupRole', backref='group', cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'group_id': self.group_id,
            'group_name': self.group_name,
            'is_active': self.is_active,
            'role_ids': [gr.role_id for gr in self.group_roles]
        }

class User(db.Model):
    __tablename__ = 'users'

    user_id = db.Column('UserID', db.String(36), primary_key=True, default=generate_id)
    username = db.Column('UserName', db.String(50), nullable=False, unique=True)
    password_hash = db.Column('PasswordHash', db.String(255), nullable=False)
    full_name = db.Column('FullName', db.String(100))
    phone_number = db.Column('PhoneNumber', db.String(20))
    department = db.Column('Department', db.String(100))
    user_status = db.Column('UserStatus', db.SmallInteger, nullable=False, default=UserStatus.ACTIVE.value)
    level_security = db.Column('LevelSecurity', db.SmallInteger, nullable=False, default=0)
    manage_by = db.Column('ManageBy', db.String(36), db.ForeignKey('users.UserID'))
    group_id = db.Column('GroupID', db.String(50), db.ForeignKey('groups.GroupID'))
    create_at = db.Column('CreateAt', db.DateTime, default=datetime.utcnow)
    update_at = db.Column('UpdateAt', db.DateTime)

    # Relationships
    role_users = db.relationship('RoleUser', backref='user', cascade='all, delete-orphan')
    login_histories = db.relationship('LoginHistory', backref='user', cascade='all')

    def set_password(self, password):
        """Hash and set password"""
        salt = bcrypt.gensalt()
        self.password_hash = bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')

    def check_password(self, password):
        """Check if provided password matches hash"""
        return bcrypt.checkpw(password.encode('utf-8'), self.password_hash.encode('utf-8'))

    def to_dict(self):
        return {
            'user_id': self.user_id,
            'username': self.username,
            'full_name': self.full_name,
            'phone_number': self.phone_number,
            'department': self.department,
            'user_status': self.user_status,
            'user_status_string': get_user_status_string(self.user_status),
            'level_security': self.level_security,
            'manage_by': self.manage_by,
            'group_id': self.group_id,
            'create_at': self.create_at.isoformat() if self.create_at else None,
            'update_at': self.update_at.isoformat() if self.update_at else None
        }

class LoginHistory(db.Model):
    __tablename__ = 'login_history'

    login_id = db.Column('LoginID', db.Integer, primary_key=True, autoincrement=True)
    user_id = db.Column('UserID', db.String(36), db.ForeignKey('users.UserID'))
    ip_address = db.Column('IpAddress', db.String(50))
    is_success = db.Column('IsSuccess', db.Boolean, nullable=False)
    login_at = db.Column('LoginAt', db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'login_id': self.login_id,
            'user_id': self.user_id,
            'ip_address': self.ip_address,
            'is_success': self.is_success,
            'login_at': self.login_at.isoformat() if self.login_at else None
        }

class Student(db.Model):
    __tablename__ = 'students'

    student_id = db.Column('StudentID', db.String(50), primary_key=True)
    name = db.Column('Name', db.String(100), nullable=False)
    dob = db.Column('Dob', db.String(10))
    gender = db.Column('Gender', db.String(10))
    phone = db.Column('Phone', db.String(15))
    email = db.Column('Email', db.String(100))
    status = db.Column('Status', db.SmallInteger, nullable=False, default=StudentStatus.CREATED_BY_USER.value)
    department = db.Column('Department', db.String(50), db.ForeignKey('department.DepartmentCode'))
    created_by = db.Column('CreatedBy', db.String(36), db.ForeignKey('users.UserID'))
    manage_by = db.Column('ManageBy', db.String(36), db.ForeignKey('users.UserID'))
    created_at = db.Column('CreatedAt', db.DateTime, nullable=False, default=datetime.utcnow)
    update_at = db.Column('UpdateAt', db.DateTime)

    # Relationships
    batch_students = db.relationship('AssessmentBatchStudent', backref='student', cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'student_id': self.student_id,
            'name': self.name,
            'dob': self.dob,
            'gender': self.gender,
            'phone': self.phone,
            'email': self.email,
            'status': self.status,
            'status_string': get_student_status_string(self.status),
            'department': self.department,
            'created_by': self.created_by,
            'manage_by': self.manage_by,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'update_at': self.update_at.isoformat() if self.update_at else None,
            'assessment_batch_count': len(self.batch_students)
        }

class TestType(db.Model):
    __tablename__ = 'test_types'

    test_type_id = db.Column('TestTypeID', db.String(50), primary_key=True)
    code = db.Column('Code', db.String(50), nullable=False, unique=True)
    name = db.Column('Name', db.String(100), nullable=False)
    description = db.Column('Description', db.Text)
    unit = db.Column('Unit', db.String(20))

    # Relationships
    assessment_tests = db.relationship('AssessmentTest', backref='test_type', cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'test_type_id': self.test_type_id,
            'code': self.code,
            'name': self.name,
            'description': self.description,
            'unit': self.unit
        }

class AssessmentBatch(db.Model):
    __tablename__ = 'assessment_batches'

    batch_id = db.Column('BatchID', db.String(50), primary_key=True, default=generate_id)
    code_name = db.Column('CodeName', db.String(100))
    description = db.Column('Description', db.Text)
    scheduled_at = db.Column('ScheduledAt', db.DateTime)
    status = db.Column('Status', db.SmallInteger, default=BatchStatus.PENDING.value)
    created_at = db.Column('CreatedAt', db.DateTime, default=datetime.utcnow)
    updated_at = db.Column('UpdatedAt', db.DateTime)
    created_by = db.Column('CreatedBy', db.String(36), db.ForeignKey('users.UserID'))
    manager_by = db.Column('ManagerBy', db.String(36), db.ForeignKey('users.UserID'))

    # Relationships
    batch_students = db.relationship('AssessmentBatchStudent', backref='batch', cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'batch_id': self.batch_id,
            'code_name': self.code_name,
            'description': self.description,
            'scheduled_at': self.scheduled_at.isoformat() if self.scheduled_at else None,
            'status': self.status,
            'status_string': get_batch_status_string(self.status),
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
            'created_by': self.created_by,
            'manager_by': self.manager_by,
            'student_count': len(self.batch_students)
        }

class AssessmentBatchStudent(db.Model):
    __tablename__ = 'assessment_batch_students'

    abs_id = db.Column('AbsID', db.String(120), primary_key=True)
    student_id = db.Column('StudentID', db.String(50), db.ForeignKey('students.StudentID'))
    batch_id = db.Column('BatchID', db.String(50), db.ForeignKey('assessment_batches.BatchID'))

    # Relationships
    assessment_tests = db.relationship('AssessmentTest', backref='abs', cascade='all, delete-orphan')

    __table_args__ = (
        db.UniqueConstraint('StudentID', 'BatchID', name='unique_student_batch'),
    )

    @staticmethod
    def make_id(student_id, batch_id):
        return f'{student_id}_{batch_id}'

    def to_dict(self):
        return {
            'abs_id': self.abs_id,
            'student_id': self.student_id,
            'batch_id': self.batch_id
        }

class AssessmentTest(db.Model):
    __tablename__ = 'assessment_tests'

    testtype_id = db.Column('TestTypeID', db.String(50), db.ForeignKey('test_types.TestTypeID'), primary_key=True)
    abs_id = db.Column('AbsID', db.String(120), db.ForeignKey('assessment_batch_students.AbsID'), primary_key=True)
    code = db.Column('Code', db.String(50))
    unit = db.Column('Unit', db.String(20))
    result_value = db.Column('ResultValue', db.String(50))
    recorded_at = db.Column('RecordedAt', db.DateTime, default=datetime.utcnow)
    recorded_by = db.Column('RecordedBy', db.String(36), db.ForeignKey('users.UserID'))

    @property
    def grading_code(self):
        # The record's own code wins; fall back to the test type it belongs to
        if self.code:
            return self.code
        return self.test_type.code if self.test_type else None

    @property
    def result(self):
        return result_to_string(self.grading_code, self.result_value)

    def to_dict(self):
        return {
            'testtype_id': self.testtype_id,
            'abs_id': self.abs_id,
            'code': self.code,
            'unit': self.unit,
            'result_value': self.result_value,
            'result': self.result,
            'recorded_at': self.recorded_at.isoformat() if self.recorded_at else None,
            'recorded_by': self.recorded_by,
            'test_type_name': self.test_type.name if self.test_type else None,
            'student_id': self.abs.student_id if self.abs else None,
            'student_name': self.abs.student.name if self.abs and self.abs.student else None,
            'assessment_batch_id': self.abs.batch_id if self.abs else None
        }

# ====================== RBAC ======================

class Role(db.Model):
    __tablename__ = 'roles'

    role_id = db.Column('RoleID', db.String(50), primary_key=True)
    role_name = db.Column('RoleName', db.String(100), nullable=False, unique=True)
    is_active = db.Column('IsActive', db.Boolean, nullable=False, default=True)

    # Relationships
    permissions = db.relationship('Permission', backref='role')
    role_users = db.relationship('RoleUser', backref='role', cascade='all, delete-orphan')
    group_roles = db.relationship('GroupRole', backref='role', cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'role_id': self.role_id,
            'role_name': self.role_name,
            'is_active': self.is_active,
            'permission_ids': [p.permission_id for p in self.permissions]
        }

class Action(db.Model):
    __tablename__ = 'actions'

    action_id = db.Column('ActionID', db.String(50), primary_key=True)
    action_name = db.Column('ActionName', db.String(100), nullable=False)
    code = db.Column('Code', db.String(50), nullable=False, unique=True)
    is_active = db.Column('IsActive', db.Boolean, nullable=False, default=True)

    # Relationships
    permissions = db.relationship('Permission', backref='action')

    def to_dict(self):
        return {
            'action_id': self.action_id,
            'action_name': self.action_name,
            'code': self.code,
            'is_active': self.is_active
        }

class Entity(db.Model):
    __tablename__ = 'entities'

    entity_id = db.Column('EntityID', db.String(50), primary_key=True)
    name_entity = db.Column('NameEntity', db.String(100), nullable=False)
    level_security = db.Column('LevelSecurity', db.SmallInteger, nullable=False, default=0)
    type = db.Column('Type', db.String(50))

    # Relationships
    permissions = db.relationship('Permission', backref='entity')

    def to_dict(self):
        return {
            'entity_id': self.entity_id,
            'name_entity': self.name_entity,
            'level_security': self.level_security,
            'type': self.type
        }

class Permission(db.Model):
    __tablename__ = 'permissions'

    permission_id = db.Column('PermissionID', db.String(50), primary_key=True)
    permission_name = db.Column('PermissionName', db.String(100), nullable=False)
    action_id = db.Column('ActionID', db.String(50), db.ForeignKey('actions.ActionID'), nullable=False)
    entity_id = db.Column('EntityID', db.String(50), db.ForeignKey('entities.EntityID'), nullable=False)
    role_id = db.Column('RoleID', db.String(50), db.ForeignKey('roles.RoleID'))
    is_active = db.Column('IsActive', db.Boolean, nullable=False, default=True)

    @property
    def permission_code(self):
        """Code carried in access tokens, e.g. READ.Students"""
        return f'{self.action.code}.{self.entity_id}'

    def to_dict(self):
        return {
            'permission_id': self.permission_id,
            'permission_name': self.permission_name,
            'action_id': self.action_id,
            'entity_id': self.entity_id,
            'role_id': self.role_id,
            'is_active': self.is_active,
            'permission_code': self.permission_code if self.action else None
        }

class GroupRole(db.Model):
    __tablename__ = 'group_roles'

    group_id = db.Column('GroupID', db.String(50), db.ForeignKey('groups.GroupID'), primary_key=True)
    role_id = db.Column('RoleID', db.String(50), db.ForeignKey('roles.RoleID'), primary_key=True)
    note = db.Column('Note', db.String(255))

class RoleUser(db.Model):
    __tablename__ = 'role_users'

    role_id = db.Column('RoleID', db.String(50), db.ForeignKey('roles.RoleID'), primary_key=True)
    user_id = db.Column('UserID', db.String(36), db.ForeignKey('users.UserID'), primary_key=True)


def get_effective_permissions(user):
    """Permission codes granted to a user through direct roles and group roles"""
    role_ids = {ru.role_id for ru in user.role_users}
    if user.group and user.group.is_active:
        role_ids.update(gr.role_id for gr in user.group.group_roles)

    if not role_ids:
        return []

    permissions = Permission.query \
        .join(Role, Permission.role_id == Role.role_id) \
        .join(Action, Permission.action_id == Action.action_id) \
        .filter(
            Permission.role_id.in_(role_ids),
            Permission.is_active.is_(True),
            Role.is_active.is_(True),
            Action.is_active.is_(True)
        ).all()

    return sorted({p.permission_code for p in permissions})
