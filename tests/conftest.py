"""Pytest configuration and shared fixtures."""

import pytest

import decorators
from app import create_app
from models import db, User, Role, Action, Entity, Permission, RoleUser, UserStatus

ACTIONS = ['READ', 'CREATE', 'UPDATE', 'DELETE', 'READ_SELF', 'READ_SELF_MANAGED']
ENTITIES = [
    'Students', 'Department', 'TestTypes', 'AssessmentBatch', 'AssessmentTests',
    'USERS', 'ROLES', 'GROUPS', 'PERMISSIONS', 'ACTIONS', 'ENTITIES',
]

ADMIN_USERNAME = 'admin'
ADMIN_PASSWORD = 'Admin@123'
DEFAULT_PASSWORD = 'Secret@123'


class InMemoryRedis:
    """Test double for the token blacklist store."""

    def __init__(self):
        self.store = {}

    def setex(self, key, ttl, value):
        self.store[key] = value

    def get(self, key):
        return self.store.get(key)


def seed_rbac():
    for code in ACTIONS:
        db.session.add(Action(action_id=code, action_name=code.title(), code=code))
    for entity_id in ENTITIES:
        db.session.add(Entity(entity_id=entity_id, name_entity=entity_id))
    admin_role = Role(role_id='ADMIN', role_name='Quản trị hệ thống')
    db.session.add(admin_role)
    db.session.flush()

    for code in ACTIONS:
        for entity_id in ENTITIES:
            db.session.add(Permission(
                permission_id=f'{code}.{entity_id}',
                permission_name=f'{code} {entity_id}',
                action_id=code,
                entity_id=entity_id,
                role_id='ADMIN'
            ))

    admin = User(username=ADMIN_USERNAME, full_name='Quản trị viên')
    admin.set_password(ADMIN_PASSWORD)
    db.session.add(admin)
    db.session.add(RoleUser(role=admin_role, user=admin))
    db.session.commit()


@pytest.fixture
def app():
    app = create_app('testing')
    decorators.redis_client = InMemoryRedis()

    with app.app_context():
        seed_rbac()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def login(client, username, password):
    response = client.post('/api/auth/login', json={'username': username, 'password': password})
    assert response.status_code == 200, response.get_json()
    return response.get_json()


def bearer(token):
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def admin_headers(client):
    return bearer(login(client, ADMIN_USERNAME, ADMIN_PASSWORD)['access_token'])


@pytest.fixture
def make_user(app):
    """Create a user holding exactly the given permission codes; returns the user id."""
    def _make_user(username, permissions=(), user_status=UserStatus.ACTIVE.value):
        with app.app_context():
            user = User(username=username, full_name=username.title(), user_status=user_status)
            user.set_password(DEFAULT_PASSWORD)
            db.session.add(user)
            db.session.flush()

            if permissions:
                role = Role(role_id=f'ROLE_{username}', role_name=f'Role {username}')
                db.session.add(role)
                db.session.flush()
                for index, code in enumerate(permissions):
                    action_code, entity_id = code.split('.', 1)
                    db.session.add(Permission(
                        permission_id=f'{username}-{index}',
                        permission_name=code,
                        action_id=action_code,
                        entity_id=entity_id,
                        role_id=role.role_id
                    ))
                db.session.add(RoleUser(role=role, user=user))

            db.session.commit()
            return user.user_id
    return _make_user


@pytest.fixture
def user_headers(client, make_user):
    """Log in a freshly created user with the given permissions."""
    def _user_headers(username, permissions=()):
        make_user(username, permissions)
        return bearer(login(client, username, DEFAULT_PASSWORD)['access_token'])
    return _user_headers
