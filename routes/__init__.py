from .auth import auth_bp
from .students import students_bp
from .departments import departments_bp
from .test_types import test_types_bp
from .assessment_batches import assessment_batches_bp
from .assessment_tests import assessment_tests_bp
from .rbac import rbac_bp
from .users import users_bp
