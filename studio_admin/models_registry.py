"""
Imports every ORM module so Base.metadata knows all tables before create_all.
"""
from studio_admin.advances import models as advances_models  # noqa: F401
from studio_admin.auth import models as auth_models  # noqa: F401
from studio_admin.calculator import models as calculator_models  # noqa: F401
from studio_admin.chat import models as chat_models  # noqa: F401
from studio_admin.periods import models as periods_models  # noqa: F401
from studio_admin.rates import models as rates_models  # noqa: F401
from studio_admin.sedes import models as sedes_models  # noqa: F401
from studio_admin.shop import models as shop_models  # noqa: F401
