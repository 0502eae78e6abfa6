"""
Shared fixtures: an in-memory database, the application and users per role.
"""
from datetime import timedelta
from decimal import Decimal
from typing import Callable, Dict, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from studio_admin.auth.models import AffiliateStudio, User, UserRole
from studio_admin.calculator.engine import ConversionType
from studio_admin.calculator.models import CalculatorConfig, CalculatorPlatform
from studio_admin.core.database import Database
from studio_admin.core.security import create_access_token, get_password_hash
from studio_admin.main import create_app
from studio_admin.sedes.models import Group

PASSWORD = "secret123"


@pytest.fixture
def database():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    database = Database("sqlite://", engine=engine)
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def db(database) -> Session:
    session = database.session()
    yield session
    session.close()


@pytest.fixture
def client(database):
    app = create_app(database)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def affiliate(db) -> AffiliateStudio:
    studio = AffiliateStudio(name="Estudio Norte")
    db.add(studio)
    db.commit()
    db.refresh(studio)
    return studio


@pytest.fixture
def group(db) -> Group:
    sede = Group(name="Sede Centro", percentage=Decimal("70"))
    db.add(sede)
    db.commit()
    db.refresh(sede)
    return sede


@pytest.fixture
def make_user(db) -> Callable[..., User]:
    def factory(
        name: str,
        email: str,
        role: UserRole = UserRole.MODEL,
        affiliate_studio_id: Optional[str] = None,
        group_id: Optional[str] = None,
    ) -> User:
        user = User(
            name=name,
            email=email,
            hashed_password=get_password_hash(PASSWORD),
            role=role,
            affiliate_studio_id=affiliate_studio_id,
            group_id=group_id,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return factory


@pytest.fixture
def super_admin(make_user) -> User:
    return make_user("Root Admin", "root@studio.co", UserRole.SUPER_ADMIN)


@pytest.fixture
def admin(make_user, affiliate) -> User:
    return make_user("Laura Admin", "laura@studio.co", UserRole.ADMIN, affiliate.id)


@pytest.fixture
def model(make_user, affiliate, group) -> User:
    return make_user("Valentina Ruiz", "valentina@studio.co", UserRole.MODEL, affiliate.id, group.id)


@pytest.fixture
def platforms(db) -> Dict[str, CalculatorPlatform]:
    rows = [
        CalculatorPlatform(id="modelka", name="Modelka", conversion_type=ConversionType.EUR_USD_COP),
        CalculatorPlatform(
            id="skypvt",
            name="SkyPrivate",
            conversion_type=ConversionType.USD_COP,
            discount_factor=Decimal("0.75"),
        ),
        CalculatorPlatform(id="superfoon", name="Superfoon", conversion_type=ConversionType.EUR_USD_COP),
    ]
    db.add_all(rows)
    db.commit()
    return {row.id: row for row in rows}


@pytest.fixture
def configured_model(db, model, platforms) -> User:
    db.add(CalculatorConfig(model_id=model.id, enabled_platforms=sorted(platforms)))
    db.commit()
    return model


def auth_headers(user: User) -> Dict[str, str]:
    token = create_access_token(
        data={"sub": user.id, "role": user.role.value},
        expires_delta=timedelta(minutes=30),
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers_for() -> Callable[[User], Dict[str, str]]:
    return auth_headers
