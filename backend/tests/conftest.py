"""
Pytest fixtures for portal backend tests.

Provides test database setup, partner/user fixtures for every role,
a small catalog, and the Flask test client.
"""

import pytest

from portal import create_app
from portal.config import TestConfig
from portal.extensions import db
from portal.models import Partner, PartnerUser, Product, User
from portal.permissions import Role
from portal.services import notification_service
from portal.services.auth_service import hash_password


PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Empty every table (and the notification buffer) before each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        notification_service.get_sink().clear()
        app.config["ORDER_STRICT_TRANSITIONS"] = True

        yield db.session

        # Cleanup after test
        db.session.rollback()


def make_user(session, username: str, role: Role, partner: Partner | None = None) -> User:
    """Create an active user; partner roles are linked to `partner`."""
    user = User(
        username=username,
        email=f"{username}@example.com",
        display_name=username.replace("_", " ").title(),
        password_hash=hash_password(PASSWORD),
        role=role.value,
        is_active=True,
    )
    session.add(user)
    session.flush()
    if partner is not None:
        session.add(PartnerUser(partner_id=partner.id, user_id=user.id, role=role.value, is_active=True))
    session.commit()
    return user


@pytest.fixture(scope='function')
def partner_a(db_session):
    """Partner A (no discount rate: product partner prices apply)."""
    partner = Partner(name="Partner A - Acme Resellers", code="ACME", is_active=True)
    db_session.add(partner)
    db_session.commit()
    return partner


@pytest.fixture(scope='function')
def partner_b(db_session):
    """Partner B (second tenant)."""
    partner = Partner(name="Partner B - Beta Distribution", code="BETA", is_active=True)
    db_session.add(partner)
    db_session.commit()
    return partner


@pytest.fixture(scope='function')
def super_admin(db_session):
    return make_user(db_session, "root_admin", Role.SUPER_ADMIN)


@pytest.fixture(scope='function')
def provider_user(db_session):
    return make_user(db_session, "provider_staff", Role.PROVIDER_USER)


@pytest.fixture(scope='function')
def admin_a(db_session, partner_a):
    return make_user(db_session, "admin_a", Role.PARTNER_ADMIN, partner_a)


@pytest.fixture(scope='function')
def seller_a(db_session, partner_a):
    return make_user(db_session, "seller_a", Role.PARTNER_USER, partner_a)


@pytest.fixture(scope='function')
def customer_a(db_session, partner_a):
    return make_user(db_session, "customer_a", Role.PARTNER_CUSTOMER, partner_a)


@pytest.fixture(scope='function')
def admin_b(db_session, partner_b):
    return make_user(db_session, "admin_b", Role.PARTNER_ADMIN, partner_b)


@pytest.fixture(scope='function')
def seller_b(db_session, partner_b):
    return make_user(db_session, "seller_b", Role.PARTNER_USER, partner_b)


@pytest.fixture(scope='function')
def end_user(db_session):
    return make_user(db_session, "walk_in", Role.END_USER)


@pytest.fixture(scope='function')
def product_router(db_session):
    """Base 10000, partner price 9000."""
    product = Product(
        code="RTR-100",
        name="Edge Router",
        description="Branch office router",
        category="network",
        base_price_cents=10000,
        partner_price_cents=9000,
        is_active=True,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def product_license(db_session):
    """Base 2500, partner price 2000."""
    product = Product(
        code="LIC-200",
        name="Support License",
        description="One year of support",
        category="services",
        base_price_cents=2500,
        partner_price_cents=2000,
        is_active=True,
    )
    db_session.add(product)
    db_session.commit()
    return product


def get_auth_token(client, username: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def login_as(client):
    """Return a function that logs a user in and yields ready-to-use headers."""
    def _login(user: User) -> dict:
        token = get_auth_token(client, user.username)
        assert token, f"login failed for {user.username}"
        return auth_headers(token)
    return _login
