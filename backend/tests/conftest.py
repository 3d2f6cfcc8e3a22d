"""
Pytest fixtures for bazaar backend tests.

Provides the test database, tenant fixtures (one organization with two
events), a user factory and helpers for building caller contexts and
Authorization headers.
"""

import itertools

import pytest

from bazaar import create_app
from bazaar.extensions import db
from bazaar.models import Organization, Event, Merchant, User
from bazaar.permissions import Role
from bazaar.services import identity_service, pin_service, user_service
from bazaar.services.identity_service import CallerIdentity, ServiceContext


TEST_PIN = "135790"
WRONG_PIN = "246801"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'PIN_BCRYPT_ROUNDS': 4,
        'TXN_RETRY_BACKOFF_SECONDS': 0,
    })

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
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()
        db.session.remove()


# =============================================================================
# TENANTS
# =============================================================================


@pytest.fixture(scope='function')
def org(db_session):
    org = Organization(name="Campus Club", code="CLUB", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def event(db_session, org):
    """Event A: the tenant most tests run in."""
    event = Event(org_id=org.id, code="FAIR", name="Spring Fair", is_active=True, point_card_validity_days=30)
    db_session.add(event)
    db_session.commit()
    return event


@pytest.fixture(scope='function')
def other_event(db_session, org):
    """Event B: a second tenant used for isolation tests."""
    event = Event(org_id=org.id, code="EXPO", name="Autumn Expo", is_active=True)
    db_session.add(event)
    db_session.commit()
    return event


# =============================================================================
# USERS
# =============================================================================


@pytest.fixture(scope='function')
def make_user(db_session, event):
    """
    Factory: make_user(*roles, department=None, tag=None, manages=None,
    pin=TEST_PIN, event_=None) -> User
    """
    counter = itertools.count(1)

    def _make(*roles, department=None, tag=None, manages=None, pin=TEST_PIN, event_=None):
        n = next(counter)
        target = event_ or event
        user = user_service.create_user(
            db_session,
            event_id=target.id,
            auth_uid=f"uid-{target.code}-{n}",
            phone=f"01{target.id:02d}{n:06d}",
            display_name=f"User {n}",
            roles=roles,
            department_code=department,
            identity_tag=tag,
            managed_departments=manages,
        )
        if pin:
            user.pin_hash = pin_service.hash_pin(pin)
            user.pin_hash_method = pin_service.HASH_METHOD_BCRYPT
            db_session.commit()
        return user

    return _make


@pytest.fixture(scope='function')
def manager(make_user):
    """Seller manager for department CS."""
    return make_user(Role.SELLER_MANAGER, manages=["CS"])


@pytest.fixture(scope='function')
def seller(make_user):
    return make_user(Role.SELLER, department="CS")


@pytest.fixture(scope='function')
def customer(make_user):
    return make_user(Role.CUSTOMER, department="CS", tag="student")


@pytest.fixture(scope='function')
def customer2(make_user):
    return make_user(Role.CUSTOMER, department="EE", tag="student")


@pytest.fixture(scope='function')
def point_seller(make_user):
    return make_user(Role.POINT_SELLER)


@pytest.fixture(scope='function')
def owner(make_user):
    return make_user(Role.MERCHANT_OWNER)


@pytest.fixture(scope='function')
def assistant(make_user):
    return make_user(Role.MERCHANT_ASSISTANT)


@pytest.fixture(scope='function')
def cashier(make_user):
    return make_user(Role.CASHIER)


@pytest.fixture(scope='function')
def finance_manager(make_user):
    return make_user(Role.FINANCE_MANAGER)


@pytest.fixture(scope='function')
def event_manager(make_user):
    return make_user(Role.EVENT_MANAGER)


@pytest.fixture(scope='function')
def merchant_manager(make_user):
    return make_user(Role.MERCHANT_MANAGER)


@pytest.fixture(scope='function')
def merchant(db_session, event, owner):
    """Active stall owned by `owner`."""
    merchant = Merchant(
        org_id=event.org_id,
        event_id=event.id,
        owner_id=owner.id,
        stall_name="Nasi Lemak Corner",
        is_active=True,
    )
    db_session.add(merchant)
    db_session.commit()
    return merchant


# =============================================================================
# CALLER CONTEXT AND HEADERS
# =============================================================================


@pytest.fixture(scope='function')
def ctx_for(db_session):
    """Build a ServiceContext for a user, as require_auth would."""
    def _ctx(user: User) -> ServiceContext:
        caller = CallerIdentity(
            org_id=user.org_id,
            event_id=user.event_id,
            user_id=user.id,
            auth_uid=user.auth_uid,
            roles=user.roles,
        )
        return ServiceContext(session=db_session, caller=caller, resource="test")

    return _ctx


@pytest.fixture(scope='function')
def headers_for(db_session):
    """Issue a bearer credential for a user and return request headers."""
    def _headers(user: User) -> dict:
        token = identity_service.issue_credential(
            db_session,
            org_id=user.org_id,
            event_id=user.event_id,
            auth_uid=user.auth_uid,
        )
        return {"Authorization": f"Bearer {token}"}

    return _headers
