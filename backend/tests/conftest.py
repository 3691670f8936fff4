"""
Pytest fixtures for branchledger backend tests.

Provides an in-memory database, a two-branch tenant, directory users,
payment methods, an open cash register and bearer-token helpers.
"""

import pytest
from branchledger import create_app
from branchledger.extensions import db
from branchledger.models import Company, Branch, User, PaymentMethod, BranchStock
from branchledger.services import register_service, session_service


TEST_SECRET = "test-secret-key"
GATEWAY_SECRET = "test-gateway-secret"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SECRET_KEY': TEST_SECRET,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'GATEWAY_WEBHOOK_SECRET': GATEWAY_SECRET,
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
        db.session.rollback()
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        db.session.expunge_all()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def notifier(app):
    """The app's realtime hub, emptied of sessions after each test."""
    hub = app.extensions["realtime"]
    yield hub
    hub.shutdown()


@pytest.fixture(scope='function')
def company(db_session):
    company = Company(name="Pasteleria Central", is_active=True)
    db_session.add(company)
    db_session.commit()
    return company


@pytest.fixture(scope='function')
def manager(db_session, company):
    user = User(company_id=company.id, username="manager", full_name="Marta Manager", role="manager")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def cashier(db_session, company):
    user = User(company_id=company.id, username="cashier", full_name="Carlos Cashier", role="cashier")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def branch(db_session, company, manager):
    """Branch A, managed by `manager`."""
    branch = Branch(company_id=company.id, name="Centro", code="A1", manager_id=manager.id)
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def branch_b(db_session, company):
    """Branch B, no manager assigned."""
    branch = Branch(company_id=company.id, name="Norte", code="B1")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def cash_method(db_session):
    method = PaymentMethod(name="Efectivo", abbreviation="EF", is_cash=True, is_active=True)
    db_session.add(method)
    db_session.commit()
    return method


@pytest.fixture(scope='function')
def card_method(db_session):
    method = PaymentMethod(name="Tarjeta", abbreviation="TC", is_cash=False, is_active=True)
    db_session.add(method)
    db_session.commit()
    return method


@pytest.fixture(scope='function')
def register(db_session, branch):
    """Closed register in branch A with a zero balance."""
    return register_service.create_register(branch_id=branch.id, name="Caja 1")


@pytest.fixture(scope='function')
def open_register(register, cashier):
    """Register opened by `cashier` with balance 0."""
    return register_service.open_register(register_id=register.id, actor_id=cashier.id)


@pytest.fixture(scope='function')
def stocked_branch(db_session, branch):
    """Branch A with 10 units of product RS-12."""
    db_session.add(BranchStock(branch_id=branch.id, product_code="RS-12", quantity=10))
    db_session.commit()
    return branch


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


def token_for(user, role: str, branch_ids) -> str:
    """Sign a token the way the identity provider would."""
    return session_service.issue_token(user.id, role, list(branch_ids))


@pytest.fixture(scope='function')
def cashier_headers(cashier, branch):
    return auth_headers(token_for(cashier, "cashier", [branch.id]))


@pytest.fixture(scope='function')
def manager_headers(manager, branch):
    return auth_headers(token_for(manager, "manager", [branch.id]))


@pytest.fixture(scope='function')
def headers_for():
    """Build Authorization headers for any user, role and branch list."""
    def _make(user, role: str, branch_ids):
        return auth_headers(token_for(user, role, branch_ids))
    return _make


@pytest.fixture(scope='function')
def gateway_headers():
    return {"X-Gateway-Secret": GATEWAY_SECRET}
