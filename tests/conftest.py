import pytest
from fastapi.testclient import TestClient

from oilmart.core.security import CurrentUser, get_current_user
from oilmart.main import app
from oilmart.models.models import UserRole


@pytest.fixture
def owner():
    return CurrentUser(id=1, role=UserRole.OWNER, email="owner@oilmart.test", name="Raja")


@pytest.fixture
def staff():
    return CurrentUser(id=2, role=UserRole.STAFF, email="staff@oilmart.test", name="Meena")


@pytest.fixture
def customer():
    return CurrentUser(id=3, role=UserRole.CUSTOMER, email="ravi@oilmart.test", name="Ravi")


@pytest.fixture
def anonymous_client():
    app.dependency_overrides.clear()
    return TestClient(app)


@pytest.fixture
def client_as():
    """Build a client whose requests are authenticated as the given user."""
    def build(user: CurrentUser) -> TestClient:
        app.dependency_overrides[get_current_user] = lambda: user
        return TestClient(app)

    yield build
    app.dependency_overrides.clear()
