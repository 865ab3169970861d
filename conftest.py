import os

# Set testing environment before importing app
os.environ['APP_ENV'] = 'testing'

import pytest
from app import app as flask_app
from assignment_store import AssignmentStore
from extensions import db
from repository import InMemoryBillRepository, SQLAlchemyBillRepository


@pytest.fixture(scope='function')
def app():
    with flask_app.app_context():
        db.session.remove()
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    return app.test_client()


@pytest.fixture
def db_store(app):
    """Assignment store backed by the test database"""
    return AssignmentStore(SQLAlchemyBillRepository())


@pytest.fixture
def memory_store():
    """Assignment store with no database at all"""
    return AssignmentStore(InMemoryBillRepository())


@pytest.fixture
def mock_trigger_extraction(mocker):
    """Mocks the call out to the external extraction workflow."""
    return mocker.patch('app.trigger_extraction', return_value=None)

