"""Pytest fixtures for testing"""

import pytest
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, Generator, List
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from lending_insights.api.main import create_app
from lending_insights.api.dependencies import get_executor
from lending_insights.domain.queries import build_default_catalog
from lending_insights.executor import Executor
from lending_insights.infrastructure.database.models import (
    Base,
    BehaviorLog,
    Customer,
    CustomerFeedback,
    Loan,
    Transaction,
)
from lending_insights.infrastructure.database.stores import InMemoryStore, SqlAlchemyStore


# Test database
TEST_DATABASE_URL = "sqlite:///./test_lending.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Fixed evaluation date for tenure calculations
TODAY = date(2025, 6, 30)


def lending_rows(today: date = TODAY) -> Dict[str, List[Dict[str, Any]]]:
    """Small lending book covering every query's edge cases"""
    # Erin joined exactly 1825 days ago: on the loyalty boundary, so excluded
    boundary = (today - timedelta(days=1825)).strftime("%m/%d/%Y")
    return {
        "customer": [
            {"customer_id": 1, "name": "Alice", "credit_score": 550, "address": "12 Oak St, Springfield, IL",
             "age": 23, "customer_since": "01/15/2015"},
            {"customer_id": 2, "name": "Bob", "credit_score": 580, "address": "9 Elm Rd, Austin, TX",
             "age": 30, "customer_since": "03/10/2022"},
            {"customer_id": 3, "name": "Carla", "credit_score": 720, "address": "4 Pine Ave, Dallas, TX",
             "age": 41, "customer_since": "07/01/2019"},
            {"customer_id": 4, "name": "Dev", "credit_score": 810, "address": "77 Lake Dr, Chicago, IL",
             "age": 58, "customer_since": "11/20/2010"},
            {"customer_id": 5, "name": "Erin", "credit_score": 640, "address": "1 Bay St, Seattle, WA",
             "age": 50, "customer_since": boundary},
            # no loans: only visible through LEFT JOINs
            {"customer_id": 6, "name": "Faye", "credit_score": 690, "address": "5 Hill Rd, Boise, ID",
             "age": 35, "customer_since": "02/02/2012"},
        ],
        "loan": [
            {"loan_id": 101, "customer_id": 1, "loan_amount": Decimal("10000.00"), "loan_purpose": "Home",
             "default_risk": "High", "loan_status": "Active"},
            {"loan_id": 102, "customer_id": 2, "loan_amount": Decimal("5000.00"), "loan_purpose": "Car",
             "default_risk": "High", "loan_status": "Defaulted"},
            {"loan_id": 103, "customer_id": 3, "loan_amount": Decimal("20000.00"), "loan_purpose": "Home",
             "default_risk": "Low", "loan_status": "Closed"},
            {"loan_id": 104, "customer_id": 4, "loan_amount": Decimal("15000.00"), "loan_purpose": "Education",
             "default_risk": "Low", "loan_status": "Active"},
            {"loan_id": 105, "customer_id": 5, "loan_amount": Decimal("8000.00"), "loan_purpose": "Car",
             "default_risk": "Medium", "loan_status": "Active"},
            {"loan_id": 106, "customer_id": 1, "loan_amount": Decimal("2000.00"), "loan_purpose": "Personal",
             "default_risk": "Low", "loan_status": "Active"},
            # second High-risk loan for Bob, no transactions
            {"loan_id": 107, "customer_id": 2, "loan_amount": Decimal("3000.00"), "loan_purpose": "Car",
             "default_risk": "High", "loan_status": "Active"},
        ],
        "transaction": [
            _txn(1001, 101, 1, "EMI Payment", "500.00", "Successful", "01/05/2024"),
            _txn(1002, 101, 1, "Missed EMI", "0.00", "Successful", "02/05/2024"),
            _txn(1003, 101, 1, "Missed EMI", "0.00", "Failed", "03/05/2024"),
            _txn(1004, 102, 2, "EMI Payment", "400.00", "Successful", "01/10/2024"),
            _txn(1005, 102, 2, "Prepayment", "2000.00", "Successful", "02/10/2024"),
            _txn(1006, 103, 3, "EMI Payment", "1000.00", "Successful", "01/15/2024"),
            _txn(1007, 103, 3, "EMI Payment", "1000.00", "Successful", "02/15/2024"),
            _txn(1008, 103, 3, "Prepayment", "6000.00", "Successful", "03/15/2024"),
            _txn(1009, 104, 4, "EMI Payment", "800.00", "Successful", "01/20/2024"),
            _txn(1010, 104, 4, "EMI Payment", "800.00", "Failed", "02/20/2024"),
            _txn(1011, 105, 5, "Missed EMI", "0.00", "Successful", "01/25/2024"),
            _txn(1012, 106, 1, "Fee", "50.00", "Successful", "12/01/2023"),
        ],
        "behavior_log": [
            {"log_id": 1, "customer_id": 1, "location": "Chicago, IL"},
            {"log_id": 2, "customer_id": 1, "location": "Springfield, IL"},
            {"log_id": 3, "customer_id": 3, "location": "Dallas, TX"},
        ],
        "customer_feedback": [
            {"feedback_id": 1, "loan_id": 101, "feedback_text": "Rates too high", "sentiment_score": Decimal("-0.60")},
            {"feedback_id": 2, "loan_id": 102, "feedback_text": "Neutral", "sentiment_score": Decimal("0.00")},
            {"feedback_id": 3, "loan_id": 103, "feedback_text": "Smooth process", "sentiment_score": Decimal("0.80")},
            {"feedback_id": 4, "loan_id": 104, "feedback_text": "Great support", "sentiment_score": Decimal("0.90")},
            {"feedback_id": 5, "loan_id": 105, "feedback_text": "Helpful app", "sentiment_score": Decimal("0.40")},
        ],
    }


def _txn(transaction_id, loan_id, customer_id, transaction_type, amount, status, transaction_date):
    return {
        "transaction_id": transaction_id,
        "loan_id": loan_id,
        "customer_id": customer_id,
        "transaction_type": transaction_type,
        "transaction_amount": Decimal(amount),
        "status": status,
        "transaction_date": transaction_date,
    }


ORM_MODELS = {
    "customer": Customer,
    "loan": Loan,
    "transaction": Transaction,
    "behavior_log": BehaviorLog,
    "customer_feedback": CustomerFeedback,
}


@pytest.fixture
def today() -> date:
    return TODAY


@pytest.fixture
def catalog():
    """Fresh frozen catalog per test"""
    return build_default_catalog()


@pytest.fixture
def lending_data() -> Dict[str, List[Dict[str, Any]]]:
    """Fresh copy of the lending book, safe to mutate"""
    return lending_rows()


@pytest.fixture
def memory_store() -> InMemoryStore:
    return InMemoryStore(lending_rows())


@pytest.fixture
def executor(catalog, memory_store) -> Executor:
    """Executor over the in-memory lending book with a fixed clock"""
    return Executor(catalog, memory_store, clock=lambda: TODAY)


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database populated with the lending book"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        for table, rows in lending_rows().items():
            db.add_all(ORM_MODELS[table](**row) for row in rows)
        db.commit()
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def sql_executor(db: Session, catalog) -> Executor:
    """Executor over the SQLite test database with a fixed clock"""
    return Executor(catalog, SqlAlchemyStore(engine), clock=lambda: TODAY)


@pytest.fixture
def client(sql_executor: Executor) -> TestClient:
    """Create FastAPI test client backed by the test database"""
    app = create_app()
    app.dependency_overrides[get_executor] = lambda: sql_executor
    return TestClient(app)
