"""Integration tests for API endpoints"""

from decimal import Decimal
from fastapi.testclient import TestClient
from lending_insights.infrastructure.database.models import Customer


def test_health_endpoint(client: TestClient):
    """Test health check endpoint"""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "lending-insights"}


def test_metrics_endpoint(client: TestClient):
    """Test Prometheus metrics endpoint"""
    client.post("/v1/queries/loan_purpose_insights/execute", json={})

    response = client.get("/metrics")
    assert response.status_code == 200
    assert "lending_query_executions_total" in response.text
    assert "http_request_duration_seconds" in response.text


def test_request_id_propagated(client: TestClient):
    """Test caller-supplied request IDs are echoed back"""
    response = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"

    response = client.get("/health")
    assert response.headers["X-Request-ID"]


def test_list_queries(client: TestClient):
    """Test listing returns every query name, sorted"""
    response = client.get("/v1/queries")

    assert response.status_code == 200
    queries = response.json()["queries"]
    assert len(queries) == 15
    assert queries == sorted(queries)
    assert "repayment_history_ranking" in queries


def test_describe_query(client: TestClient):
    """Test description lists output columns and parameter specs"""
    response = client.get("/v1/queries/top_borrowing_regions")

    assert response.status_code == 200
    data = response.json()
    assert data["name"] == "top_borrowing_regions"
    assert data["shape"] == "group_aggregate"
    assert [c["name"] for c in data["output_columns"]] == [
        "region",
        "total_loans",
        "total_loan_disbursement",
        "avg_loan_amount",
    ]
    assert data["parameters"][0]["name"] == "top_n"
    assert data["parameters"][0]["type"] == "integer"
    assert data["parameters"][0]["default"] == 10
    assert data["parameters"][0]["required"] is False


def test_describe_unknown_query(client: TestClient):
    """Test unknown names return 404"""
    response = client.get("/v1/queries/does_not_exist")
    assert response.status_code == 404


def test_execute_query(client: TestClient):
    """Test executing a query with parameters"""
    response = client.post("/v1/queries/top_borrowing_regions/execute", json={"params": {"top_n": 2}})

    assert response.status_code == 200
    data = response.json()
    assert data["query"] == "top_borrowing_regions"
    assert data["row_count"] == 2
    assert data["columns"] == ["region", "total_loans", "total_loan_disbursement", "avg_loan_amount"]
    assert [r["region"] for r in data["rows"]] == [" TX", " IL"]
    assert Decimal(str(data["rows"][0]["total_loan_disbursement"])) == Decimal("28000")


def test_execute_without_body_uses_defaults(client: TestClient):
    """Test a missing body falls back to parameter defaults"""
    response = client.post("/v1/queries/customer_risk_analysis/execute")

    assert response.status_code == 200
    assert [r["customer_id"] for r in response.json()["rows"]] == [1, 2]


def test_execute_unknown_query(client: TestClient):
    """Test executing an unknown name returns 404"""
    response = client.post("/v1/queries/does_not_exist/execute", json={})
    assert response.status_code == 404


def test_execute_invalid_parameter(client: TestClient):
    """Test invalid parameters return 422 naming the parameter"""
    response = client.post("/v1/queries/top_borrowing_regions/execute", json={"params": {"top_n": -1}})

    assert response.status_code == 422
    assert "top_n" in response.json()["detail"]


def test_execute_unknown_parameter(client: TestClient):
    """Test undeclared parameters are rejected"""
    response = client.post("/v1/queries/feedback_correlation/execute", json={"params": {"status": "Active"}})
    assert response.status_code == 422


def test_execution_error_returns_500(client: TestClient, db):
    """Test data-quality failures map to 500"""
    db.get(Customer, 1).customer_since = "yesterday"
    db.commit()

    response = client.post("/v1/queries/loyal_customers/execute", json={})

    assert response.status_code == 500
    assert "customer_since" in response.json()["detail"]


def test_execute_non_finite_parameter(client: TestClient):
    """Test NaN thresholds are rejected as invalid parameters"""
    response = client.post(
        "/v1/queries/high_value_transactions/execute", json={"params": {"threshold_percent": "NaN"}}
    )

    assert response.status_code == 422
    assert "threshold_percent" in response.json()["detail"]
