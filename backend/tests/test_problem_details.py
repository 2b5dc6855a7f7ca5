from __future__ import annotations

from fastapi import FastAPI
from fastapi.testclient import TestClient

from medwaste.domain_errors import DomainError
from medwaste.problem_details import build_problem_details_response, domain_error_handler


def test_problem_details_payload_contains_stable_code_and_rfc7807_fields() -> None:
    response = build_problem_details_response(
        DomainError(
            code="HANDOFF_NOT_CONFIRMABLE",
            http_status=409,
            message="Handoff already confirmed",
            details={"status": "completed"},
        )
    )

    assert response.status_code == 409
    assert response.media_type == "application/problem+json"

    body = response.body.decode("utf-8")
    assert '"type":"https://api.medwaste.local/problems/handoff_not_confirmable"' in body
    assert '"title":"Conflict"' in body
    assert '"status":409' in body
    assert '"detail":"Handoff already confirmed"' in body
    assert '"code":"HANDOFF_NOT_CONFIRMABLE"' in body
    assert '"details":{"status":"completed"}' in body


def test_problem_details_omits_details_when_none() -> None:
    response = build_problem_details_response(
        DomainError(
            code="HANDOFF_TOKEN_INVALID",
            http_status=404,
            message="Invalid or expired token",
            details=None,
        )
    )

    body = response.body.decode("utf-8")
    assert response.status_code == 404
    assert '"title":"Not Found"' in body
    assert '"details"' not in body


def test_fastapi_exception_handler_maps_domain_error_to_problem_details() -> None:
    app = FastAPI()
    app.add_exception_handler(DomainError, domain_error_handler)

    @app.get("/boom")
    def _boom():
        raise DomainError(
            code="HANDOFF_STEP1_NOT_COMPLETED",
            http_status=409,
            message="Facility-to-driver handoff must be completed before incineration",
        )

    client = TestClient(app)
    response = client.get("/boom")

    assert response.status_code == 409
    assert response.headers["content-type"].startswith("application/problem+json")
    payload = response.json()
    assert payload["code"] == "HANDOFF_STEP1_NOT_COMPLETED"
    assert payload["type"].endswith("/handoff_step1_not_completed")
