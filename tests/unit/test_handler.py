import json

import pytest
from conftest import create_request
from fastapi import FastAPI
from fastapi.testclient import TestClient

from admission_control.exceptions import AdmissionError, PolicyViolation
from admission_control.handler import DEFAULT_LIMIT_BYTES, AdmissionHandler
from admission_control.models import AdmissionResponse, Status
from admission_control.policies.ingress import DenyIngresses


def make_client(admit_func, **kwargs) -> TestClient:
    handler = AdmissionHandler(admit_func, **kwargs)
    app = FastAPI()
    app.add_api_route("/admit", handler.handle, methods=["POST"])
    return TestClient(app)


def allow_all(review):
    return AdmissionResponse(allowed=True)


def post(client, payload):
    if isinstance(payload, dict):
        payload = json.dumps(payload).encode()
    return client.post("/admit", content=payload, headers={"Content-Type": "application/json"})


def test_handler_requires_admit_func():
    """Test that a handler needs a decision function."""
    with pytest.raises(ValueError):
        AdmissionHandler(None)


def test_non_positive_limit_uses_default():
    """Test that a non-positive limit falls back to the default."""
    assert AdmissionHandler(allow_all, limit_bytes=0).limit_bytes == DEFAULT_LIMIT_BYTES


def test_allowed_response_echoes_uid(pod):
    """Test that the request UID is echoed in the response."""
    client = make_client(allow_all)

    response = post(client, create_request(pod, uid="b5d7c1c8"))

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/json"
    review = response.json()
    assert review["apiVersion"] == "admission.k8s.io/v1"
    assert review["kind"] == "AdmissionReview"
    assert review["response"] == {"uid": "b5d7c1c8", "allowed": True}


def test_api_version_is_echoed(pod):
    """Test that the inbound apiVersion is echoed."""
    client = make_client(allow_all)

    response = post(client, create_request(pod, api_version="admission.k8s.io/v1beta1"))

    assert response.json()["apiVersion"] == "admission.k8s.io/v1beta1"


def test_uid_set_by_admit_func_is_overwritten(pod):
    """Test that the request UID always wins."""
    client = make_client(lambda review: AdmissionResponse(uid="wrong", allowed=True))

    response = post(client, create_request(pod, uid="right"))

    assert response.json()["response"]["uid"] == "right"


def test_policy_violation_is_denied(ingress):
    """Test that a policy violation becomes a denial."""
    client = make_client(DenyIngresses())

    response = post(client, create_request(ingress, uid="ing-1"))

    assert response.status_code == 200
    assert response.json()["response"] == {
        "uid": "ing-1",
        "allowed": False,
        "status": {"message": "Ingress objects cannot be deployed to this cluster"},
    }


def test_empty_body():
    """Test the response to an empty body."""
    client = make_client(allow_all)

    response = post(client, b"")

    assert response.status_code == 200
    assert response.json()["response"] == {
        "uid": "",
        "allowed": False,
        "status": {"message": "no request body was received"},
    }


def test_body_over_the_limit_is_rejected(pod):
    """Test that oversized bodies are rejected, not truncated."""
    client = make_client(allow_all, limit_bytes=64)

    response = post(client, create_request(pod))

    assert response.status_code == 200
    assert response.json()["response"]["allowed"] is False
    assert response.json()["response"]["status"]["message"] == (
        "the request body exceeds the 64 byte limit"
    )


def test_malformed_body():
    """Test the response to a malformed body."""
    client = make_client(allow_all)

    response = post(client, b'{"request": ')

    assert response.json()["response"]["allowed"] is False
    assert response.json()["response"]["status"]["message"] == "decoding the review request failed"


def test_review_without_request():
    """Test the response to a review without a request."""
    client = make_client(allow_all)

    response = post(client, {"apiVersion": "admission.k8s.io/v1", "kind": "AdmissionReview"})

    assert response.json()["response"]["status"]["message"] == "received invalid AdmissionReview"


def test_admit_func_returning_none(pod):
    """Test that a missing response is denied."""
    client = make_client(lambda review: None)

    response = post(client, create_request(pod, uid="none-1"))

    assert response.json()["response"] == {
        "uid": "none-1",
        "allowed": False,
        "status": {"message": "the admission function returned no response"},
    }


def test_admit_func_raising_unexpected_error(pod):
    """Test that unexpected errors are denied."""
    def broken(review):
        raise RuntimeError("boom")

    client = make_client(broken)

    response = post(client, create_request(pod, uid="err-1"))

    assert response.status_code == 200
    assert response.json()["response"] == {
        "uid": "err-1",
        "allowed": False,
        "status": {"message": "boom"},
    }


def test_admit_func_raising_admission_error_may_allow(pod):
    """Test that an AdmissionError may still allow admission."""
    def lenient(review):
        raise AdmissionError(True, "allowed despite the failure", "debug detail")

    client = make_client(lenient)

    response = post(client, create_request(pod))

    assert response.json()["response"]["allowed"] is True
    assert response.json()["response"]["status"]["message"] == "allowed despite the failure"


def test_async_admit_func(pod):
    """Test an async decision function."""
    async def deny(review):
        raise PolicyViolation(f"no {review.request.kind.kind} today")

    client = make_client(deny)

    response = post(client, create_request(pod))

    assert response.json()["response"]["status"]["message"] == "no Pod today"


def test_dict_result_is_coerced(pod):
    """Test that a dict result is coerced into a response."""
    client = make_client(lambda review: {"allowed": True, "status": {"message": "fine"}})

    response = post(client, create_request(pod, uid="dict-1"))

    assert response.json()["response"] == {
        "uid": "dict-1",
        "allowed": True,
        "status": {"message": "fine"},
    }


def test_invalid_result_is_denied(pod):
    """Test that an invalid result is denied."""
    client = make_client(lambda review: {"allowed": True, "patch": "bm9wZQ=="})

    response = post(client, create_request(pod))

    assert response.json()["response"]["allowed"] is False
    assert response.json()["response"]["status"]["message"] == (
        "marshalling the review response failed"
    )


def test_patch_is_returned(pod):
    """Test that a patch is returned base64 encoded."""
    def patch(review):
        return AdmissionResponse(
            allowed=True,
            result=Status(message="patched"),
            patch=[{"op": "add", "path": "/metadata/labels/team", "value": "infra"}],
            patch_type="JSONPatch",
        )

    client = make_client(patch)

    body = post(client, create_request(pod)).json()["response"]

    assert body["allowed"] is True
    assert body["patchType"] == "JSONPatch"
    assert AdmissionResponse.model_validate(body).patch_document == (
        b'[{"op":"add","path":"/metadata/labels/team","value":"infra"}]'
    )


def test_unencodable_error_response_is_a_server_error(monkeypatch):
    """Test the HTTP 500 fallback."""
    handler = AdmissionHandler(allow_all)

    def fail(value):
        raise ValueError("cannot encode")

    monkeypatch.setattr(handler.codec, "encode", fail)
    app = FastAPI()
    app.add_api_route("/admit", handler.handle, methods=["POST"])

    response = TestClient(app).post("/admit", content=b"")

    assert response.status_code == 500
