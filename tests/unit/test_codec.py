import json

import pytest
from conftest import create_request, create_review

from admission_control.codec import ReviewCodec
from admission_control.exceptions import DecodeError, UnsupportedKindError
from admission_control.models import AdmissionResponse, AdmissionReview, PatchType, Status
from admission_control.resources import Deployment, Ingress, Scheme, Service, scheme


@pytest.fixture
def codec():
    return ReviewCodec()


def test_decode_review(codec, pod):
    """Test decoding an AdmissionReview."""
    raw = json.dumps(create_request(pod, uid="uid-1")).encode()

    review = codec.decode_review(raw)

    assert review.request.uid == "uid-1"
    assert review.request.object == pod


@pytest.mark.parametrize("raw", [b"", None, ""])
def test_decode_empty_payload_is_an_error(codec, raw):
    """Test that an empty payload is never decoded."""
    with pytest.raises(DecodeError, match="empty payload"):
        codec.decode_review(raw)


def test_decode_malformed_payload(codec):
    """Test that malformed JSON raises a DecodeError."""
    with pytest.raises(DecodeError):
        codec.decode_review(b"{not json")


def test_decode_object_uses_the_scheme(codec, deployment):
    """Test that the target type is looked up by Kind."""
    request = create_review(deployment).request

    obj = codec.decode_object(request)

    assert isinstance(obj, Deployment)
    assert obj.name == "hello-deployment"
    assert obj.spec.template.metadata.labels == {"app": "hello"}


def test_decode_object_with_explicit_target(codec, load_balancer_service):
    """Test decoding into an explicit target type."""
    request = create_review(load_balancer_service).request

    service = codec.decode_object(request, Service)

    assert service.spec.type == "LoadBalancer"
    assert service.spec.ports[0].target_port == 8080


def test_decode_object_unknown_kind(codec):
    """Test that unregistered kinds are rejected."""
    request = create_review({"kind": "CronTab", "metadata": {"name": "x"}}).request

    with pytest.raises(UnsupportedKindError, match="CronTab"):
        codec.decode_object(request)


def test_decode_object_without_object(codec):
    """Test that a request without an object cannot be decoded."""
    review = AdmissionReview.model_validate({"request": {"uid": "1", "kind": {"kind": "Ingress"}}})

    with pytest.raises(DecodeError):
        codec.decode_object(review.request, Ingress)


def test_custom_scheme():
    """Test registering a Kind in a separate scheme."""
    custom = Scheme()
    custom.register("Gateway")(Ingress)
    codec = ReviewCodec(scheme=custom)

    request = create_review({"kind": "Gateway", "metadata": {"name": "gw"}}).request

    assert isinstance(codec.decode_object(request), Ingress)
    assert "Gateway" in custom
    assert "Gateway" not in scheme


def test_encode_round_trip(codec):
    """Test that encoding then decoding preserves the response."""
    review = AdmissionReview(
        response=AdmissionResponse(
            uid="uid-2",
            allowed=False,
            result=Status(message="denied"),
            patch=[{"op": "replace", "path": "/spec/replicas", "value": 3}],
            patch_type=PatchType.JSON_PATCH,
        )
    )

    decoded = codec.decode_review(codec.encode(review))

    assert decoded.response.uid == "uid-2"
    assert decoded.response.allowed is False
    assert decoded.response.message == "denied"
    assert decoded.response.patch_document == review.response.patch_document
    assert decoded.response.patch_type is PatchType.JSON_PATCH


def test_encode_uses_wire_names(codec):
    """Test that encoding uses camelCase names and omits empty fields."""
    encoded = json.loads(codec.encode(AdmissionReview(response=AdmissionResponse(uid="u"))))

    assert encoded == {
        "apiVersion": "admission.k8s.io/v1",
        "kind": "AdmissionReview",
        "response": {"uid": "u", "allowed": False},
    }
