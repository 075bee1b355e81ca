# conftest.py
"""
Shared test fixtures for the admission control tests
"""

import copy
import os

import pytest

from admission_control.models import AdmissionReview, ApiVersion


def create_request(
    resource_object,
    uid="test-uid-123",
    operation="CREATE",
    kind=None,
    namespace=None,
    api_version=ApiVersion.V1.value,
):
    """Helper function to create an AdmissionReview payload."""
    request = {
        "uid": uid,
        "kind": {"group": "", "version": "v1", "kind": kind or resource_object.get("kind", "")},
        "operation": operation,
        "object": resource_object,
    }
    namespace = namespace or resource_object.get("metadata", {}).get("namespace")
    if namespace:
        request["namespace"] = namespace

    return {
        "apiVersion": api_version,
        "kind": "AdmissionReview",
        "request": request,
    }


def create_review(resource_object, **kwargs) -> AdmissionReview:
    """Helper function to create a decoded AdmissionReview."""
    return AdmissionReview.model_validate(create_request(resource_object, **kwargs))


def with_annotations(resource_object, annotations):
    """Return a copy of the object with its metadata annotations replaced."""
    updated = copy.deepcopy(resource_object)
    updated["metadata"]["annotations"] = annotations
    return updated


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep ADMISSION_* settings from the outer environment out of the tests."""
    for name in list(os.environ):
        if name.startswith("ADMISSION_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def ingress():
    return {
        "apiVersion": "networking.k8s.io/v1",
        "kind": "Ingress",
        "metadata": {"name": "hello-ingress", "namespace": "default"},
        "spec": {
            "rules": [
                {
                    "host": "hello.example.com",
                    "http": {
                        "paths": [
                            {
                                "path": "/",
                                "pathType": "Prefix",
                                "backend": {"service": {"name": "hello", "port": {"number": 80}}},
                            }
                        ]
                    },
                }
            ]
        },
    }


@pytest.fixture
def load_balancer_service():
    """A Service of type LoadBalancer without any annotations."""
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {"name": "hello-service", "namespace": "default"},
        "spec": {
            "type": "LoadBalancer",
            "selector": {"app": "hello"},
            "ports": [{"protocol": "TCP", "port": 80, "targetPort": 8080}],
        },
    }


@pytest.fixture
def cluster_ip_service(load_balancer_service):
    service = copy.deepcopy(load_balancer_service)
    service["spec"]["type"] = "ClusterIP"
    return service


@pytest.fixture
def pod():
    """A Pod without annotations."""
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {"name": "hello-pod", "namespace": "default", "labels": {"app": "hello"}},
        "spec": {"containers": [{"name": "app", "image": "nginx:1.25"}]},
    }


@pytest.fixture
def deployment():
    """A Deployment whose Pod template carries no annotations."""
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": "hello-deployment", "namespace": "default"},
        "spec": {
            "selector": {"matchLabels": {"app": "hello"}},
            "template": {
                "metadata": {"labels": {"app": "hello"}},
                "spec": {"containers": [{"name": "app", "image": "nginx:1.25"}]},
            },
        },
    }
