from enum import Enum
from typing import Dict, Iterable, Optional, Tuple, Union

from loguru import logger

from admission_control.codec import ReviewCodec
from admission_control.exceptions import (
    DenialMessage,
    PolicyViolation,
    UnsupportedProviderError,
)
from admission_control.models import AdmissionResponse, AdmissionReview
from admission_control.policies.base import AdmitFunc
from admission_control.policies.ingress import DenyIngresses
from admission_control.resources import Service


class CloudProvider(str, Enum):
    """Cloud platforms with a known internal-only load balancer annotation."""

    GCP = "gcp"
    AZURE = "azure"
    AWS = "aws"
    OPENSTACK = "openstack"

    @classmethod
    def parse(cls, value: Union["CloudProvider", str]) -> "CloudProvider":
        """
        Resolve a provider from its name, case-insensitively.

        Raises:
            UnsupportedProviderError: If the value names no known provider.
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise UnsupportedProviderError(value)


# https://kubernetes.io/docs/concepts/services-networking/service/#internal-load-balancer
ILB_ANNOTATIONS: Dict[CloudProvider, Tuple[str, str]] = {
    # https://cloud.google.com/kubernetes-engine/docs/how-to/internal-load-balancing
    CloudProvider.GCP: ("cloud.google.com/load-balancer-type", "Internal"),
    CloudProvider.AZURE: ("service.beta.kubernetes.io/azure-load-balancer-internal", "true"),
    CloudProvider.AWS: ("service.beta.kubernetes.io/aws-load-balancer-internal", "0.0.0.0/0"),
    CloudProvider.OPENSTACK: ("service.beta.kubernetes.io/openstack-internal-load-balancer", "true"),
}


def internal_annotation(provider: Union[CloudProvider, str]) -> Tuple[str, str]:
    """Return the (key, value) pair marking a load balancer internal-only for provider."""
    parsed = CloudProvider.parse(provider)
    try:
        return ILB_ANNOTATIONS[parsed]
    except KeyError:
        raise UnsupportedProviderError(provider)


class DenyPublicLoadBalancers(AdmitFunc):
    """
    Deny non-internal cloud load balancers (kind: Service of type:
    LoadBalancer) by looking for the provider's internal load balancer
    annotation. This prevents accidentally exposing Services to the Internet
    on clusters designed to be internal-facing only.

    Services of any other type are never rejected.
    """

    def __init__(
        self,
        ignored_namespaces: Optional[Iterable[str]] = None,
        provider: Union[CloudProvider, str] = CloudProvider.GCP,
        codec: Optional[ReviewCodec] = None,
    ):
        super().__init__(ignored_namespaces, codec)
        self.provider = provider

    def admit(self, review: AdmissionReview) -> AdmissionResponse:
        request = review.request
        kind = request.kind.kind
        response = self.new_response()

        if kind != "Service":
            return self.allow(response)

        service = self.codec.decode_object(request, Service)
        if service.spec.type != "LoadBalancer":
            return self.allow(response)

        namespace = self.namespace_of(request, service)
        if self.is_ignored(namespace):
            return self.allow_whitelisted(response, namespace)

        key, expected = internal_annotation(self.provider)
        actual = service.annotations.get(key)
        if actual != expected:
            logger.debug(
                f"Service {namespace}/{service.name} has {key}={actual!r}, expected {expected!r}"
            )
            raise PolicyViolation(
                f"{DenialMessage.PUBLIC_LOAD_BALANCER.format(kind=kind)}: "
                f"missing or invalid annotations: {key}={expected}"
            )

        return self.allow(response)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(ignored_namespaces={sorted(self.ignored_namespaces)}, "
            f"provider={self.provider!r})"
        )


class DenyPublicServices(AdmitFunc):
    """
    Reject any Ingress object, and any Service of type LoadBalancer without
    the GCP internal load balancer annotation. No namespace is whitelisted.
    """

    def __init__(self, codec: Optional[ReviewCodec] = None):
        super().__init__(None, codec)
        self.ingresses = DenyIngresses(codec=self.codec)
        self.load_balancers = DenyPublicLoadBalancers(provider=CloudProvider.GCP, codec=self.codec)

    def admit(self, review: AdmissionReview) -> AdmissionResponse:
        kind = review.request.kind.kind
        if kind == "Ingress":
            return self.ingresses.admit(review)

        return self.load_balancers.admit(review)
