from loguru import logger

from admission_control.exceptions import DenialMessage, PolicyViolation
from admission_control.models import AdmissionResponse, AdmissionReview
from admission_control.policies.base import AdmitFunc
from admission_control.resources import Ingress


class DenyIngresses(AdmitFunc):
    """
    Deny any kind: Ingress from being deployed to the cluster, except in
    whitelisted namespaces (e.g. istio-system).

    An empty list of ignored namespaces rejects Ingress objects across all
    namespaces. Kinds other than Ingress are always allowed.
    """

    def admit(self, review: AdmissionReview) -> AdmissionResponse:
        request = review.request
        # Base Kind, e.g. "Ingress" as opposed to "networking.k8s.io/v1/Ingress"
        kind = request.kind.kind
        response = self.new_response()

        if kind != "Ingress":
            return self.allow(response)

        ingress = self.codec.decode_object(request, Ingress)
        namespace = self.namespace_of(request, ingress)
        if self.is_ignored(namespace):
            logger.debug(f"Allowing Ingress {ingress.name} in whitelisted namespace {namespace}")
            return self.allow_whitelisted(response, namespace)

        raise PolicyViolation(DenialMessage.INGRESS_DENIED.format(kind=kind))
