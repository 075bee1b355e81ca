"""
Error taxonomy for the admission pipeline.

Decision functions raise these; the admission handler catches them at its
boundary and turns every one of them into a well-formed AdmissionReview.
"""

from enum import Enum


class DenialMessage(str, Enum):
    """Stable, user-visible messages surfaced by kubectl on rejection."""

    INGRESS_DENIED = "{kind} objects cannot be deployed to this cluster"
    NAMESPACE_WHITELISTED = "allowing admission: {namespace} namespace is whitelisted"
    PUBLIC_LOAD_BALANCER = (
        "{kind} objects of type: LoadBalancer without an internal-only annotation "
        "cannot be deployed to this cluster"
    )
    UNSUPPORTED_PROVIDER = (
        "cannot validate the internal load balancer annotation for the given provider ({provider})"
    )
    PODS_MISSING_ANNOTATIONS = "the submitted Pods are missing required annotations:"
    NIL_PREDICATE = "the validator for the annotation {key} is nil (misconfigured webhook)"
    UNSUPPORTED_KIND = "the submitted Kind is not supported by this admission handler:"
    NOT_A_POD = "object was not a pod, {kind}"

    # Handler-level failures
    NO_BODY = "no request body was received"
    READ_FAILED = "could not read the request body"
    BODY_TOO_LARGE = "the request body exceeds the {limit} byte limit"
    DECODE_FAILED = "decoding the review request failed"
    INVALID_REVIEW = "received invalid AdmissionReview"
    NO_RESPONSE = "the admission function returned no response"
    MARSHAL_FAILED = "marshalling the review response failed"

    def format(self, **kwargs) -> str:
        return self.value.format(**kwargs)


class AdmissionControlException(Exception):
    """Base class for every error raised by this package."""


class DecodeError(AdmissionControlException):
    """Raw bytes were empty, malformed or incompatible with the target schema."""


class PolicyViolation(AdmissionControlException):
    """The submitted object violates the policy of a decision function."""


class UnsupportedKindError(PolicyViolation):
    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(f"{DenialMessage.UNSUPPORTED_KIND.value} {kind}")


class ConfigurationError(AdmissionControlException):
    """The webhook itself is misconfigured, as opposed to the submitted manifest."""


class UnsupportedProviderError(ConfigurationError):
    def __init__(self, provider):
        self.provider = provider
        super().__init__(DenialMessage.UNSUPPORTED_PROVIDER.format(provider=provider))


class NilPredicateError(ConfigurationError):
    def __init__(self, key: str):
        self.key = key
        super().__init__(DenialMessage.NIL_PREDICATE.format(key=key))


class ListenerError(AdmissionControlException):
    """The HTTP listener failed to bind or exited on its own."""


class AdmissionError(AdmissionControlException):
    """
    A classified failure inside the admission handler.

    Carries whether admission should nonetheless be allowed (almost always
    False), the message returned to the API server and a debug detail that is
    only logged.
    """

    def __init__(self, allowed: bool, message: str, debug: str = ""):
        self.allowed = allowed
        self.message = message
        self.debug = debug
        super().__init__(message)

    def __str__(self) -> str:
        return f"admission error: {self.message} (allowed: {str(self.allowed).lower()})"
