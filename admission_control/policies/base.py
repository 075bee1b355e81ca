from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Iterable, Optional, Union

from admission_control.codec import ReviewCodec, codec as default_codec
from admission_control.exceptions import DenialMessage, PolicyViolation
from admission_control.models import AdmissionRequest, AdmissionResponse, AdmissionReview, Status
from admission_control.resources import KubeObject


AdmitFuncType = Callable[
    [AdmissionReview], Union[Optional[AdmissionResponse], Awaitable[Optional[AdmissionResponse]]]
]


class AdmitFunc(ABC):
    """
    A decision function: consumes an AdmissionReview and returns an
    AdmissionResponse, or raises to deny admission.

    Instances hold only construction-time configuration and are invoked
    concurrently, so admit() must never mutate shared state. Every
    implementation starts from a "not allowed" response and flips it only on
    an explicit, provable condition.
    """

    def __init__(
        self,
        ignored_namespaces: Optional[Iterable[str]] = None,
        codec: Optional[ReviewCodec] = None,
    ):
        # Namespace matching is exact and case-sensitive.
        self.ignored_namespaces = frozenset(ignored_namespaces or ())
        self.codec = codec or default_codec

    @abstractmethod
    def admit(self, review: AdmissionReview) -> AdmissionResponse:
        raise NotImplementedError()

    def __call__(self, review: AdmissionReview) -> AdmissionResponse:
        if review is None or review.request is None:
            raise PolicyViolation(DenialMessage.INVALID_REVIEW.value)

        return self.admit(review)

    def namespace_of(self, request: AdmissionRequest, obj: KubeObject) -> str:
        """The object's namespace, falling back to the namespace of the request."""
        return obj.namespace or request.namespace or ""

    def is_ignored(self, namespace: str) -> bool:
        return namespace in self.ignored_namespaces

    @staticmethod
    def new_response() -> AdmissionResponse:
        return AdmissionResponse(allowed=False)

    @staticmethod
    def allow(response: AdmissionResponse, message: Optional[str] = None) -> AdmissionResponse:
        response.allowed = True
        if message:
            response.result = Status(message=message)
        return response

    def allow_whitelisted(self, response: AdmissionResponse, namespace: str) -> AdmissionResponse:
        return self.allow(
            response, DenialMessage.NAMESPACE_WHITELISTED.format(namespace=namespace)
        )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(ignored_namespaces={sorted(self.ignored_namespaces)})"
