import re
from types import MappingProxyType
from typing import Callable, Dict, FrozenSet, Iterable, Mapping, Optional

from loguru import logger

from admission_control.codec import ReviewCodec
from admission_control.exceptions import (
    DenialMessage,
    NilPredicateError,
    PolicyViolation,
    UnsupportedKindError,
)
from admission_control.models import AdmissionResponse, AdmissionReview
from admission_control.policies.base import AdmitFunc
from admission_control.resources import PodBearing


AnnotationPredicate = Callable[[str], bool]

POD_KINDS: FrozenSet[str] = frozenset({"Pod", "Deployment", "StatefulSet", "DaemonSet", "Job"})

KEY_NOT_FOUND = "key was not found"
VALUE_MISMATCH = "value did not match"


def matches(pattern: str) -> AnnotationPredicate:
    """Build a predicate that fully matches an annotation value against a regular expression."""
    compiled = re.compile(pattern)

    def _matches(value: str) -> bool:
        return compiled.fullmatch(value) is not None

    return _matches


class EnforcePodAnnotations(AdmitFunc):
    """
    Deny Pods, and controllers of Pods, whose Pod metadata lacks the required
    annotations.

    Keys are matched exactly (case-sensitive); values are checked by the
    predicate registered for each key. For Deployments, StatefulSets,
    DaemonSets and Jobs the annotations are read from the Pod template, not
    from the outer object. Kinds outside of that list are always denied.
    """

    def __init__(
        self,
        ignored_namespaces: Optional[Iterable[str]] = None,
        required_annotations: Optional[Mapping[str, Optional[AnnotationPredicate]]] = None,
        codec: Optional[ReviewCodec] = None,
    ):
        super().__init__(ignored_namespaces, codec)
        self.required_annotations = MappingProxyType(dict(required_annotations or {}))

    def admit(self, review: AdmissionReview) -> AdmissionResponse:
        request = review.request
        kind = request.kind.kind
        response = self.new_response()

        if kind not in POD_KINDS:
            raise UnsupportedKindError(kind)

        obj = self.codec.decode_object(request)
        if not isinstance(obj, PodBearing):
            raise UnsupportedKindError(kind)

        namespace = self.namespace_of(request, obj)
        if self.is_ignored(namespace):
            return self.allow_whitelisted(response, namespace)

        missing = self.find_missing(obj.pod_annotations)
        if missing:
            details = ", ".join(f"{key}: {reason}" for key, reason in sorted(missing.items()))
            logger.debug(f"{kind} {namespace}/{obj.name} is missing annotations: {details}")
            raise PolicyViolation(f"{DenialMessage.PODS_MISSING_ANNOTATIONS.value} {details}")

        return self.allow(response)

    def find_missing(self, annotations: Mapping[str, str]) -> Dict[str, str]:
        """
        Check every required annotation and collect all of the violations.

        Raises:
            NilPredicateError: If a required annotation has no predicate.
        """
        missing: Dict[str, str] = {}
        for key, predicate in self.required_annotations.items():
            if predicate is None:
                raise NilPredicateError(key)

            if key not in annotations:
                missing[key] = KEY_NOT_FOUND
            elif not predicate(annotations[key]):
                missing[key] = VALUE_MISMATCH

        return missing

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(ignored_namespaces={sorted(self.ignored_namespaces)}, "
            f"required_annotations={sorted(self.required_annotations)})"
        )
