"""
Conversion between wire bytes and typed admission objects.
"""

from typing import Optional, Type, TypeVar, Union

from loguru import logger
from pydantic import BaseModel, ValidationError

from admission_control.exceptions import DecodeError, UnsupportedKindError
from admission_control.models import AdmissionRequest, AdmissionReview
from admission_control.resources import KubeObject, Scheme, scheme as default_scheme

T = TypeVar("T", bound=BaseModel)


class ReviewCodec:
    """Decodes AdmissionReviews and the Kubernetes objects embedded in them."""

    def __init__(self, scheme: Optional[Scheme] = None):
        self.scheme = scheme or default_scheme

    def decode(self, raw: Union[bytes, str, None], target: Type[T]) -> T:
        """
        Decode raw JSON into an instance of target.

        An empty payload is always an error; it is never treated as a
        default-valued object.

        Raises:
            DecodeError: If the bytes are empty, malformed or do not match the
                target schema.
        """
        if not raw:
            raise DecodeError(f"cannot decode an empty payload into {target.__name__}")

        try:
            return target.model_validate_json(raw)
        except ValidationError as e:
            logger.debug(f"Failed to decode {target.__name__}: {e}")
            raise DecodeError(f"could not decode {target.__name__}: {e}") from e

    def encode(self, value: BaseModel) -> bytes:
        """Encode a wire model using its Kubernetes (camelCase) field names."""
        return value.model_dump_json(by_alias=True, exclude_none=True).encode()

    def decode_review(self, raw: Union[bytes, str, None]) -> AdmissionReview:
        return self.decode(raw, AdmissionReview)

    def decode_object(
        self, request: AdmissionRequest, target: Optional[Type[KubeObject]] = None
    ) -> KubeObject:
        """
        Materialize the object embedded in an AdmissionRequest.

        The target type defaults to the class registered in the scheme for the
        request's Kind.

        Raises:
            UnsupportedKindError: If no target is given and the Kind is not in
                the scheme.
            DecodeError: If the embedded object is empty or malformed.
        """
        if target is None:
            target = self.scheme.lookup(request.kind.kind)
            if target is None:
                raise UnsupportedKindError(request.kind.kind)

        return self.decode(request.raw_object, target)


codec = ReviewCodec()
