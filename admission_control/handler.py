import inspect
import threading
from typing import Optional

from fastapi import Request, Response, status
from loguru import logger
from starlette.concurrency import run_in_threadpool
from starlette.requests import ClientDisconnect

from admission_control.codec import ReviewCodec
from admission_control.exceptions import (
    AdmissionControlException,
    AdmissionError,
    DecodeError,
    DenialMessage,
)
from admission_control.models import (
    AdmissionResponse,
    AdmissionReview,
    ApiVersion,
    Status,
)
from admission_control.policies.base import AdmitFuncType


# Operators should tighten this to the size of the largest object they expect.
DEFAULT_LIMIT_BYTES = 1024 * 1024 * 1024

JSON_MEDIA_TYPE = "application/json"


class AdmissionHandler:
    """
    The HTTP endpoint for a single decision function.

    Every request is answered with exactly one AdmissionReview and HTTP 200,
    including failures, which are classified into an AdmissionError and
    denied. Some API server versions cannot parse non-200 admission
    responses, so HTTP 500 is only used if not even the error response can be
    encoded.

    Register several handlers with distinct decision functions to serve
    different admission requirements.
    """

    def __init__(
        self,
        admit_func: AdmitFuncType,
        limit_bytes: int = DEFAULT_LIMIT_BYTES,
        codec: Optional[ReviewCodec] = None,
    ):
        if admit_func is None:
            raise ValueError("a non-None admit_func must be provided")

        self.admit_func = admit_func
        self.limit_bytes = limit_bytes if limit_bytes and limit_bytes > 0 else DEFAULT_LIMIT_BYTES
        self.logger = logger.bind(component="handler", admit_func=repr(admit_func))
        # Left unset, the codec is created on first use.
        self._codec = codec
        self._codec_lock = threading.Lock()

    @property
    def codec(self) -> ReviewCodec:
        if self._codec is None:
            with self._codec_lock:
                if self._codec is None:
                    self._codec = ReviewCodec()
        return self._codec

    async def handle(self, request: Request) -> Response:
        """Handle a POSTed AdmissionReview."""
        incoming: Optional[AdmissionReview] = None
        try:
            body = await self.read_body(request)
            incoming = self.decode(body)
            content = await self.review(incoming)
        except AdmissionError as e:
            self.logger.bind(debug=e.debug).warning(f"{e.message} (debug: {e.debug})")
            return self.error_response(e, incoming)

        return Response(content=content, status_code=status.HTTP_200_OK, media_type=JSON_MEDIA_TYPE)

    async def read_body(self, request: Request) -> bytes:
        """
        Read the request body, refusing anything larger than limit_bytes.

        An oversized body is rejected outright; a partially read object must
        never be admitted.
        """
        body = bytearray()
        try:
            async for chunk in request.stream():
                body.extend(chunk)
                if len(body) > self.limit_bytes:
                    raise AdmissionError(
                        False,
                        DenialMessage.BODY_TOO_LARGE.format(limit=self.limit_bytes),
                        f"read {len(body)} bytes before giving up",
                    )
        except ClientDisconnect as e:
            raise AdmissionError(False, DenialMessage.READ_FAILED.value, f"client disconnected: {e!r}")

        if not body:
            raise AdmissionError(
                False,
                DenialMessage.NO_BODY.value,
                "the request body was empty",
            )

        return bytes(body)

    def decode(self, body: bytes) -> AdmissionReview:
        try:
            incoming = self.codec.decode_review(body)
        except DecodeError as e:
            raise AdmissionError(False, DenialMessage.DECODE_FAILED.value, str(e))

        if incoming.request is None:
            raise AdmissionError(
                False,
                DenialMessage.INVALID_REVIEW.value,
                "the AdmissionReview did not contain a request",
            )

        return incoming

    async def review(self, incoming: AdmissionReview) -> bytes:
        """Invoke the decision function and encode its answer."""
        request = incoming.request
        try:
            response = await self.invoke(incoming)
        except AdmissionError:
            raise
        except AdmissionControlException as e:
            raise AdmissionError(False, str(e), f"{e.__class__.__name__} (kind: {request.kind.kind})")
        except Exception as e:
            self.logger.exception(f"Admission function failed for request {request.uid}")
            raise AdmissionError(False, str(e) or e.__class__.__name__, repr(e))

        if response is None:
            raise AdmissionError(
                False,
                DenialMessage.NO_RESPONSE.value,
                f"{self.admit_func!r} returned None (kind: {request.kind.kind})",
            )

        if not isinstance(response, AdmissionResponse):
            try:
                response = AdmissionResponse.model_validate(response)
            except ValueError as e:
                raise AdmissionError(False, DenialMessage.MARSHAL_FAILED.value, str(e))

        response.uid = request.uid
        outgoing = AdmissionReview(api_version=incoming.api_version, response=response)

        try:
            return self.codec.encode(outgoing)
        except Exception as e:
            raise AdmissionError(False, DenialMessage.MARSHAL_FAILED.value, str(e))

    async def invoke(self, incoming: AdmissionReview) -> Optional[AdmissionResponse]:
        func = self.admit_func
        if inspect.iscoroutinefunction(func) or inspect.iscoroutinefunction(
            getattr(func, "__call__", None)
        ):
            return await func(incoming)

        result = await run_in_threadpool(func, incoming)
        if inspect.isawaitable(result):
            result = await result
        return result

    def error_response(
        self, error: AdmissionError, incoming: Optional[AdmissionReview] = None
    ) -> Response:
        api_version = ApiVersion.V1
        uid = ""
        if incoming is not None:
            api_version = incoming.api_version
            if incoming.request is not None:
                uid = incoming.request.uid

        outgoing = AdmissionReview(
            api_version=api_version,
            response=AdmissionResponse(
                uid=uid,
                allowed=error.allowed,
                result=Status(message=error.message),
            ),
        )

        try:
            content = self.codec.encode(outgoing)
        except Exception as e:
            self.logger.bind(err=str(e)).error("failed to marshal review response")
            return Response(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

        return Response(content=content, status_code=status.HTTP_200_OK, media_type=JSON_MEDIA_TYPE)
