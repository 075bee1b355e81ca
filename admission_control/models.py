"""
Pydantic models for the admission.k8s.io AdmissionReview envelope.

https://kubernetes.io/docs/reference/config-api/apiserver-admission.v1/
"""

import base64
import json
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    RootModel,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


class ApiVersion(str, Enum):
    V1 = "admission.k8s.io/v1"
    V1BETA1 = "admission.k8s.io/v1beta1"


class Operation(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    CONNECT = "CONNECT"


class PatchType(str, Enum):
    JSON_PATCH = "JSONPatch"


class PatchOp(str, Enum):
    ADD = "add"
    REPLACE = "replace"
    REMOVE = "remove"


class KubeModel(BaseModel):
    """Base for wire models: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class GroupVersionKind(KubeModel):
    group: str = ""
    version: str = ""
    kind: str = ""


class GroupVersionResource(KubeModel):
    group: str = ""
    version: str = ""
    resource: str = ""


class UserInfo(KubeModel):
    username: Optional[str] = None
    uid: Optional[str] = None
    groups: Optional[List[str]] = None
    extra: Optional[Dict[str, List[str]]] = None


# https://kubernetes.io/docs/reference/generated/kubernetes-api/v1.30/#status-v1-meta
class Status(KubeModel):
    message: str = ""
    reason: Optional[str] = None
    code: Optional[int] = None


# https://jsonpatch.com/
class PatchOperation(KubeModel):
    op: PatchOp
    path: str
    value: Any = None


class JSONPatch(RootModel[List[PatchOperation]]):
    def to_json(self) -> bytes:
        return self.model_dump_json(exclude_none=True).encode()


def encode_patch(patch: JSONPatch) -> str:
    """Base64 encode a JSON patch for AdmissionResponse.patch."""
    return base64.b64encode(patch.to_json()).decode()


def json_patch_escape(val: str) -> str:
    """Escape a map key for use as a JSON pointer segment (RFC 6901)."""
    return val.replace("~", "~0").replace("/", "~1")


class AdmissionRequest(KubeModel):
    uid: str = ""
    kind: GroupVersionKind = Field(default_factory=GroupVersionKind)
    resource: Optional[GroupVersionResource] = None
    sub_resource: Optional[str] = None
    request_kind: Optional[GroupVersionKind] = None
    name: Optional[str] = None
    namespace: Optional[str] = None
    operation: Optional[Operation] = None
    user_info: Optional[UserInfo] = None
    object: Optional[Dict[str, Any]] = None
    old_object: Optional[Dict[str, Any]] = None
    dry_run: Optional[bool] = None

    @property
    def raw_object(self) -> bytes:
        """The submitted object as serialized bytes; empty when absent."""
        if not self.object:
            return b""
        return json.dumps(self.object, separators=(",", ":")).encode()


class AdmissionResponse(KubeModel):
    uid: str = ""
    allowed: bool = False
    # AdmissionResponse.Result is serialized as "status" by the API server.
    result: Optional[Status] = Field(
        default=None,
        validation_alias=AliasChoices("status", "result"),
        serialization_alias="status",
    )
    patch: Optional[str] = None
    patch_type: Optional[PatchType] = None
    warnings: Optional[List[str]] = None

    @field_validator("patch", mode="before")
    @classmethod
    def validate_patch(cls, val):
        if val is None:
            return val
        if isinstance(val, list):
            val = JSONPatch.model_validate(val)
        if isinstance(val, JSONPatch):
            return encode_patch(val)
        if isinstance(val, bytes):
            val = val.decode()
        if isinstance(val, str):
            # Make sure the base64 string contains a valid JSON patch.
            try:
                JSONPatch.model_validate_json(base64.b64decode(val, validate=True))
            except ValueError as e:
                raise ValueError(f"patch is not a base64 encoded JSON patch: {e}")
        return val

    @model_validator(mode="after")
    def validate_model(self):
        if self.patch and not self.patch_type:
            raise ValueError("missing patchType field")
        if self.patch_type and not self.patch:
            raise ValueError(f"patchType is {self.patch_type.value} but there is no patch")
        return self

    @property
    def message(self) -> str:
        return self.result.message if self.result else ""

    @property
    def patch_document(self) -> Optional[bytes]:
        """The decoded JSON patch, as sent to the API server."""
        if self.patch is None:
            return None
        return base64.b64decode(self.patch)


class AdmissionReview(KubeModel):
    api_version: ApiVersion = ApiVersion.V1
    kind: str = "AdmissionReview"
    request: Optional[AdmissionRequest] = None
    response: Optional[AdmissionResponse] = None
