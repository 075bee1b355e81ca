from loguru import logger

from admission_control.exceptions import DenialMessage
from admission_control.models import (
    AdmissionResponse,
    AdmissionReview,
    JSONPatch,
    PatchOp,
    PatchOperation,
    PatchType,
    encode_patch,
    json_patch_escape,
)
from admission_control.policies.base import AdmitFunc
from admission_control.resources import Pod


SAFE_TO_EVICT_ANNOTATION = "cluster-autoscaler.kubernetes.io/safe-to-evict"


class AddAutoscalerAnnotation(AdmitFunc):
    """
    Mutate Pods so that the cluster autoscaler may evict them, by setting the
    safe-to-evict annotation to "true" when it is absent.

    Kinds other than Pod are allowed without modification.
    """

    def admit(self, review: AdmissionReview) -> AdmissionResponse:
        request = review.request
        kind = request.kind.kind
        response = self.new_response()

        if kind != "Pod":
            return self.allow(response, DenialMessage.NOT_A_POD.format(kind=kind))

        pod = self.codec.decode_object(request, Pod)
        namespace = self.namespace_of(request, pod)
        if self.is_ignored(namespace):
            return self.allow_whitelisted(response, namespace)

        if SAFE_TO_EVICT_ANNOTATION in pod.annotations:
            return self.allow(response)

        response.patch = encode_patch(self.build_patch(pod))
        response.patch_type = PatchType.JSON_PATCH
        logger.debug(f"Adding {SAFE_TO_EVICT_ANNOTATION} to Pod {namespace}/{pod.name}")

        return self.allow(response)

    @staticmethod
    def build_patch(pod: Pod) -> JSONPatch:
        # The operation has to match the current shape of the object: the
        # whole map is added when the Pod has none.
        if pod.metadata.annotations is None:
            operation = PatchOperation(
                op=PatchOp.ADD,
                path="/metadata/annotations",
                value={SAFE_TO_EVICT_ANNOTATION: "true"},
            )
        else:
            # RFC 6902 replace requires the member to exist; API servers that
            # enforce this reject the patch when the key is absent.
            operation = PatchOperation(
                op=PatchOp.REPLACE,
                path=f"/metadata/annotations/{json_patch_escape(SAFE_TO_EVICT_ANNOTATION)}",
                value="true",
            )

        return JSONPatch([operation])
