"""
Typed Kubernetes resources understood by the built-in decision functions.

Each resource class registers itself in a Scheme under its Kind. New Kinds are
supported by defining a class and registering it; the decode call sites look
the class up by Kind and never need to change.
"""

from typing import Any, Dict, Iterator, List, Optional, Type, TypeVar

from pydantic import Field

from admission_control.models import KubeModel


class ObjectMeta(KubeModel):
    name: Optional[str] = None
    generate_name: Optional[str] = None
    namespace: Optional[str] = None
    uid: Optional[str] = None
    labels: Optional[Dict[str, str]] = None
    # None and {} are different shapes for a JSON patch: keep them apart.
    annotations: Optional[Dict[str, str]] = None


class KubeObject(KubeModel):
    api_version: Optional[str] = None
    kind: Optional[str] = None
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)

    @property
    def namespace(self) -> str:
        return self.metadata.namespace or ""

    @property
    def name(self) -> str:
        return self.metadata.name or self.metadata.generate_name or ""

    @property
    def annotations(self) -> Dict[str, str]:
        return self.metadata.annotations or {}


class PodBearing:
    """Mixin for objects that run Pods. Annotations are read from the Pod metadata."""

    @property
    def pod_metadata(self) -> ObjectMeta:
        raise NotImplementedError()

    @property
    def pod_annotations(self) -> Dict[str, str]:
        return self.pod_metadata.annotations or {}


class Container(KubeModel):
    name: str = ""
    image: Optional[str] = None


class PodSpec(KubeModel):
    containers: List[Container] = Field(default_factory=list)
    init_containers: Optional[List[Container]] = None
    service_account_name: Optional[str] = None
    node_selector: Optional[Dict[str, str]] = None


class PodTemplateSpec(KubeModel):
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: PodSpec = Field(default_factory=PodSpec)


class LabelSelector(KubeModel):
    match_labels: Optional[Dict[str, str]] = None
    match_expressions: Optional[List[Dict[str, Any]]] = None


class WorkloadSpec(KubeModel):
    selector: Optional[LabelSelector] = None
    template: PodTemplateSpec = Field(default_factory=PodTemplateSpec)


class ServicePort(KubeModel):
    name: Optional[str] = None
    protocol: Optional[str] = None
    port: int
    target_port: Optional[Any] = None
    node_port: Optional[int] = None


class ServiceSpec(KubeModel):
    type: Optional[str] = None
    ports: Optional[List[ServicePort]] = None
    selector: Optional[Dict[str, str]] = None
    external_traffic_policy: Optional[str] = None
    load_balancer_ip: Optional[str] = None


class IngressSpec(KubeModel):
    ingress_class_name: Optional[str] = None
    rules: Optional[List[Dict[str, Any]]] = None
    tls: Optional[List[Dict[str, Any]]] = None


ObjectT = TypeVar("ObjectT", bound=KubeObject)


class Scheme:
    """A registry of resource classes keyed by Kind."""

    def __init__(self):
        self._types: Dict[str, Type[KubeObject]] = {}

    def register(self, kind: Optional[str] = None):
        def _register(cls: Type[ObjectT]) -> Type[ObjectT]:
            self._types[kind or cls.__name__] = cls
            return cls

        return _register

    def lookup(self, kind: str) -> Optional[Type[KubeObject]]:
        return self._types.get(kind)

    def __contains__(self, kind: str) -> bool:
        return kind in self._types

    def __iter__(self) -> Iterator[str]:
        return iter(self._types)


scheme = Scheme()


@scheme.register()
class Pod(KubeObject, PodBearing):
    spec: PodSpec = Field(default_factory=PodSpec)

    @property
    def pod_metadata(self) -> ObjectMeta:
        return self.metadata


class TemplatedWorkload(KubeObject, PodBearing):
    spec: WorkloadSpec = Field(default_factory=WorkloadSpec)

    @property
    def pod_metadata(self) -> ObjectMeta:
        # Annotations on the controller itself never reach its Pods.
        return self.spec.template.metadata


@scheme.register()
class Deployment(TemplatedWorkload):
    pass


@scheme.register()
class StatefulSet(TemplatedWorkload):
    pass


@scheme.register()
class DaemonSet(TemplatedWorkload):
    pass


class JobSpec(WorkloadSpec):
    parallelism: Optional[int] = None
    completions: Optional[int] = None
    backoff_limit: Optional[int] = None


@scheme.register()
class Job(TemplatedWorkload):
    spec: JobSpec = Field(default_factory=JobSpec)


@scheme.register()
class Service(KubeObject):
    spec: ServiceSpec = Field(default_factory=ServiceSpec)


@scheme.register()
class Ingress(KubeObject):
    spec: IngressSpec = Field(default_factory=IngressSpec)
