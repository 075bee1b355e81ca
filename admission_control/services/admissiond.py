"""Example admission webhook service exposing the built-in decision functions."""

from typing import Dict, List, Optional

from fastapi import Response
from loguru import logger

from admission_control.config import AdmissionConfig
from admission_control.handler import AdmissionHandler
from admission_control.logs import configure_logging
from admission_control.policies.annotations import EnforcePodAnnotations
from admission_control.policies.autoscaler import AddAutoscalerAnnotation
from admission_control.policies.base import AdmitFuncType
from admission_control.policies.ingress import DenyIngresses
from admission_control.policies.load_balancer import (
    CloudProvider,
    DenyPublicLoadBalancers,
    DenyPublicServices,
)
from admission_control.server import WebServer


ROUTE_PREFIX = "/admission-control"


class AdmissionWebhookServer(WebServer):
    """Serves one AdmissionHandler per decision function, each on its own path."""

    def __init__(self, config: AdmissionConfig):
        self.handlers: Dict[str, AdmissionHandler] = {}
        super().__init__(config)

    def admit_funcs(self) -> Dict[str, AdmitFuncType]:
        ignored = self.config.ignored_namespaces
        funcs: Dict[str, AdmitFuncType] = {
            "deny-ingresses": DenyIngresses(ignored_namespaces=ignored),
            "deny-public-services": DenyPublicServices(),
            "enforce-pod-annotations": EnforcePodAnnotations(
                ignored_namespaces=ignored,
                required_annotations=self.config.annotation_predicates(),
            ),
            "add-autoscaler-annotation": AddAutoscalerAnnotation(ignored_namespaces=ignored),
            "deny-public-load-balancers": DenyPublicLoadBalancers(
                ignored_namespaces=ignored, provider=self.config.cloud_provider
            ),
        }
        for provider in CloudProvider:
            funcs[f"deny-public-services/{provider.value}"] = DenyPublicLoadBalancers(
                ignored_namespaces=ignored, provider=provider
            )
        return funcs

    def _setup_routes(self):
        self.app.add_api_route("/healthz", self.healthz, methods=["GET"])
        self.app.add_api_route("/", self.index, methods=["GET"])

        for name, admit_func in self.admit_funcs().items():
            path = f"{ROUTE_PREFIX}/{name}"
            handler = AdmissionHandler(admit_func, limit_bytes=self.config.limit_bytes)
            self.handlers[path] = handler
            self.app.add_api_route(path, handler.handle, methods=["POST"])
            logger.debug(f"Registered {admit_func!r} at {path}")

    async def healthz(self) -> Response:
        return Response(content="OK", media_type="text/plain")

    async def index(self) -> Dict[str, List[str]]:
        """List the admission endpoints served."""
        return {"endpoints": sorted(self.handlers)}


def run(config: Optional[AdmissionConfig] = None):
    """Main entry point."""
    try:
        config = config or AdmissionConfig()
        configure_logging(debug=config.debug, json_logs=config.json_logs)

        if config.debug:
            logger.debug("Debug mode enabled")
            logger.debug(f"Configuration: {config.export_json()}")

        if not config.tls_enabled:
            logger.warning("TLS certificates not configured, running in insecure mode")

        server = AdmissionWebhookServer(config)
        server.run()

    except Exception as e:
        logger.exception(f"Failed to start admission webhook service: {e}")
        raise


if __name__ == "__main__":
    run()
