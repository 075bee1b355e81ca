import asyncio
import contextlib
import signal
import socket
from abc import abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple, Union

import uvicorn
from fastapi import FastAPI
from loguru import logger

from admission_control.config import DEFAULT_GRACE_PERIOD, ServerConfig
from admission_control.exceptions import ListenerError
from admission_control.middleware import add_request_logging


@dataclass(frozen=True)
class TLSConfig:
    """PEM-encoded certificate and unencrypted key the listener serves with."""

    certfile: Union[str, Path]
    keyfile: Union[str, Path]
    ca_certs: Optional[Union[str, Path]] = None


class _UvicornServer(uvicorn.Server):
    """A uvicorn server that leaves signal handling to AdmissionServer."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


class AdmissionServer:
    """
    Owns a single HTTP(S) listener serving an ASGI app and governs its
    running/stopped state.

    run() blocks until one of three things happens:

    1. The process receives SIGINT or SIGTERM, such as the SIGTERM Kubernetes
       sends to a terminating Pod.
    2. The listener fails (cannot bind, terminal network error). The error is
       raised to the caller; the listener has already released its resources.
    3. The caller cancels: the optional cancel event is set, or the task
       running run() is cancelled.

    On 1 and 3 the server stops accepting connections, gives in-flight
    requests up to grace_period seconds to finish, then closes them. stop()
    triggers the same shutdown directly.
    """

    def __init__(
        self,
        app,
        logger,
        host: str = "0.0.0.0",
        port: int = 8443,
        tls: Optional[TLSConfig] = None,
        grace_period: float = DEFAULT_GRACE_PERIOD,
        log_level: str = "info",
    ):
        if app is None:
            raise ValueError("a non-None ASGI app must be provided")

        if logger is None:
            raise ValueError("a non-None logger must be provided")

        if tls is None:
            logger.warning(
                "No TLS configuration was provided; serving plaintext HTTP, which prevents the "
                "webhook from being reached as an in-cluster Service"
            )

        self.app = app
        self.logger = logger
        self.host = host
        self.port = port
        self.tls = tls
        self.grace_period = grace_period
        self.log_level = log_level

        self._server: Optional[_UvicornServer] = None
        self._serve_task: Optional[asyncio.Task] = None
        self._sockets: List[socket.socket] = []

    @property
    def running(self) -> bool:
        return self._serve_task is not None and not self._serve_task.done()

    @property
    def ready(self) -> bool:
        """True once the listener accepts connections."""
        return self.running and self._server is not None and self._server.started

    @property
    def address(self) -> Optional[Tuple[str, int]]:
        """The address actually bound, e.g. when port 0 was requested."""
        if not self._sockets:
            return None
        return self._sockets[0].getsockname()[:2]

    @property
    def scheme(self) -> str:
        return "https" if self.tls else "http"

    def _build_server(self) -> _UvicornServer:
        ssl_kwargs = {}
        if self.tls is not None:
            ssl_kwargs["ssl_certfile"] = str(self.tls.certfile)
            ssl_kwargs["ssl_keyfile"] = str(self.tls.keyfile)
            if self.tls.ca_certs:
                ssl_kwargs["ssl_ca_certs"] = str(self.tls.ca_certs)

        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_config=None,
            log_level=self.log_level,
            access_log=False,
            timeout_graceful_shutdown=self.grace_period,
            **ssl_kwargs,
        )
        return _UvicornServer(config)

    def _bind(self) -> socket.socket:
        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.host, self.port))
        except OSError as e:
            sock.close()
            raise ListenerError(f"could not bind to {self.host}:{self.port}: {e}") from e
        return sock

    async def _serve(self) -> None:
        try:
            await self._server.serve(sockets=self._sockets)
        except SystemExit as e:
            raise ListenerError(f"the server exited with status {e.code}") from e

    async def start(self) -> None:
        """
        Bind the listener and start serving in a background task.

        Returns once the server accepts connections.

        Raises:
            ListenerError: If the listener cannot be bound or fails to start.
        """
        if self.running:
            raise RuntimeError("the server is already running")

        self._server = self._build_server()
        self._sockets = [self._bind()]
        self._serve_task = asyncio.create_task(self._serve())

        while not self._server.started and not self._serve_task.done():
            await asyncio.sleep(0.01)

        if self._serve_task.done():
            error = self._listener_error()
            self._release()
            raise error

        host, port = self.address
        self.logger.info(f"admission control listening on '{self.scheme}://{host}:{port}'")

    def _listener_error(self) -> ListenerError:
        task = self._serve_task
        error = task.exception() if task and not task.cancelled() else None
        if isinstance(error, ListenerError):
            return error
        if error is not None:
            listener_error = ListenerError(f"the server exited: {error}")
            listener_error.__cause__ = error
            return listener_error
        return ListenerError("the server exited unexpectedly")

    async def run(self, cancel: Optional[asyncio.Event] = None) -> None:
        """
        Serve until a signal, a listener error or cancellation.

        Raises:
            ListenerError: If the listener fails to bind or exits on its own.
        """
        loop = asyncio.get_running_loop()
        signalled = asyncio.Event()
        received: List[signal.Signals] = []
        installed: List[signal.Signals] = []

        def _on_signal(sig: signal.Signals) -> None:
            received.append(sig)
            signalled.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, _on_signal, sig)
                installed.append(sig)
            except (NotImplementedError, RuntimeError, ValueError):
                # Not the main thread, or a platform without signal support.
                self.logger.debug(f"Could not install a handler for {sig.name}")

        cancel = cancel or asyncio.Event()
        signal_task = asyncio.create_task(signalled.wait())
        cancel_task = asyncio.create_task(cancel.wait())
        try:
            await self.start()

            done, _ = await asyncio.wait(
                {self._serve_task, signal_task, cancel_task},
                return_when=asyncio.FIRST_COMPLETED,
            )

            if self._serve_task in done:
                error = self._listener_error()
                self.logger.error(f"listener error: {error}")
                # The listener has already released its resources.
                self._release()
                raise error

            if signal_task in done:
                self.logger.info(f"signal received: {received[0].name}")
            else:
                self.logger.info("cancellation received")

            await self.stop()
        except asyncio.CancelledError:
            self.logger.info("cancellation received: the serving task was cancelled")
            await self.stop()
            raise
        finally:
            signal_task.cancel()
            cancel_task.cancel()
            for sig in installed:
                loop.remove_signal_handler(sig)

    async def stop(self) -> None:
        """
        Stop accepting connections, wait up to grace_period for in-flight
        requests to finish, then close the remaining connections.
        """
        if self._server is None or self._serve_task is None:
            return

        if self._serve_task.done():
            self._release()
            return

        self.logger.info("server shutting down")
        self._server.should_exit = True
        try:
            await asyncio.wait_for(asyncio.shield(self._serve_task), timeout=self.grace_period)
        except asyncio.TimeoutError:
            self.logger.warning(
                f"In-flight requests did not complete within {self.grace_period}s, forcing close"
            )
            self._server.force_exit = True
            try:
                await asyncio.wait_for(self._serve_task, timeout=1.0)
            except (asyncio.TimeoutError, asyncio.CancelledError):
                pass
        except ListenerError as e:
            self.logger.error(f"listener error during shutdown: {e}")
        finally:
            self._release()

        self.logger.info("server stopped")

    def _release(self) -> None:
        for sock in self._sockets:
            sock.close()
        self._sockets = []
        self._server = None
        self._serve_task = None


class WebServer:
    """Web server for admission webhooks using FastAPI."""

    def __init__(self, config: ServerConfig):
        self.config = config
        self.app = FastAPI(debug=config.debug)
        add_request_logging(self.app)
        self._setup_routes()

    @abstractmethod
    def _setup_routes(self):
        """
        Setup web routes.
        Example:
        self.app.add_api_route('/route', self.handle_route, methods=["GET"])
        """
        raise NotImplementedError()

    def build_server(self) -> AdmissionServer:
        tls = None
        if self.config.tls_enabled:
            tls = TLSConfig(certfile=self.config.tls_cert_path, keyfile=self.config.tls_key_path)
            logger.info("TLS enabled")

        return AdmissionServer(
            self.app,
            logger.bind(component="server"),
            host=self.config.bind_address,
            port=self.config.port,
            tls=tls,
            grace_period=self.config.grace_period,
            log_level="debug" if self.config.debug else "info",
        )

    def run(self):
        """Run the webhook server until it is signalled to stop."""
        server = self.build_server()
        asyncio.run(server.run())
