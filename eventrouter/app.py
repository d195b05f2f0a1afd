"""Application bootstrap for eventrouter.

Wires all components in dependency order and manages the asyncio lifecycle.
Startup order: config → logging → metrics → sink → K8s client → informer
              → router → REST

Shutdown is fully graceful: components are stopped in reverse startup order.
Each component's stop error is caught and logged independently so that a
single component failure does not prevent the rest from shutting down cleanly.
"""

from __future__ import annotations

import asyncio
import signal
from typing import TYPE_CHECKING

from eventrouter.config import load_config
from eventrouter.models.config import EventRouterConfig
from eventrouter.observability.logging import get_logger, setup_logging
from eventrouter.observability.metrics import MetricRegistry

if TYPE_CHECKING:
    import structlog

    from eventrouter.router.controller import EventRouter
    from eventrouter.sinks.base import Sink
    from eventrouter.stream.base import ChangeStream

_SHUTDOWN_GRACE_SECONDS = 15


class _ComponentError(Exception):
    """Raised when a mandatory component fails to start."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause


class EventRouterApp:
    """Application root.  Owns every component and coordinates their lifecycle.

    ``stop()`` is safe to call on an app that was never started or has
    already stopped.
    """

    def __init__(self, config: EventRouterConfig | None = None) -> None:
        self.config = config
        self.stop_event = asyncio.Event()

        self._metrics: MetricRegistry | None = None
        self._sink: Sink | None = None
        self._k8s_client: object | None = None
        self._stream: ChangeStream | None = None
        self._router: EventRouter | None = None
        self._router_task: asyncio.Task[bool] | None = None
        self._rest_server: object | None = None
        self._background_tasks: list[asyncio.Task[None]] = []

        self._running = False
        self._log: structlog.stdlib.BoundLogger | None = None

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start all components in dependency order.

        Raises _ComponentError if a mandatory component cannot start.
        """
        # --- 1. Configuration -------------------------------------------
        if self.config is None:
            try:
                self.config = load_config()
            except ValueError as exc:
                raise _ComponentError("config", exc) from exc

        # --- 2. Logging -------------------------------------------------
        setup_logging(self.config.log.level, self.config.log.format)
        self._log = get_logger("app")
        self._log.info("eventrouter starting", version=_eventrouter_version())

        # --- 3. Metrics -------------------------------------------------
        self._metrics = MetricRegistry(enabled=self.config.metrics.enabled)
        self._log.info("metrics configured", enabled=self._metrics.enabled)

        # --- 4. Sink ----------------------------------------------------
        await self._start_sink()

        # --- 5. Kubernetes client ----------------------------------------
        await self._start_k8s_client()

        # --- 6. Event informer --------------------------------------------
        await self._start_stream()

        # --- 7. Router ---------------------------------------------------
        await self._start_router()

        # --- 8. REST API -------------------------------------------------
        await self._start_rest()

        self._running = True
        self._log.info("eventrouter started", sink=self.config.sink.name, port=self.config.api.port)

    async def _start_sink(self) -> None:
        assert self._log is not None
        assert self.config is not None
        self._log.debug("starting sink")
        try:
            from eventrouter.sinks import build_sink

            sink = build_sink(self.config.sink)
            await sink.start()
            self._sink = sink
        except Exception as exc:
            raise _ComponentError("sink", exc) from exc

    async def _start_k8s_client(self) -> None:
        """Initialise the kubernetes-asyncio client from in-cluster config or kubeconfig."""
        assert self._log is not None
        self._log.debug("starting k8s client")
        try:
            import kubernetes_asyncio.config as k8s_config  # type: ignore[import-untyped]
            from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]

            try:
                k8s_config.load_incluster_config()
                self._log.info("k8s client configured from in-cluster service account")
            except k8s_config.ConfigException:
                await k8s_config.load_kube_config()
                self._log.info("k8s client configured from kubeconfig")

            self._k8s_client = k8s_client.ApiClient()
        except Exception as exc:
            raise _ComponentError("k8s_client", exc) from exc

    async def _start_stream(self) -> None:
        assert self._log is not None
        assert self.config is not None
        self._log.debug("starting event informer")
        try:
            from kubernetes_asyncio import client as k8s_client  # type: ignore[import-untyped]

            from eventrouter.stream.informer import KubernetesEventInformer, KubernetesEventSource

            source = KubernetesEventSource(
                k8s_client.CoreV1Api(self._k8s_client),
                namespace=self.config.stream.namespace,
            )
            self._stream = KubernetesEventInformer(
                source,
                resync_interval=self.config.stream.resync_interval,
                workers=self.config.stream.workers,
            )
        except Exception as exc:
            raise _ComponentError("stream", exc) from exc

    async def _start_router(self) -> None:
        """Register the router with the informer, then start the informer.

        The handler must be in place before the initial list is replayed.
        """
        assert self._log is not None
        assert self._stream is not None
        assert self._sink is not None
        assert self._metrics is not None
        self._log.debug("starting router")
        try:
            from eventrouter.router.controller import EventRouter

            self._router = EventRouter(self._stream, self._sink, self._metrics)
            self._router_task = asyncio.create_task(self._router.run(self.stop_event), name="eventrouter")
            await self._stream.start()
        except Exception as exc:
            raise _ComponentError("router", exc) from exc

    async def _start_rest(self) -> None:
        """Start the uvicorn health/metrics server."""
        assert self._log is not None
        assert self.config is not None
        assert self._router is not None
        assert self._metrics is not None
        self._log.debug("starting rest api")
        try:
            import uvicorn  # type: ignore[import-untyped]

            from eventrouter.api import create_app

            fastapi_app = create_app(router=self._router, metrics=self._metrics)
            uv_config = uvicorn.Config(
                app=fastapi_app,
                host="0.0.0.0",
                port=self.config.api.port,
                log_config=None,  # structlog handles all logging
                access_log=False,
            )
            server = uvicorn.Server(uv_config)
            task = asyncio.create_task(server.serve(), name="rest-server")
            self._background_tasks.append(task)
            self._rest_server = server
            self._log.info("rest api started", port=self.config.api.port)
        except Exception as exc:
            raise _ComponentError("rest", exc) from exc

    # ------------------------------------------------------------------
    # Run / shutdown
    # ------------------------------------------------------------------

    async def wait(self) -> bool:
        """Block until the router returns; False when it never synced."""
        if self._router_task is None:
            return False
        return await self._router_task

    def request_stop(self) -> None:
        self.stop_event.set()

    async def stop(self) -> None:
        """Gracefully stop all components in reverse startup order."""
        if not self._running and self._log is None:
            return

        log = self._log or get_logger("app")
        log.info("eventrouter shutting down")
        self._running = False
        self.stop_event.set()

        if self._router_task is not None:
            await asyncio.gather(self._router_task, return_exceptions=True)

        rest = self._rest_server
        if rest is not None:
            rest.should_exit = True  # type: ignore[attr-defined]
        if self._background_tasks:
            try:
                await asyncio.wait_for(
                    asyncio.gather(*self._background_tasks, return_exceptions=True),
                    timeout=_SHUTDOWN_GRACE_SECONDS,
                )
            except TimeoutError:
                log.warning("rest server stop timed out", timeout=_SHUTDOWN_GRACE_SECONDS)
        self._background_tasks.clear()

        if self._stream is None and self._k8s_client is not None:
            # the informer's source owns the client once the stream exists
            try:
                await self._k8s_client.close()  # type: ignore[attr-defined]
            except Exception as exc:
                log.error("component stop raised an error", component="k8s_client", error=str(exc))
        await self._stop_component("stream", self._stream)
        await self._stop_component("sink", self._sink)
        self._stream = None
        self._sink = None
        self._k8s_client = None

        log.info("eventrouter stopped")

    async def _stop_component(self, name: str, component: object | None) -> None:
        """Call stop() on a component if it has that method, catching all errors."""
        if component is None:
            return
        log = self._log or get_logger("app")
        stop_fn = getattr(component, "stop", None)
        if stop_fn is None:
            return
        try:
            result = stop_fn()
            if asyncio.iscoroutine(result):
                await asyncio.wait_for(result, timeout=_SHUTDOWN_GRACE_SECONDS)
        except TimeoutError:
            log.warning("component stop timed out", component=name, timeout=_SHUTDOWN_GRACE_SECONDS)
        except Exception as exc:
            log.error("component stop raised an error", component=name, error=str(exc))


def _eventrouter_version() -> str:
    from eventrouter import __version__

    return __version__


# ---------------------------------------------------------------------------
# Async entrypoint
# ---------------------------------------------------------------------------


async def main() -> None:
    """Create the app, register OS signals, run until shutdown is requested."""
    app = EventRouterApp()
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, app.request_stop)

    try:
        await app.start()
        synced = await app.wait()
    except _ComponentError as exc:
        log = get_logger("app")
        log.critical(
            "fatal startup error",
            component=exc.component,
            error=str(exc.cause),
        )
        await app.stop()
        raise SystemExit(1) from exc

    await app.stop()
    if not synced:
        raise SystemExit(1)


def run() -> None:
    """Console-script entry point."""
    asyncio.run(main())
