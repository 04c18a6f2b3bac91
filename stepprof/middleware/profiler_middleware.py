from typing import Callable, Optional

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from stepprof.context import activate
from stepprof.core.config import settings
from stepprof.core.logging_utils import get_profiler_logger
from stepprof.profiler import ProfilerEngine
from stepprof.renderers.structured import report_to_dict
from stepprof.report import ReportModel


class ProfilerMiddleware:
    """
    ASGI middleware that:
    - Creates one ProfilerEngine per HTTP request and activates it in the context
    - Opens a "METHOD /path" step around the downstream app
    - Adds x-profile-id and x-profile-elapsed-ms headers to the response
    - Finalizes the profile when the request is done, logs it and hands it
      to an optional on_report callback
    """

    def __init__(
        self,
        app: ASGIApp,
        enabled: Optional[bool] = None,
        show_depth: Optional[int] = None,
        on_report: Optional[Callable[[ReportModel], None]] = None,
        log_reports: Optional[bool] = None,
        response_headers: Optional[bool] = None,
    ):
        self.app = app
        self.enabled = settings.PROFILER_ENABLED if enabled is None else enabled
        self.show_depth = settings.PROFILER_SHOW_DEPTH if show_depth is None else show_depth
        self.on_report = on_report
        self.log_reports = settings.PROFILER_LOG_REPORTS if log_reports is None else log_reports
        self.response_headers = settings.PROFILER_RESPONSE_HEADERS if response_headers is None else response_headers

    async def __call__(self, scope: Scope, receive: Receive, send: Send):
        # Only profile HTTP requests (skip websockets and lifespan)
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        engine = ProfilerEngine(enabled=self.enabled)
        step_name = f"{scope['method']} {scope['path']}"

        async def send_wrapper(message: Message):
            if self.response_headers and engine.is_enabled() and message["type"] == "http.response.start":
                headers = message.setdefault("headers", [])
                headers.append((b"x-profile-id", engine.profile_id.encode()))
                headers.append((b"x-profile-elapsed-ms", f"{engine.elapsed_ms()}".encode()))
            await send(message)

        with activate(engine):
            scope.setdefault("state", {})["profiler"] = engine
            engine.start(step_name)
            try:
                await self.app(scope, receive, send_wrapper)
            finally:
                self._finish(engine)

    def _finish(self, engine: ProfilerEngine):
        logger = get_profiler_logger(engine.profile_id)
        try:
            report = engine.finalize(self.show_depth)
        except Exception:
            logger.exception("Failed to finalize request profile")
            return

        if not report:
            return

        if self.log_reports:
            logger.info(
                "Request profile",
                extra={"event": "request_profile", "profile": report_to_dict(report)},
            )

        if self.on_report is not None:
            try:
                self.on_report(report)
            except Exception:
                logger.exception("Profile report callback failed")
