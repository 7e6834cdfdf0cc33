import asyncio
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Request
from loguru import logger

from fitplan.api.step_routes import router as step_router
from fitplan.config.settings import settings
from fitplan.core.logger import setup_logger
from fitplan.db.session import create_tables
from fitplan.generation.orchestrator import StepwiseOrchestrator, build_orchestrator
from fitplan.generation.scheduler import ApschedulerAdvanceScheduler
from fitplan.generation.staleness import reset_stale_generations


def create_app(orchestrator: StepwiseOrchestrator | None = None) -> FastAPI:
    """Build the FastAPI app.

    Without an explicit orchestrator, the lifespan builds one from settings,
    repairs stale generations left by a previous process and starts the
    advance scheduler.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "orchestrator", None) is None:
            setup_logger(level=settings.log_level, log_file=settings.log_file, serialize=settings.log_json)
            create_tables()
            app.state.orchestrator = build_orchestrator(settings)

            # Startup repair: runs abandoned by a previous process would otherwise block their users
            try:
                reset = reset_stale_generations(
                    app.state.orchestrator.store,
                    timedelta(minutes=settings.stale_generation_minutes),
                )
                logger.info(f"[STARTUP] Stale generation repair completed, reset={len(reset)}")
            except Exception as e:
                logger.error(f"[STARTUP] Stale generation repair failed (non-fatal): {e}")

        scheduler = app.state.orchestrator.scheduler
        if isinstance(scheduler, ApschedulerAdvanceScheduler):
            scheduler.start()

        await asyncio.sleep(0)
        yield

        if isinstance(scheduler, ApschedulerAdvanceScheduler):
            scheduler.shutdown()

    app = FastAPI(title="fitplan", lifespan=lifespan)
    app.state.orchestrator = orchestrator
    app.include_router(step_router)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.debug(f"Request: {request.method} {request.url.path}")
        response = await call_next(request)
        logger.debug(f"Response: {response.status_code} for {request.method} {request.url.path}")
        return response

    return app


app = create_app()
