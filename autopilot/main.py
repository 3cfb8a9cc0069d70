import logging
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from fastapi import FastAPI

from autopilot.api.v1.routes import router as api_v1_router
from autopilot.config import Settings, load_settings, merge_settings
from autopilot.services.autopilot_service import AutopilotService
from autopilot.services.rate_limiter import ProviderRateLimiter

logger = logging.getLogger(__name__)

ENV_PATH = Path(__file__).parent.parent / ".env"


def load_environment(env_path: Path = ENV_PATH) -> bool:
    """Load variables from a .env file if present. Returns True if loaded."""
    if not env_path.exists():
        return False
    load_dotenv(dotenv_path=env_path, override=True)
    return True


def _print_startup_banner(settings: Settings, env_loaded: bool) -> None:
    print("\n" + "=" * 60)
    print("AUTOPILOT IMAGE ENHANCEMENT API")
    print("=" * 60)
    print(f".env file: {'loaded from ' + str(ENV_PATH) if env_loaded else 'not found'}")
    if settings.has_credentials:
        print(f"REPLICATE_API_TOKEN: {settings.masked_token()}")
        print(f"Provider transport: {settings.provider_transport}")
    else:
        print("REPLICATE_API_TOKEN: not set")
        print("  Enhancement endpoints will return 500 until it is configured.")
    print("=" * 60 + "\n")


def create_app(
    settings: Settings | None = None,
    overrides: dict[str, Any] | None = None,
) -> FastAPI:
    """
    Application factory for the Autopilot API.

    Passing explicit `settings` skips .env loading, which keeps tests
    independent of the developer's environment. `overrides` is deep-merged
    on top, e.g. `{"rate_limit": {"burst_capacity": 1}}`.
    """
    env_loaded = False
    if settings is None:
        env_loaded = load_environment()
        settings = load_settings()
    if overrides:
        settings = merge_settings(settings, overrides)

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    _print_startup_banner(settings, env_loaded)

    app = FastAPI(
        title="Autopilot Image Enhancement API",
        version="0.1.0",
        description="Heuristic image quality scoring and multi-step AI enhancement.",
    )
    rate_limiter = ProviderRateLimiter.from_config(settings.rate_limit)
    app.state.autopilot_service = AutopilotService(settings, rate_limiter)

    # Infrastructure-level health check (non-versioned) primarily for ops.
    @app.get("/health", tags=["health"])
    async def root_health_check() -> dict:
        """Simple root health check endpoint."""
        return {"status": "ok"}

    @app.get("/health/rate-limiter", tags=["health"])
    def rate_limiter_health() -> dict:
        """Limiter stats; sync so it runs in the threadpool."""
        return rate_limiter.get_stats()

    app.include_router(api_v1_router)
    logger.info("Autopilot API ready (transport=%s)", settings.provider_transport)
    return app


app = create_app()
