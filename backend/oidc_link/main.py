"""
FastAPI Main Application
"""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncGenerator, Optional

import discord
from fastapi import FastAPI
from loguru import logger

from oidc_link.api import api_router
from oidc_link.bot import DiscordChannelPoster, LinkBot
from oidc_link.common.exceptions import StartupError, register_exception_handlers
from oidc_link.common.logging import LoggingMiddleware, setup_logging
from oidc_link.core.oidc import BaseOIDCAdapter, OIDCAdapter, OIDCClientConfig, OIDCDiscoveryError
from oidc_link.core.settings import settings
from oidc_link.repositories.pending_link import (
    InMemoryPendingLinkRepository,
    PendingLinkRepository,
    PendingLinkSweeper,
)
from oidc_link.services.csrf_guard import CsrfGuard
from oidc_link.services.delivery import ChannelPoster, DisabledChannelPoster, ResultDelivery
from oidc_link.services.link_callback import LinkCallbackService
from oidc_link.services.link_command import LinkCommandService

setup_logging()


def build_services(
    app: FastAPI,
    repository: PendingLinkRepository,
    adapter: BaseOIDCAdapter,
    channel_poster: ChannelPoster,
) -> None:
    """Wire the browser-side collaborators onto `app.state`."""
    guard = CsrfGuard.from_settings(settings)
    delivery = ResultDelivery(repository, channel_poster)

    app.state.pending_links = repository
    app.state.csrf_guard = guard
    app.state.oidc_adapter = adapter
    app.state.link_callback_service = LinkCallbackService(repository, guard, adapter, delivery)


async def _start_bot(bot: LinkBot) -> asyncio.Task:
    """Log in (fatal on failure) and keep the gateway connection in the background."""
    if not settings.discord_bot_token:
        raise StartupError("DISCORD_BOT_TOKEN is required when DISCORD_ENABLED is true")

    discord.utils.setup_logging(level=logging.INFO, root=False)
    try:
        await bot.login(settings.discord_bot_token)
    except discord.LoginFailure as e:
        raise StartupError(f"Discord login failed: {e}") from e
    except discord.HTTPException as e:
        raise StartupError(f"Discord login failed: {e.status} {e.text}") from e

    logger.info("   ✓ Discord login OK, connecting to gateway")
    task = asyncio.create_task(bot.connect(), name="discord-gateway")
    task.add_done_callback(_log_gateway_exit)
    return task


def _log_gateway_exit(task: asyncio.Task) -> None:
    """Report a gateway connection that ended while the service keeps running."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.opt(exception=exc).error(f"Discord gateway stopped: {type(exc).__name__}: {exc}")
    else:
        logger.warning("Discord gateway connection closed")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Application Lifecycle"""
    logger.info(f"🚀 Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"   Environment: {settings.environment}")
    logger.info(f"   Public URL: {settings.public_base_url}")

    if settings.environment == "production" and "localhost" in settings.public_base_url:
        logger.warning(
            "⚠️  WARNING: You are running in 'production' environment, but PUBLIC_BASE_URL "
            "contains 'localhost'. Login links and the OIDC redirect URI will not work."
        )

    adapter = OIDCAdapter(OIDCClientConfig.from_settings(settings))
    try:
        await adapter.discover()
    except OIDCDiscoveryError as e:
        await adapter.aclose()
        raise StartupError(f"OIDC discovery failed for {settings.oidc_issuer}") from e
    logger.info(f"   ✓ OIDC provider: {settings.oidc_issuer}")

    repository = InMemoryPendingLinkRepository(ttl=timedelta(seconds=settings.pending_link_ttl_seconds))
    command_service = LinkCommandService(repository, settings.public_base_url)

    channel_poster: ChannelPoster = DisabledChannelPoster()
    app.state.bot = None
    if settings.discord_enabled:
        bot = LinkBot(
            command_service,
            command_name=settings.link_command_name,
            guild_id=settings.discord_guild_id,
            application_id=settings.discord_application_id,
        )
        app.state.bot = bot
        channel_poster = DiscordChannelPoster(bot)
    else:
        logger.info("   Discord disabled (HTTP only)")

    build_services(app, repository, adapter, channel_poster)

    sweeper = PendingLinkSweeper(repository, settings.pending_link_sweep_interval_seconds)
    sweeper.start()

    gateway_task: Optional[asyncio.Task] = None
    try:
        if app.state.bot is not None:
            gateway_task = await _start_bot(app.state.bot)
    except StartupError:
        await sweeper.stop()
        await app.state.bot.close()
        await adapter.aclose()
        raise

    yield

    # Shutdown
    if gateway_task is not None:
        gateway_task.remove_done_callback(_log_gateway_exit)
    try:
        await sweeper.stop()
        if app.state.bot is not None:
            await app.state.bot.close()
        if gateway_task is not None:
            if not gateway_task.done():
                gateway_task.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await gateway_task
    finally:
        await adapter.aclose()
    logger.info("👋 Application shutdown")


def create_app(use_lifespan: bool = True) -> FastAPI:
    application = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Links Discord accounts to OpenID Connect identities.",
        docs_url="/docs" if settings.debug or settings.environment == "development" else None,
        redoc_url=None,
        lifespan=lifespan if use_lifespan else None,
    )

    # Exception handling
    register_exception_handlers(application)

    # Add logging middleware
    application.add_middleware(LoggingMiddleware)

    application.include_router(api_router)
    return application


app = create_app()
