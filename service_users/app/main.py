"""
Composition root for the User Console data layer.
"""

from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from shared.config import ConsoleConfig, get_config
from shared.logging import configure_logging, get_logger
from shared.metrics import MetricsCollector, get_metrics_collector

from .adapters.users_client import UsersApiClient
from .caching.cache_manager import UserCacheManager
from .domain.edit_controller import UserEditController
from .domain.optimistic import OptimisticPatchEngine
from .events.bus import EventBus


@dataclass
class ConsoleServices:
    """Process-wide services, built once and passed to every consumer."""
    config: ConsoleConfig
    client: UsersApiClient
    cache: UserCacheManager
    mutations: OptimisticPatchEngine
    events: EventBus
    metrics: MetricsCollector

    def edit_controller(self, actor_id: Optional[str] = None,
                        on_closed: Optional[Callable[[], None]] = None) -> UserEditController:
        """Create a controller for one edit-modal session."""
        return UserEditController(
            self.cache,
            self.mutations,
            actor_id=actor_id,
            settle_passes=self.config.dirty_settle_passes,
            flash_seconds=self.config.flash_message_seconds,
            owner_role_code=self.config.owner_role_code,
            on_closed=on_closed,
        )

    async def aclose(self) -> None:
        await self.client.aclose()


def create_services(
    config: Optional[ConsoleConfig] = None,
    *,
    token_provider: Optional[Callable[[], Optional[str]]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    configure_logs: bool = True,
) -> ConsoleServices:
    """Build the console services from configuration."""
    config = config or get_config()
    if configure_logs:
        configure_logging(config.service_name, config.log_level)

    logger = get_logger("users.main")
    metrics = get_metrics_collector(config.service_name)

    client = UsersApiClient(
        config.api_base_url,
        timeout=config.api_timeout_seconds,
        detail_timeout=config.detail_fetch_timeout_seconds,
        token_provider=token_provider,
        transport=transport,
    )
    cache = UserCacheManager(
        client,
        user_detail_ttl=config.user_detail_ttl_seconds,
        catalog_ttl=config.catalog_ttl_seconds,
        metrics=metrics,
    )
    events = EventBus()
    mutations = OptimisticPatchEngine(
        cache,
        client,
        events,
        max_attachment_bytes=config.max_attachment_bytes,
        metrics=metrics,
    )

    logger.info(
        "Console services created",
        env=config.env,
        api_base_url=config.api_base_url,
        user_detail_ttl=config.user_detail_ttl_seconds,
        catalog_ttl=config.catalog_ttl_seconds,
    )

    return ConsoleServices(
        config=config,
        client=client,
        cache=cache,
        mutations=mutations,
        events=events,
        metrics=metrics,
    )
