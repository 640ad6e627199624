"""
Main application orchestrator for the Rent Watch system.

This module wires all system components together, manages their lifecycle
and performs periodic maintenance until shutdown.
"""

import asyncio
import signal
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from .components.conversation_engine import ConversationEngine
from .components.dispatcher import ListingDispatcher
from .components.listing_fetcher import ApifyListingFetcher
from .components.listing_formatter import ListingFormatter
from .components.scheduler import PollingScheduler
from .components.telegram_bot_handler import TelegramBotHandler
from .components.telegram_channel import TelegramChannel
from .models.config import Configuration
from .services.config_manager import ConfigurationManager
from .services.database import Database
from .services.dedup_ledger import DedupLedger
from .services.listing_pipeline import ListingPipeline
from .services.search_registry import SearchRegistry
from .services.session_store import SessionStore
from .utils.error_handling import (
    ErrorCategory,
    ErrorSeverity,
    RetryConfig,
    get_error_tracker,
    with_error_handling,
)
from .utils.logging import LoggingManager, get_logger, get_logging_stats, setup_logging

MAINTENANCE_INTERVAL = 60
ERROR_WINDOW = timedelta(minutes=5)
ERROR_WARNING_THRESHOLD = 20
MAX_MAINTENANCE_ERRORS = 50
TELEGRAM_CONNECT_RETRY = RetryConfig(max_attempts=3, base_delay=2.0, max_delay=10.0)


class ApplicationOrchestrator:
    """
    Main application orchestrator that coordinates all system components.

    This class manages the lifecycle of all components, handles system startup
    and shutdown, and runs the maintenance loop.
    """

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize the application orchestrator.

        Args:
            config_path: Path to configuration file. If None, uses default paths.
        """
        self.logger = get_logger("orchestrator")

        self.config_path = config_path
        self._running = False
        self._stopped = False
        self._shutdown_event = asyncio.Event()

        self.error_tracker = get_error_tracker()
        self._logging_manager: Optional[LoggingManager] = None

        self._config_manager: Optional[ConfigurationManager] = None
        self._database: Optional[Database] = None
        self._registry: Optional[SearchRegistry] = None
        self._ledger: Optional[DedupLedger] = None
        self._fetcher: Optional[ApifyListingFetcher] = None
        self._bot_handler: Optional[TelegramBotHandler] = None
        self._channel: Optional[TelegramChannel] = None
        self._dispatcher: Optional[ListingDispatcher] = None
        self._pipeline: Optional[ListingPipeline] = None
        self._sessions: Optional[SessionStore] = None
        self._engine: Optional[ConversationEngine] = None
        self._scheduler: Optional[PollingScheduler] = None

        self._config: Optional[Configuration] = None
        self._startup_time: Optional[datetime] = None
        self._component_health: Dict[str, bool] = {}
        self._error_counts: Dict[str, int] = {}

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, self._signal_handler, signum)
            except (NotImplementedError, RuntimeError):
                # add_signal_handler is unavailable on Windows event loops
                signal.signal(signum, lambda s, f: self._signal_handler(s))

    def _signal_handler(self, signum: int) -> None:
        self.logger.info(
            "Received shutdown signal, initiating graceful shutdown",
            extra={"signal": signum},
        )
        self._shutdown_event.set()

    @with_error_handling(
        component="orchestrator",
        category=ErrorCategory.SYSTEM,
        severity=ErrorSeverity.CRITICAL,
        fallback_value=False,
        suppress_exceptions=True,
    )
    async def initialize(self) -> bool:
        """
        Initialize all system components.

        Returns:
            True if initialization successful, False otherwise.
        """
        self.logger.info("Initializing Rent Watch system...")

        if not await self._load_configuration():
            return False

        if not await self._initialize_components():
            return False

        if not await self._validate_components():
            return False

        self._startup_time = datetime.now()
        self.logger.info("System initialization completed successfully")
        return True

    @with_error_handling(
        component="orchestrator",
        category=ErrorCategory.CONFIGURATION,
        severity=ErrorSeverity.CRITICAL,
        fallback_value=False,
        suppress_exceptions=True,
    )
    async def _load_configuration(self) -> bool:
        """Load and validate system configuration."""
        self._config_manager = ConfigurationManager(self.config_path)
        self._config = self._config_manager.load_config()
        self._component_health["config_manager"] = True

        if self._config.logging:
            self._logging_manager = setup_logging(
                log_dir=self._config.logging.directory,
                log_level=self._config.logging.level,
            )
            self.logger = get_logger("orchestrator")

        self.logger.info(
            "Configuration loaded and validated successfully",
            extra={"config_path": self._config_manager.config_path},
        )
        return True

    async def _initialize_components(self) -> bool:
        """Initialize all system components in dependency order."""
        config = self._config
        try:
            self._database = Database(config.database.url, echo=config.database.echo)
            self._database.create_schema()
            self._component_health["database"] = True
            self.logger.info(
                "Database initialized", extra={"dialect": self._database.dialect_name}
            )

            self._registry = SearchRegistry(self._database)
            self._ledger = DedupLedger(self._database)

            self._fetcher = ApifyListingFetcher(config.listing_source)
            self._component_health["listing_fetcher"] = True

            self._bot_handler = TelegramBotHandler(
                bot_token=config.telegram.bot_token,
                admin_user_ids=config.telegram.admin_user_ids,
            )
            self._channel = TelegramChannel(self._bot_handler.bot)

            formatter = ListingFormatter()
            self._dispatcher = ListingDispatcher(
                channel=self._channel,
                formatter=formatter,
                max_retries=config.dispatch.max_retries,
                retry_delay=config.dispatch.retry_delay,
                inter_message_delay=config.dispatch.inter_message_delay,
            )
            self._pipeline = ListingPipeline(
                fetcher=self._fetcher,
                ledger=self._ledger,
                dispatcher=self._dispatcher,
                registry=self._registry,
                channel=self._channel,
                formatter=formatter,
                fetch_timeout=config.scheduler.fetch_timeout_seconds,
            )

            self._sessions = SessionStore(
                ttl_seconds=config.conversation.session_ttl_seconds
            )
            self._engine = ConversationEngine(
                registry=self._registry,
                ledger=self._ledger,
                channel=self._channel,
                pipeline=self._pipeline,
                sessions=self._sessions,
                districts=config.districts,
                formatter=formatter,
            )

            self._scheduler = PollingScheduler(
                pipeline=self._pipeline,
                registry=self._registry,
                interval_seconds=config.scheduler.interval_seconds,
                initial_delay_seconds=config.scheduler.initial_delay_seconds,
            )

            self._bot_handler.engine = self._engine
            self._bot_handler.manual_trigger = self._scheduler.trigger_now
            self._component_health["telegram_bot"] = True

            self.logger.info("All components initialized")
            return True

        except Exception as e:
            self.logger.error(f"Failed to initialize components: {e}", exc_info=True)
            return False

    @with_error_handling(
        component="orchestrator",
        category=ErrorCategory.NETWORK,
        severity=ErrorSeverity.HIGH,
        retry_config=TELEGRAM_CONNECT_RETRY,
    )
    async def _connect_telegram(self) -> None:
        if not await self._channel.test_connection():
            raise ConnectionError("Telegram connection test failed")

    async def _validate_components(self) -> bool:
        """Validate that the Telegram connection works."""
        try:
            await self._connect_telegram()
        except ConnectionError:
            self._component_health["telegram_bot"] = False
            self.logger.error("Telegram connection test failed")
            return False

        healthy = sum(1 for health in self._component_health.values() if health)
        self.logger.info(
            f"Component health check: {healthy}/{len(self._component_health)} "
            f"components healthy"
        )
        return True

    async def start(self) -> None:
        """Start polling, the scheduler and the maintenance loop."""
        if self._running:
            self.logger.warning("System is already running")
            return

        self._running = True
        try:
            await self._bot_handler.start_polling()
            await self._scheduler.start()
            self.logger.info("Rent Watch is running")

            while self._running and not self._shutdown_event.is_set():
                try:
                    await self._maintenance()
                except Exception as e:
                    self.logger.error(f"Error in maintenance loop: {e}", exc_info=True)
                    await self._handle_maintenance_error(e)

                try:
                    await asyncio.wait_for(
                        self._shutdown_event.wait(), timeout=MAINTENANCE_INTERVAL
                    )
                except asyncio.TimeoutError:
                    pass

        except Exception as e:
            self.logger.error(f"Fatal error in main loop: {e}", exc_info=True)

    async def _maintenance(self) -> None:
        """Reap idle wizard sessions and watch the error rate."""
        reaped = self._sessions.reap_idle()
        if reaped:
            self.logger.info("Reaped idle sessions", extra={"count": reaped})

        recent_errors = self.error_tracker.errors_since(datetime.now() - ERROR_WINDOW)
        if recent_errors >= ERROR_WARNING_THRESHOLD:
            self.logger.warning(
                "High error rate",
                extra={
                    "errors": recent_errors,
                    "window_minutes": ERROR_WINDOW.total_seconds() / 60,
                },
            )

        self._component_health["telegram_bot"] = self._bot_handler.is_polling
        self._component_health["scheduler"] = self._scheduler.is_running

        await self._check_config_reload()

    async def _check_config_reload(self) -> None:
        """Apply a changed log level without restarting."""
        if not self._config_manager.reload_if_changed():
            return

        new_config = self._config_manager.get_config()
        if (
            self._logging_manager
            and new_config.logging
            and new_config.logging.level != self._config.logging.level
        ):
            self._logging_manager.set_log_level(new_config.logging.level)
            self.logger.info(
                "Log level updated", extra={"level": new_config.logging.level}
            )
        self._config = new_config

    def _increment_error_count(self, error_type: str) -> None:
        self._error_counts[error_type] = self._error_counts.get(error_type, 0) + 1

        if self._error_counts[error_type] % 10 == 0:
            self.logger.warning(
                f"High error count for {error_type}: {self._error_counts[error_type]}"
            )

    async def _handle_maintenance_error(self, error: Exception) -> None:
        self._increment_error_count("maintenance")

        if self._error_counts.get("maintenance", 0) > MAX_MAINTENANCE_ERRORS:
            self.logger.critical("Too many maintenance errors, initiating shutdown")
            self._shutdown_event.set()

    async def shutdown(self) -> None:
        """Gracefully shutdown the system."""
        if self._stopped:
            return

        self.logger.info("Initiating graceful shutdown...")
        self._stopped = True
        self._running = False
        self._shutdown_event.set()

        try:
            if self._scheduler:
                await self._scheduler.stop()
                self.logger.info("Scheduler stopped")

            if self._bot_handler:
                await self._bot_handler.stop_polling()

            if self._fetcher:
                self._fetcher.close()

            if self._database:
                self._database.dispose()

            uptime = datetime.now() - self._startup_time if self._startup_time else None
            self.logger.info(f"System shutdown complete. Uptime: {uptime}")

        except Exception as e:
            self.logger.error(f"Error during shutdown: {e}", exc_info=True)

    def get_system_status(self) -> Dict[str, Any]:
        """Get current system status information."""
        return {
            "running": self._running,
            "startup_time": self._startup_time.isoformat()
            if self._startup_time
            else None,
            "uptime": str(datetime.now() - self._startup_time)
            if self._startup_time
            else None,
            "component_health": self._component_health.copy(),
            "error_counts": self._error_counts.copy(),
            "error_stats": self.error_tracker.get_error_stats(),
            "scheduler": self._scheduler.get_status() if self._scheduler else None,
            "active_sessions": len(self._sessions) if self._sessions else 0,
            "config_loaded": self._config is not None,
            "logging": get_logging_stats(),
        }

    async def run(self) -> None:
        """Run the complete application lifecycle."""
        self._setup_signal_handlers()
        try:
            if not await self.initialize():
                self.logger.error("System initialization failed")
                return

            await self.start()

        except Exception as e:
            self.logger.error(f"Unexpected error in application: {e}", exc_info=True)
        finally:
            await self.shutdown()
