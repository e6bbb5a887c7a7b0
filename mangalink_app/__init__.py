# Load environment variables FIRST before any other imports
from dotenv import load_dotenv
load_dotenv()

import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Optional

from flask import Flask, g, request
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker


@dataclass
class MangaLinkServices:
    """Everything the blueprints need, stored in app.extensions['mangalink']."""
    settings: Any
    engine: Engine
    session_factory: sessionmaker
    store: Any
    registry: Any
    manager: Any
    runner: Any
    sweeper: Any = None

    def shutdown(self, timeout: float = 10) -> None:
        """Stop background work and release network clients."""
        if not self.runner.running:
            return
        if self.sweeper is not None:
            self.runner.run(self.sweeper.stop(), timeout)
        # manager.close() also closes the registry transports
        self.runner.run(self.manager.close(), timeout)
        self.runner.stop()


def create_app(settings=None, registry=None, clock: Optional[Callable[[], float]] = None, start_sweeper: bool = True):
    """Create and configure an instance of the Flask application."""
    from .config import Settings
    from .database import configure_database, get_engine
    from .log import log, configure_logging, debug_log_event
    from .mapping import MappingManager
    from .runtime import LoopRunner, ExpirySweeper
    from .storage import MappingStore
    from .routes.validators import set_allowed_platforms
    from sources import PlatformRegistry
    from sources.base import set_log_callback

    settings = settings or Settings.from_env()
    settings.validate()

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_mapping(
        JSON_SORT_KEYS=False,
        HOST=settings.host,
        PORT=settings.port,
    )

    # =============================================================================
    # LOGGING
    # =============================================================================
    configure_logging(settings.log_dir)
    set_log_callback(log)

    @app.before_request
    def assign_request_id():
        g.request_id = uuid.uuid4().hex[:12]
        g.request_start = time.time()

    @app.after_request
    def debug_request_log(response):
        try:
            duration_ms = None
            start_time = getattr(g, 'request_start', None)
            if start_time:
                duration_ms = int((time.time() - start_time) * 1000)
            debug_log_event({
                'event': 'request',
                'request_id': getattr(g, 'request_id', None),
                'method': request.method,
                'path': request.path,
                'query': request.query_string.decode('utf-8', errors='ignore'),
                'status': response.status_code,
                'duration_ms': duration_ms,
                'remote_addr': request.remote_addr,
            })
        except Exception as exc:
            log(f"⚠️ Debug log error: {exc}")
        return response

    @app.teardown_request
    def debug_exception_log(error=None):
        if not error:
            return
        try:
            debug_log_event({
                'event': 'exception',
                'request_id': getattr(g, 'request_id', None),
                'method': request.method if request else None,
                'path': request.path if request else None,
                'error_type': error.__class__.__name__,
                'error': str(error)
            })
        except Exception as exc:
            log(f"⚠️ Debug exception log error: {exc}")

    # =============================================================================
    # ENGINE (store, platforms, manager, background loop)
    # =============================================================================
    session_factory = configure_database(settings.database_url)
    store = MappingStore.from_settings(session_factory, settings, clock=clock or time.time)

    if registry is None:
        registry = PlatformRegistry(
            tokens=store.tokens,
            progress=store.progress,
            enabled=settings.platforms,
        )
    registry.configure(
        request_timeout=settings.request_timeout,
        max_attempts=settings.max_attempts,
        backoff_base=settings.backoff_base,
        backoff_max=settings.backoff_max,
    )
    set_allowed_platforms(registry.keys())

    manager = MappingManager(store, registry)
    runner = LoopRunner().start()

    sweeper = None
    if start_sweeper:
        sweeper = ExpirySweeper(store.flush_expired, settings.flush_interval)

        async def _start_sweeper():
            sweeper.start()

        runner.run(_start_sweeper(), timeout=10)

    app.extensions['mangalink'] = MangaLinkServices(
        settings=settings,
        engine=get_engine(),
        session_factory=session_factory,
        store=store,
        registry=registry,
        manager=manager,
        runner=runner,
        sweeper=sweeper,
    )

    # =============================================================================
    # BLUEPRINTS & ROUTES
    # =============================================================================
    from .routes.context_api import context_bp
    from .routes.platforms_api import platforms_bp

    app.register_blueprint(context_bp)
    app.register_blueprint(platforms_bp)

    print("=" * 60)
    print("  MangaLink v1.0 - Cross-Platform Work Mapping")
    print("=" * 60)
    print(f"\n📚 Loaded {len(registry.keys())} platforms:")
    for info in registry.get_health_info():
        print(f"   {info.get('icon', '')} {info.get('name')} ({info.get('id')})")
    print(f"\n🧹 Expiry sweep every {int(settings.flush_interval)}s")
    print("=" * 60)

    return app

# App instance should be created by the caller (run.py or WSGI entrypoint)
