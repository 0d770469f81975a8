from __future__ import annotations

import os
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.v1.routes import router as v1_router
from app.core.config import SettingsStore, load_settings
from app.core.logging import configure_logging
from app.services.debug_log import DebugLog
from app.services.orchestrator import ConversationOrchestrator

# Load .env if present (no-op if missing)
load_dotenv()
configure_logging()


def create_app(settings_store: Optional[SettingsStore] = None, **orchestrator_kwargs) -> FastAPI:
    store = settings_store or SettingsStore(os.getenv("WINE_SETTINGS_PATH"))
    config = load_settings(store)
    debug_log = DebugLog(enabled=config.debug_enabled, pretty=config.debug_pretty_mode)

    app = FastAPI(title="Wine List Assistant", version="0.2.0")

    # Local dev frontends call from another origin.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings_store = store
    app.state.config = config
    app.state.debug_log = debug_log
    app.state.orchestrator = ConversationOrchestrator(config, debug_log=debug_log, **orchestrator_kwargs)

    app.include_router(v1_router, prefix="/api/v1")

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok", "provider": app.state.config.selected_provider}

    return app


app = create_app()
