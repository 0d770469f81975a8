from __future__ import annotations

from fastapi import APIRouter, File, HTTPException, Request, UploadFile

from app.core.config import PROVIDER_IDS, AppConfig, ProviderConfig, save_settings
from app.models.wine import (
    ConversationResponse,
    MessageRequest,
    ProviderSettingsView,
    SettingsUpdate,
    SettingsView,
    WineList,
)
from app.services.image import load_image
from app.services.orchestrator import ConversationOrchestrator

router = APIRouter()

_BUSY = "A request is already being processed or no API key is configured for the selected provider"


def _orchestrator(request: Request) -> ConversationOrchestrator:
    return request.app.state.orchestrator


def _conversation(orch: ConversationOrchestrator, accepted: bool) -> ConversationResponse:
    return ConversationResponse(
        accepted=accepted,
        processing=orch.processing,
        turns=list(orch.turns),
        wineList=orch.wine_list,
    )


def _settings_view(config: AppConfig) -> SettingsView:
    return SettingsView(
        selected_provider=config.selected_provider,
        temperature=config.temperature,
        debug_enabled=config.debug_enabled,
        debug_pretty_mode=config.debug_pretty_mode,
        providers={
            pid: ProviderSettingsView(
                model=cfg.model,
                has_api_key=cfg.has_credential,
                supports_temperature=cfg.supports_temperature,
                supports_vision=cfg.supports_vision,
            )
            for pid, cfg in ((pid, config.provider(pid)) for pid in PROVIDER_IDS)
        },
    )


@router.post("/analyze", response_model=ConversationResponse)
async def analyze_menu(request: Request, image: UploadFile = File(...)) -> ConversationResponse:
    if not (image.content_type or "").startswith("image/"):
        raise HTTPException(status_code=400, detail="Only image uploads are supported")

    data = await image.read()
    if not data:
        raise HTTPException(status_code=400, detail="Empty upload")

    orch = _orchestrator(request)
    accepted = await orch.send_image(load_image(image.content_type, data))
    if not accepted:
        raise HTTPException(status_code=409, detail=_BUSY)
    return _conversation(orch, accepted)


@router.post("/messages", response_model=ConversationResponse)
async def send_message(request: Request, body: MessageRequest) -> ConversationResponse:
    if not body.text.strip():
        raise HTTPException(status_code=400, detail="Empty message")

    orch = _orchestrator(request)
    accepted = await orch.send_text(body.text)
    if not accepted:
        raise HTTPException(status_code=409, detail=_BUSY)
    return _conversation(orch, accepted)


@router.get("/conversation", response_model=ConversationResponse)
def get_conversation(request: Request) -> ConversationResponse:
    return _conversation(_orchestrator(request), True)


@router.get("/wines", response_model=WineList)
def get_wines(request: Request) -> WineList:
    return _orchestrator(request).wine_list or WineList()


@router.get("/settings", response_model=SettingsView)
def get_settings(request: Request) -> SettingsView:
    return _settings_view(request.app.state.config)


@router.put("/settings", response_model=SettingsView)
def update_settings(request: Request, body: SettingsUpdate) -> SettingsView:
    config: AppConfig = request.app.state.config

    unknown = [pid for pid in body.providers if pid not in PROVIDER_IDS]
    if body.selected_provider is not None and body.selected_provider not in PROVIDER_IDS:
        unknown.append(body.selected_provider)
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown provider: {', '.join(unknown)}")

    providers = {pid: config.provider(pid) for pid in PROVIDER_IDS}
    for pid, update in body.providers.items():
        current = providers[pid]
        providers[pid] = ProviderConfig(
            provider_id=pid,
            api_key=current.api_key if update.api_key is None else update.api_key.strip(),
            model=current.model if not (update.model or "").strip() else update.model.strip(),
        )

    changes = body.model_dump(exclude_none=True, exclude={"providers"})
    new_config = config.model_copy(update={**changes, "providers": providers})

    save_settings(request.app.state.settings_store, new_config)
    request.app.state.config = new_config
    request.app.state.debug_log.configure(enabled=new_config.debug_enabled, pretty=new_config.debug_pretty_mode)
    _orchestrator(request).update_config(new_config)
    return _settings_view(new_config)


@router.get("/debug")
def get_debug_log(request: Request) -> dict:
    debug_log = request.app.state.debug_log
    return {"enabled": debug_log.enabled, "pretty": debug_log.pretty, "entries": debug_log.render()}


@router.delete("/debug")
def clear_debug_log(request: Request) -> dict:
    request.app.state.debug_log.clear()
    return {"status": "ok"}
