
import asyncio
from typing import Dict, List

from fastapi import FastAPI, HTTPException, Request, Response, WebSocket, WebSocketDisconnect

from . import config
from .alerts import AlertEngine
from .logging_setup import configure_logging
from .models import Alert, Device, DeviceCreate, DeviceUpdate, Settings, SettingsIn
from .repos.redis_repo import RedisRepo
from .scheduler import TickScheduler
from .sound import AlertSoundDriver, BroadcastAudioBackend
from .store import DeviceStore, StoreSnapshot
from .trends import DevicePoint, FleetPoint, FleetSummary, TrendRecorder, summarize
from .ws_manager import WSManager

configure_logging(config.LOG_LEVEL)

app = FastAPI(title="Factory Telemetry Monitor")


# --- wiring: one store per process, everything else observes it
def install(app: FastAPI, store: DeviceStore, ws_manager: WSManager) -> None:
    trends = TrendRecorder(config.FLEET_TREND_POINTS, config.DEVICE_TREND_POINTS)
    sound = AlertSoundDriver(BroadcastAudioBackend(ws_manager.publish))

    def broadcast_state(snapshot: StoreSnapshot) -> None:
        ws_manager.publish({"type": "state", "data": snapshot.to_dict()})

    store.subscribe(trends.observe)
    store.subscribe(sound.observe)
    store.subscribe(broadcast_state)

    app.state.store = store
    app.state.trends = trends
    app.state.sound = sound
    app.state.ws = ws_manager


def _store(request: Request) -> DeviceStore:
    return request.app.state.store


# --- startup/shutdown
@app.on_event("startup")
async def on_startup():
    ws_manager = WSManager()
    ws_manager.bind(asyncio.get_running_loop())
    repo = RedisRepo.from_url(config.REDIS_URL, config.DEVICES_KEY, config.SETTINGS_KEY)
    store = DeviceStore(repo=repo, engine=AlertEngine(evaluate_energy=config.ENERGY_ALERTS))
    install(app, store, ws_manager)
    store.load()
    scheduler = TickScheduler(store, interval=config.TICK_INTERVAL_SECONDS)
    scheduler.start(asyncio.get_running_loop())
    app.state.scheduler = scheduler


@app.on_event("shutdown")
async def on_shutdown():
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler:
        await scheduler.stop()
    sound = getattr(app.state, "sound", None)
    if sound:
        sound.shutdown()
    ws_manager = getattr(app.state, "ws", None)
    if ws_manager:
        await ws_manager.stop()


# --- REST APIs ---
@app.get("/health")
async def health(request: Request):
    store = _store(request)
    return {"status": "ok", "durabilityWarning": store.durability_warning}


@app.get("/state")
async def get_state(request: Request):
    return _store(request).snapshot().to_dict()


@app.get("/devices", response_model=List[Device])
async def list_devices(request: Request):
    return _store(request).devices


@app.post("/devices", response_model=Device, status_code=201)
async def add_device(body: DeviceCreate, request: Request):
    return _store(request).add_device(body.model_dump())


@app.patch("/devices/{device_id}", response_model=Device)
async def update_device(device_id: int, body: DeviceUpdate, request: Request):
    device = _store(request).update_device(device_id, **body.model_dump(exclude_none=True))
    if device is None:
        raise HTTPException(status_code=404, detail="device not found")
    return device


@app.delete("/devices/{device_id}", status_code=204)
async def delete_device(device_id: int, request: Request):
    # deleting an unknown id is not an error, another view may have won the race
    _store(request).delete_device(device_id)
    return Response(status_code=204)


@app.post("/devices/{device_id}/toggle", response_model=Device)
async def toggle_device(device_id: int, request: Request):
    device = _store(request).toggle_device_status(device_id)
    if device is None:
        raise HTTPException(status_code=404, detail="device not found")
    return device


@app.get("/alerts", response_model=List[Alert])
async def list_alerts(request: Request):
    return _store(request).alerts


@app.delete("/alerts/{alert_id}")
async def clear_alert(alert_id: str, request: Request):
    return {"cleared": _store(request).clear_alert(alert_id)}


@app.get("/settings", response_model=Settings)
async def get_settings(request: Request):
    return _store(request).settings


@app.put("/settings", response_model=Settings)
async def update_settings(body: SettingsIn, request: Request):
    return _store(request).update_settings(body.to_settings())


@app.get("/summary", response_model=FleetSummary)
async def get_summary(request: Request):
    store = _store(request)
    return summarize(store.devices, store.alerts)


@app.get("/trends", response_model=List[FleetPoint])
async def fleet_trend(request: Request):
    return request.app.state.trends.fleet()


@app.get("/trends/{device_id}", response_model=List[DevicePoint])
async def device_trend(device_id: int, request: Request):
    if _store(request).get_device(device_id) is None:
        raise HTTPException(status_code=404, detail="device not found")
    return request.app.state.trends.device(device_id)


@app.post("/audio/permission")
async def grant_audio_permission(request: Request) -> Dict[str, bool]:
    sound: AlertSoundDriver = request.app.state.sound
    sound.grant_permission()
    return {"granted": sound.permission_granted}


# --- WebSockets for live UI ---
@app.websocket("/ws/telemetry")
async def ws_telemetry(ws: WebSocket):
    ws_manager: WSManager = ws.app.state.ws
    await ws_manager.connect(ws)
    try:
        await ws.send_json({"type": "state", "data": ws.app.state.store.snapshot().to_dict()})
        while True:
            await ws.receive_text()
            # any message from the dashboard counts as a user gesture
            ws.app.state.sound.grant_permission()
    except WebSocketDisconnect:
        pass
    finally:
        ws_manager.disconnect(ws)
