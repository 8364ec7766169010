import asyncio
import json
import logging
from typing import Optional

import uvicorn
from fastapi import Body, FastAPI, HTTPException

from .config import AUTOCONNECT, HTTP_PORT
from .errors import CommandResult
from .state_machine import EVSEState
from .station import Station
from .transport import SimulatedCSMS

logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(levelname)s | %(message)s")

app = FastAPI(title="EVSE-Sim Control")

station = Station()


def _reply(result: CommandResult, **extra) -> dict:
    body = {"ok": result.ok, **extra}
    if result.error is not None:
        body["error"] = result.error
    if result.transaction_id is not None:
        body["transaction_id"] = result.transaction_id
    if result.payload is not None:
        body["payload"] = result.payload
    return body


def _require_evse(evse_id: int):
    if station.model.evses.get(evse_id) is None:
        raise HTTPException(status_code=404, detail=f"unknown EVSE {evse_id}")


@app.get("/health")
async def health():
    return {"ok": True}


@app.get("/status")
async def status():
    return station.snapshot().model_dump(mode="json")


# -------- configuration --------
@app.get("/config")
async def get_config():
    cfg = station.config
    return {
        **cfg.model_dump(mode="json"),
        "energy_needed_kwh": round(cfg.energy_needed_kwh, 3),
        "estimated_power_kw": round(cfg.estimated_power_kw, 2),
    }


@app.patch("/config")
async def patch_config(changes: dict = Body(...)):
    return _reply(station.update_configuration(changes))


@app.post("/preset/{name}")
async def preset(name: str):
    return _reply(station.apply_preset(name), preset=name)


# -------- connection --------
@app.post("/connect")
async def connect(simulated: bool = True):
    return _reply(await station.connect(simulated=simulated))


@app.post("/disconnect")
async def disconnect():
    return _reply(await station.disconnect())


# -------- sessions --------
@app.post("/start/{evse_id}")
async def start(evse_id: int, id_tag: str = "USER001"):
    _require_evse(evse_id)
    return _reply(station.start_session(evse_id, id_tag), evse=evse_id)


@app.post("/stop/{evse_id}")
async def stop(evse_id: int, reason: str = "Local"):
    _require_evse(evse_id)
    return _reply(station.stop_session(evse_id, reason=reason), evse=evse_id)


# -------- faults & status injection --------
@app.post("/fault/{evse_id}")
async def fault(evse_id: int, error_code: str = "OtherError", info: str = ""):
    _require_evse(evse_id)
    return _reply(station.inject_fault(evse_id, error_code, info), evse=evse_id)


@app.post("/clear_fault/{evse_id}")
async def clear_fault(evse_id: int):
    _require_evse(evse_id)
    return _reply(station.clear_fault(evse_id), evse=evse_id)


@app.post("/suspend_ev/{evse_id}")
async def suspend_ev(evse_id: int):
    _require_evse(evse_id)
    return _reply(station.set_status(evse_id, EVSEState.SUSPENDED_EV), evse=evse_id)


@app.post("/suspend_evse/{evse_id}")
async def suspend_evse(evse_id: int):
    _require_evse(evse_id)
    return _reply(station.set_status(evse_id, EVSEState.SUSPENDED_EVSE), evse=evse_id)


@app.post("/reserve/{evse_id}")
async def reserve(evse_id: int):
    _require_evse(evse_id)
    return _reply(station.set_status(evse_id, EVSEState.RESERVED), evse=evse_id)


@app.post("/resume/{evse_id}")
async def resume(evse_id: int):
    _require_evse(evse_id)
    return _reply(station.set_status(evse_id, EVSEState.AVAILABLE), evse=evse_id)


# -------- raw protocol access --------
@app.post("/send/{action}")
async def send(action: str, payload: Optional[dict] = Body(default=None)):
    return _reply(await station.send_manual(action, payload), action=action)


@app.post("/inbound")
async def inbound(frame=Body(...)):
    """Feed a raw OCPP-J frame to the station as if the CSMS had sent it."""
    raw = frame if isinstance(frame, str) else json.dumps(frame)
    await station.handle_inbound(raw)
    return {"ok": True}


@app.post("/csms/{action}")
async def csms_command(action: str, payload: dict = Body(default={})):
    """Play a CSMS-initiated CALL through the simulated CSMS."""
    if not isinstance(station.link, SimulatedCSMS):
        return {"ok": False, "error": "not connected to the simulated CSMS"}
    reply = await station.link.request(action, payload)
    if reply is None:
        return {"ok": False, "error": f"no reply to {action}"}
    if hasattr(reply, "error_code"):
        return {"ok": False, "error": f"{reply.error_code}: {reply.error_description}"}
    return {"ok": True, "payload": reply.payload}


async def main():
    server = uvicorn.Server(uvicorn.Config(app, host="0.0.0.0", port=HTTP_PORT, loop="asyncio", log_level="info"))
    api_task = asyncio.create_task(server.serve())
    if AUTOCONNECT in ("sim", "ws"):
        result = await station.connect(simulated=AUTOCONNECT == "sim")
        if not result:
            logging.error(f"Autoconnect failed: {result.error}")
    await api_task


if __name__ == "__main__":
    asyncio.run(main())
