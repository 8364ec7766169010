import argparse
import json
import os
from typing import Optional

import requests

API_BASE = os.getenv("API_BASE", "http://127.0.0.1:7071")
DEFAULT_IDTAG = "USER001"


def _do_json(method: str, url: str, body: Optional[str] = None, params: Optional[dict] = None) -> requests.Response:
    headers = {
        "Content-Type": "application/json",
        "Connection": "close",
    }
    resp = requests.request(method, url, data=body, params=params, headers=headers, timeout=15)
    print(f"{method} {resp.url} -> {resp.status_code} {resp.reason}")
    print(resp.text)
    return resp


def connect(simulated: bool) -> None:
    _do_json("POST", f"{API_BASE}/connect?simulated={'true' if simulated else 'false'}")


def disconnect() -> None:
    _do_json("POST", f"{API_BASE}/disconnect")


def start_charge(evse_id: int, id_tag: str) -> None:
    _do_json("POST", f"{API_BASE}/start/{evse_id}", params={"id_tag": id_tag})


def stop_charge(evse_id: int, reason: str) -> None:
    _do_json("POST", f"{API_BASE}/stop/{evse_id}", params={"reason": reason})


def inject_fault(evse_id: int, code: str, info: str) -> None:
    _do_json("POST", f"{API_BASE}/fault/{evse_id}", params={"error_code": code, "info": info})


def clear_fault(evse_id: int) -> None:
    _do_json("POST", f"{API_BASE}/clear_fault/{evse_id}")


def apply_preset(name: str) -> None:
    _do_json("POST", f"{API_BASE}/preset/{name}")


def show_status() -> None:
    _do_json("GET", f"{API_BASE}/status")


def send_action(action: str, payload: Optional[str]) -> None:
    _do_json("POST", f"{API_BASE}/send/{action}", json.dumps(json.loads(payload)) if payload else None)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Drive the EVSE simulator via its HTTP API")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_connect = sub.add_parser("connect", help="connect to the CSMS")
    p_connect.add_argument("--ws", action="store_true", help="use the real CSMS instead of the simulated one")

    sub.add_parser("disconnect", help="disconnect from the CSMS")
    sub.add_parser("status", help="print the station snapshot")

    p_start = sub.add_parser("start", help="start charging")
    p_start.add_argument("evseId", type=int)
    p_start.add_argument("idTag", nargs="?", default=DEFAULT_IDTAG)

    p_stop = sub.add_parser("stop", help="stop charging")
    p_stop.add_argument("evseId", type=int)
    p_stop.add_argument("--reason", default="Local")

    p_fault = sub.add_parser("fault", help="inject a hardware fault")
    p_fault.add_argument("evseId", type=int)
    p_fault.add_argument("code", nargs="?", default="OtherError")
    p_fault.add_argument("--info", default="")

    p_clear = sub.add_parser("clear", help="clear a fault")
    p_clear.add_argument("evseId", type=int)

    p_preset = sub.add_parser("preset", help="apply a session preset")
    p_preset.add_argument("name", choices=["quick", "partial", "full"])

    p_send = sub.add_parser("send", help="send an OCPP CALL to the CSMS")
    p_send.add_argument("action")
    p_send.add_argument("payload", nargs="?", help="JSON payload")

    return parser.parse_args(argv)


def main(argv=None) -> None:
    args = parse_args(argv)
    if args.cmd == "connect":
        connect(simulated=not args.ws)
    elif args.cmd == "disconnect":
        disconnect()
    elif args.cmd == "status":
        show_status()
    elif args.cmd == "start":
        start_charge(args.evseId, args.idTag)
    elif args.cmd == "stop":
        stop_charge(args.evseId, args.reason)
    elif args.cmd == "fault":
        inject_fault(args.evseId, args.code, args.info)
    elif args.cmd == "clear":
        clear_fault(args.evseId)
    elif args.cmd == "preset":
        apply_preset(args.name)
    elif args.cmd == "send":
        send_action(args.action, args.payload)


if __name__ == "__main__":
    main()
