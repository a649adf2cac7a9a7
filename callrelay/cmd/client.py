from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import sys
from typing import Any, Dict, Optional, Tuple

import websockets

from callrelay.core import proto

log = logging.getLogger("callrelay.cmd.client")

HELP = "Commands: /call <user> [json], /answer <user> [json], /hangup <user>, /quit"

_COMMAND_EVENTS = {
    "/call": proto.EventType.CALL_INITIATE,
    "/answer": proto.EventType.CALL_ANSWER,
    "/hangup": proto.EventType.CALL_TERMINATE,
}


def parse_command(line: str) -> Optional[Tuple[str, Dict[str, Any]]]:
    """Turn a command line into (event type, payload).

    Returns None for /quit. Raises ValueError for anything else that is not a valid command.
    The optional signal argument is parsed as JSON, falling back to the raw string.
    """
    parts = line.strip().split(" ", 2)
    cmd = parts[0]
    if cmd in {"/quit", "/exit"}:
        return None
    event = _COMMAND_EVENTS.get(cmd)
    if event is None or len(parts) < 2 or not parts[1]:
        raise ValueError(HELP)

    payload: Dict[str, Any] = {"to": parts[1]}
    if event is proto.EventType.CALL_TERMINATE:
        return event.value, payload

    raw_signal = parts[2] if len(parts) > 2 else "{}"
    try:
        payload["signal"] = json.loads(raw_signal)
    except json.JSONDecodeError:
        payload["signal"] = raw_signal
    return event.value, payload


class ClientApp:
    def __init__(self, server_url: str, user_id: str) -> None:
        self.server_url = server_url
        self.user_id = user_id
        self.ws = None
        self.stop_event = asyncio.Event()

    async def run(self) -> None:
        async with websockets.connect(self.server_url) as ws:
            self.ws = ws
            await self._send_frame(proto.EventType.REGISTER.value, {"userId": self.user_id})
            receiver = asyncio.create_task(self._rx_loop())
            try:
                await self._command_loop()
            finally:
                self.stop_event.set()
                receiver.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await receiver

    async def _command_loop(self) -> None:
        loop = asyncio.get_running_loop()
        print(f"Registered as {self.user_id}. {HELP}")
        while not self.stop_event.is_set():
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break
            line = line.strip()
            if not line:
                continue
            try:
                command = parse_command(line)
            except ValueError as exc:
                print(exc)
                continue
            if command is None:
                self.stop_event.set()
                break
            await self._send_frame(*command)

    async def _rx_loop(self) -> None:
        assert self.ws is not None
        try:
            async for raw in self.ws:
                try:
                    frame = proto.decode_frame(raw)
                except ValueError:
                    log.warning("Dropped invalid frame: %s", raw)
                    continue
                self._show(frame)
        except websockets.ConnectionClosed:
            print("Connection closed by server")
        finally:
            self.stop_event.set()

    def _show(self, frame: Dict[str, Any]) -> None:
        payload = frame.get("payload") or {}
        type_ = frame.get("type")
        if type_ == proto.EventType.CALL_INITIATE.value:
            print(f"Incoming call from {payload.get('from')}: {json.dumps(payload.get('signal'))}")
        elif type_ == proto.EventType.CALL_ANSWER.value:
            print(f"Call answered by {payload.get('from', '?')}: {json.dumps(payload.get('signal'))}")
        elif type_ == proto.EventType.CALL_TERMINATE.value:
            print(f"Call ended by {payload.get('from', '?')}")
        elif type_ == proto.EventType.ERROR.value:
            print(f"Error {payload.get('code')}: {payload.get('detail')}")
        else:
            print(f"{type_}: {payload}")

    async def _send_frame(self, type_: str, payload: Dict[str, Any]) -> None:
        assert self.ws is not None
        await self.ws.send(proto.encode_frame({"type": type_, "payload": payload}))


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Interactive call-signaling test client")
    parser.add_argument("--url", default="ws://127.0.0.1:8383", help="Relay websocket URL")
    parser.add_argument("--user", required=True, help="User id to register as")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    app = ClientApp(args.url, args.user)
    try:
        asyncio.run(app.run())
    except KeyboardInterrupt:
        pass
    except OSError as exc:
        log.error("Could not connect to %s: %s", args.url, exc)


if __name__ == "__main__":
    main()
