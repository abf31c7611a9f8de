from __future__ import annotations

import asyncio
import json
import logging
from collections import deque
from dataclasses import asdict, dataclass
from typing import Any, Dict, List

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pygame.math import Vector2

from ..sim.core.agent import AgentSpec
from ..sim.core.config import SimulationConfig
from ..sim.core.errors import ConfigurationError
from ..sim.core.world import World
from ..sim.scenes import corridor_flows, corridor_scene

logger = logging.getLogger("crowdsim.app.server")

_SPEC_OPTIONS = (
    "name",
    "origin_label",
    "destination_label",
    "desired_speed",
    "mass",
    "radius",
    "force_model",
    "attention_model",
    "tilt_position",
    "tilt_velocity",
)


@dataclass(frozen=True)
class QueuedSnapshot:
    tick: int
    payload: str


class SnapshotBacklog:
    """Serialized snapshots held until a client acknowledges their tick."""

    def __init__(self) -> None:
        self._items: deque[QueuedSnapshot] = deque()
        self._delivered: Dict[WebSocket, int] = {}

    @property
    def clients(self) -> List[WebSocket]:
        return list(self._delivered)

    def ticks(self) -> List[int]:
        return [item.tick for item in self._items]

    def register(self, client: WebSocket) -> None:
        self._delivered[client] = -1

    def forget(self, client: WebSocket) -> None:
        self._delivered.pop(client, None)

    def push(self, item: QueuedSnapshot) -> None:
        # A second publish within one tick supersedes the first.
        if self._items and self._items[-1].tick == item.tick:
            self._items[-1] = item
        else:
            self._items.append(item)

    def undelivered(self, client: WebSocket) -> List[QueuedSnapshot]:
        delivered = self._delivered.get(client, -1)
        return [item for item in self._items if item.tick > delivered]

    def mark_delivered(self, client: WebSocket, tick: int) -> None:
        if client in self._delivered:
            self._delivered[client] = tick

    def acknowledge(self, tick: int) -> None:
        while self._items and self._items[0].tick <= tick:
            self._items.popleft()

    def rewind(self) -> None:
        self._items.clear()
        for client in self._delivered:
            self._delivered[client] = -1


def spec_from_payload(payload: dict) -> AgentSpec:
    try:
        origin = Vector2(float(payload["origin"][0]), float(payload["origin"][1]))
        destination = Vector2(float(payload["destination"][0]), float(payload["destination"][1]))
    except (KeyError, IndexError, TypeError, ValueError) as exc:
        raise ConfigurationError("spawn needs origin and destination as [x, y]") from exc
    options = {key: payload[key] for key in _SPEC_OPTIONS if payload.get(key) is not None}
    return AgentSpec(origin=origin, destination=destination, **options)


def gaze_summary(agents: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Count gazing agents overall and per noticed attractor."""
    by_attractor: Dict[str, int] = {}
    attracted = 0
    for agent in agents:
        if not agent["is_attracted"]:
            continue
        attracted += 1
        noticed = agent["noticed_attractor"]
        if noticed is not None:
            key = str(noticed)
            by_attractor[key] = by_attractor.get(key, 0) + 1
    return {"attracted": attracted, "by_attractor": by_attractor}


class SimulationController:
    def __init__(self, config: SimulationConfig, broadcast_interval: int = 1):
        self.config = config
        self.world = World(config)
        self.broadcast_interval = max(1, broadcast_interval)
        self.running = False
        self.speed_multiplier = 1.0
        self.backlog = SnapshotBacklog()
        self._lock = asyncio.Lock()
        self._backlog_lock = asyncio.Lock()
        self._loop_task: asyncio.Task | None = None

    @property
    def tick(self) -> int:
        return self.world.tick

    async def start(self) -> None:
        if self._loop_task is None:
            self._loop_task = asyncio.create_task(self._loop())
        self.running = True

    async def stop(self) -> None:
        self.running = False

    async def reboot(self) -> None:
        async with self._lock:
            self.world.reboot()
        async with self._backlog_lock:
            self.backlog.rewind()
        await self.publish()

    async def clear(self) -> None:
        async with self._lock:
            self.world.clear_all_agents()
        await self.publish()

    async def spawn(self, spec: AgentSpec) -> int:
        async with self._lock:
            return self.world.spawn(spec)

    async def remove(self, agent_id: int) -> None:
        async with self._lock:
            self.world.remove(agent_id)

    async def connect(self, client: WebSocket) -> None:
        async with self._backlog_lock:
            self.backlog.register(client)
        await self.deliver(client)

    async def disconnect(self, client: WebSocket) -> None:
        async with self._backlog_lock:
            self.backlog.forget(client)

    async def acknowledge(self, tick: int) -> None:
        async with self._backlog_lock:
            self.backlog.acknowledge(tick)

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.time_step / self.speed_multiplier)
            if not self.running:
                continue
            async with self._lock:
                self.world.step()
            if self.tick % self.broadcast_interval == 0:
                await self.publish()

    def snapshot_message(self) -> QueuedSnapshot:
        snapshot = self.world.snapshot()
        message = {
            "type": "snapshot",
            "tick": snapshot.tick,
            "payload": {
                "tick": snapshot.tick,
                "model": snapshot.metadata.model,
                "metrics": asdict(snapshot.metrics),
                "gaze": gaze_summary(snapshot.agents),
                "agents": snapshot.agents,
                "scene": asdict(snapshot.scene),
                "metadata": asdict(snapshot.metadata),
            },
        }
        return QueuedSnapshot(tick=snapshot.tick, payload=json.dumps(message, allow_nan=False))

    async def deliver(self, client: WebSocket) -> None:
        async with self._backlog_lock:
            pending = self.backlog.undelivered(client)
        for item in pending:
            await client.send_text(item.payload)
            async with self._backlog_lock:
                self.backlog.mark_delivered(client, item.tick)

    async def publish(self) -> None:
        queued = self.snapshot_message()
        async with self._backlog_lock:
            self.backlog.push(queued)
            clients = self.backlog.clients
        for client in clients:
            try:
                await self.deliver(client)
            except WebSocketDisconnect:
                logger.info("Dropping disconnected client at tick %d", queued.tick)
                await self.disconnect(client)


app = FastAPI(title="Crowd Simulation")
controller = SimulationController(SimulationConfig(scene=corridor_scene(), flows=corridor_flows()))


@app.on_event("startup")
async def _startup() -> None:
    await controller.start()


@app.get("/api/status")
async def status() -> JSONResponse:
    snapshot = controller.world.snapshot()
    return JSONResponse(
        {
            "running": controller.running,
            "tick": controller.tick,
            "model": controller.world.model_label(),
            "population": len(controller.world.agents),
            "metrics": asdict(snapshot.metrics),
        }
    )


@app.post("/api/control/start")
async def start_simulation() -> JSONResponse:
    controller.running = True
    return JSONResponse({"running": True})


@app.post("/api/control/stop")
async def stop_simulation() -> JSONResponse:
    controller.running = False
    return JSONResponse({"running": False})


@app.post("/api/control/reboot")
async def reboot_simulation() -> JSONResponse:
    await controller.reboot()
    return JSONResponse({"running": controller.running, "tick": controller.tick})


@app.post("/api/control/clear")
async def clear_agents() -> JSONResponse:
    await controller.clear()
    return JSONResponse({"population": len(controller.world.agents)})


@app.post("/api/control/speed")
async def set_speed(payload: dict) -> JSONResponse:
    speed = float(payload.get("multiplier", 1.0))
    controller.speed_multiplier = max(0.1, min(5.0, speed))
    return JSONResponse({"multiplier": controller.speed_multiplier})


@app.post("/api/agents")
async def spawn_agent(payload: dict) -> JSONResponse:
    try:
        agent_id = await controller.spawn(spec_from_payload(payload))
    except ConfigurationError as exc:
        return JSONResponse({"error": str(exc)}, status_code=400)
    return JSONResponse({"id": agent_id}, status_code=201)


@app.delete("/api/agents/{agent_id}")
async def remove_agent(agent_id: int) -> JSONResponse:
    await controller.remove(agent_id)
    return JSONResponse({"removed": agent_id})


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    await websocket.accept()
    await controller.connect(websocket)
    try:
        while True:
            message = await websocket.receive_text()
            try:
                payload = json.loads(message)
            except json.JSONDecodeError:
                continue
            if payload.get("type") == "ack":
                tick = payload.get("tick")
                if isinstance(tick, int):
                    await controller.acknowledge(tick)
    except WebSocketDisconnect:
        await controller.disconnect(websocket)


__all__ = ["app", "controller", "gaze_summary", "spec_from_payload"]
