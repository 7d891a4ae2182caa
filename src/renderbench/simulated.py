# Copyright (c) Syntropy Systems
"""Headless stand-ins for the rendering collaborators.

They drive the full trial state machine without a GPU: frames arrive on the
suite clock at a fixed cadence and draw calls are only counted. The ``run``
command uses them for dry runs; the tests use them to script sessions.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
import math
from typing import TYPE_CHECKING, Optional

from renderbench.errors import SessionAcquisitionFailure
from renderbench.surfaces import Backend, LoadedAsset, Mesh, XRFrame, XRView, XRViewport

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator, Mapping, Sequence

    from renderbench.clock import Clock
    from renderbench.models.base import JSONObject

logger = logging.getLogger(__name__)

# Per-eye framebuffer size of the simulated headset at scale factor 1.0.
EYE_WIDTH = 1832
EYE_HEIGHT = 1920


class NullRenderer:
    """Renderer that records calls instead of drawing."""

    def __init__(self, *, fail_on_draw: int | None = None) -> None:
        self.mesh: Mesh | None = None
        self.instance_calls: list[tuple[int, bool]] = []
        self.camera_calls = 0
        self.draw_calls = 0
        self.clear_calls = 0
        self._fail_on_draw = fail_on_draw

    def set_mesh(self, mesh: Mesh) -> None:
        self.mesh = mesh

    def set_instances(
        self,
        count: int,
        spacing: float,
        layout: str,
        seed: int,
        *,
        immersive: bool = False,
    ) -> None:
        self.instance_calls.append((count, immersive))

    def set_camera(
        self,
        projection: Sequence[float],
        view: Sequence[float],
        view_index: int = 0,
    ) -> None:
        self.camera_calls += 1

    def draw_frame(self, view_index: int = 0) -> None:
        self.draw_calls += 1
        if self._fail_on_draw is not None and self.draw_calls >= self._fail_on_draw:
            msg = f"Simulated draw failure on call {self.draw_calls}"
            raise RuntimeError(msg)

    def clear(self) -> None:
        self.clear_calls += 1


def _backend_env(name: str) -> JSONObject:
    if name == "webgpu":
        return {
            "adapterRequest": {"powerPreference": "high-performance", "xrCompatible": True},
            "xrCompatibleRequested": True,
            "adapter": {"vendor": "simulated", "architecture": "null", "isFallbackAdapter": False},
            "adapter_features": [],
            "adapter_limits": {"maxTextureDimension2D": 8192},
            "device_features": [],
            "device_limits": {"maxTextureDimension2D": 8192},
            "colorFormat": "bgra8unorm",
        }
    return {
        "contextAttributes": {"antialias": False, "alpha": False, "xrCompatible": True},
        "gpu": {"vendor": "simulated", "renderer": "null"},
    }


def simulated_backend(
    name: str,
    identity: str | None = None,
    renderer: NullRenderer | None = None,
) -> Backend:
    """Build a backend around a NullRenderer with a plausible env blob."""
    return Backend(
        name=name,
        identity=identity or "simulated|null",
        renderer=renderer or NullRenderer(),
        env=_backend_env(name),
    )


class SyntheticAssetLoader:
    """Produces a unit cube instead of fetching a model."""

    def load(self, url: str) -> LoadedAsset:
        positions = [
            float(c)
            for corner in itertools.product((-0.5, 0.5), repeat=3)
            for c in corner
        ]
        indices = [
            0, 1, 3, 0, 3, 2, 4, 6, 7, 4, 7, 5,
            0, 4, 5, 0, 5, 1, 2, 3, 7, 2, 7, 6,
            0, 2, 6, 0, 6, 4, 1, 5, 7, 1, 7, 3,
        ]
        return LoadedAsset(
            mesh=Mesh(positions=positions, indices=indices),
            timing={"fetch_ms": 0.0, "parse_ms": 0.0, "total_ms": 0.0},
            meta={
                "vertex_count": len(positions) // 3,
                "index_count": len(indices),
                "triangle_count": len(indices) // 3,
                "has_indices": True,
                "source": url,
            },
            resource={"name": url, "transferSize": 0, "duration": 0.0},
        )


class SteppedFrameScheduler:
    """Windowed surface delivering frames at scripted intervals on the suite clock.

    ``deltas`` cycles; without it every frame is ``frame_ms`` apart.
    """

    def __init__(
        self,
        clock: Clock,
        deltas: Sequence[float] | None = None,
        frame_ms: float = 1000 / 60,
    ) -> None:
        self.clock = clock
        self.frames = 0
        self._deltas: Iterator[float] = itertools.cycle(deltas) if deltas else itertools.repeat(frame_ms)

    def request_frame(self, callback: Callable[[float], None]) -> None:
        def deliver() -> None:
            self.frames += 1
            callback(self.clock.now_ms())

        _ = self.clock.call_later(next(self._deltas), deliver)


class SimulatedImmersiveSession:
    """Compositor stand-in delivering frames at a fixed cadence until ended."""

    def __init__(
        self,
        clock: Clock,
        *,
        frame_ms: float,
        view_count: int,
        scale_factor: float,
        end_after_frames: int | None = None,
        view_overrides: Mapping[int, int | None] | None = None,
    ) -> None:
        self.clock = clock
        self.frame_ms = frame_ms
        self.view_count = view_count
        self.end_after_frames = end_after_frames
        self.view_overrides = dict(view_overrides or {})
        self.frames = 0
        self._scale_factor = scale_factor
        self._ended = False
        self._callbacks: list[Callable[[float, XRFrame], None]] = []
        self._listeners: list[Callable[[], None]] = []
        self._scheduled = False

    @property
    def ended(self) -> bool:
        return self._ended

    @property
    def scale_factor(self) -> Optional[float]:
        return self._scale_factor

    def request_frame(self, callback: Callable[[float, XRFrame], None]) -> None:
        if self._ended:
            return
        self._callbacks.append(callback)
        if not self._scheduled:
            self._scheduled = True
            _ = self.clock.call_later(self.frame_ms, self._deliver)

    def add_end_listener(self, callback: Callable[[], None]) -> None:
        self._listeners.append(callback)

    def end(self) -> None:
        if self._ended:
            return
        self._ended = True
        self._callbacks = []
        for listener in self._listeners:
            listener()

    def _views(self) -> list[XRView] | None:
        count = self.view_overrides.get(self.frames, self.view_count)
        if count is None:
            return None
        width = math.floor(EYE_WIDTH * self._scale_factor)
        height = math.floor(EYE_HEIGHT * self._scale_factor)
        projection = (1.0, 0.0, 0.0, 0.0, 0.0, 1.0, 0.0, 0.0,
                      0.0, 0.0, -1.0, -1.0, 0.0, 0.0, -0.2, 0.0)
        return [
            XRView(
                projection=projection,
                view=(1.0, 0.0, 0.0, 0.0, 0.0, 1.0, 0.0, 0.0,
                      0.0, 0.0, 1.0, 0.0, -0.032 + 0.064 * i, 0.0, 0.0, 1.0),
                viewport=XRViewport(x=width * i, y=0, width=width, height=height),
            )
            for i in range(count)
        ]

    def _deliver(self) -> None:
        self._scheduled = False
        if self._ended:
            return
        self.frames += 1
        callbacks, self._callbacks = self._callbacks, []
        t = self.clock.now_ms()
        frame = XRFrame(session=self, timestamp_ms=t, views=self._views())
        for callback in callbacks:
            callback(t, frame)
        if self.end_after_frames is not None and self.frames >= self.end_after_frames:
            logger.info("Simulated environment ending session after %d frames", self.frames)
            self.end()


class SimulatedImmersiveEnvironment:
    """Scriptable source of immersive sessions.

    ``fail_requests`` makes the first N session requests fail; ``never_enter``
    keeps ``wait_for_entry`` pending forever. ``view_overrides`` maps 1-based
    frame numbers to a different view count, or to None for a frame without a
    viewer pose.
    """

    def __init__(
        self,
        clock: Clock,
        *,
        supported: bool = True,
        frame_ms: float = 1000 / 90,
        view_count: int = 2,
        end_after_frames: int | None = None,
        fail_requests: int = 0,
        entry_delay_ms: float = 0.0,
        request_delay_ms: float = 0.0,
        never_enter: bool = False,
        view_overrides: Mapping[int, int | None] | None = None,
    ) -> None:
        self.clock = clock
        self.supported = supported
        self.frame_ms = frame_ms
        self.view_count = view_count
        self.end_after_frames = end_after_frames
        self.fail_requests = fail_requests
        self.entry_delay_ms = entry_delay_ms
        self.request_delay_ms = request_delay_ms
        self.never_enter = never_enter
        self.view_overrides = dict(view_overrides or {})
        self.requests = 0
        self.sessions: list[SimulatedImmersiveSession] = []

    def is_supported(self) -> bool:
        return self.supported

    async def wait_for_entry(self) -> None:
        if self.never_enter:
            await asyncio.get_running_loop().create_future()
        await self.clock.sleep(self.entry_delay_ms)

    async def request_session(self, *, scale_factor: float = 1.0) -> SimulatedImmersiveSession:
        self.requests += 1
        if self.request_delay_ms > 0:
            await self.clock.sleep(self.request_delay_ms)
        if self.requests <= self.fail_requests:
            msg = f"Simulated session request {self.requests} refused"
            raise SessionAcquisitionFailure(msg)
        session = SimulatedImmersiveSession(
            self.clock,
            frame_ms=self.frame_ms,
            view_count=self.view_count,
            scale_factor=scale_factor,
            end_after_frames=self.end_after_frames,
            view_overrides=self.view_overrides,
        )
        self.sessions.append(session)
        return session
