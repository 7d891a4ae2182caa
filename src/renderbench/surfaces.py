# Copyright (c) Syntropy Systems
"""Collaborator interfaces: renderer, backend, asset loader and the two surfaces."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional, Protocol

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from renderbench.models.base import JSONObject


@dataclass
class Mesh:
    """Merged vertex/index buffers of the benchmark model."""

    positions: Sequence[float]
    indices: Optional[Sequence[int]] = None


@dataclass
class LoadedAsset:
    """What an asset loader hands back: geometry plus timing/metadata blobs."""

    mesh: Mesh
    timing: JSONObject
    meta: JSONObject
    resource: Optional[JSONObject] = None


class AssetLoader(Protocol):
    """Loads and normalizes the benchmark model."""

    def load(self, url: str) -> LoadedAsset:
        ...


class Renderer(Protocol):
    """Draw-command submission for one backend."""

    def set_mesh(self, mesh: Mesh) -> None:
        ...

    def set_instances(
        self,
        count: int,
        spacing: float,
        layout: str,
        seed: int,
        *,
        immersive: bool = False,
    ) -> None:
        ...

    def set_camera(
        self,
        projection: Sequence[float],
        view: Sequence[float],
        view_index: int = 0,
    ) -> None:
        ...

    def draw_frame(self, view_index: int = 0) -> None:
        ...

    def clear(self) -> None:
        ...


@dataclass
class Backend:
    """A graphics backend: its name, its device identity and its renderer."""

    name: str
    identity: str
    renderer: Renderer
    env: JSONObject = field(default_factory=dict)


class FrameScheduler(Protocol):
    """Windowed surface: calls back once per display frame with a timestamp in ms."""

    def request_frame(self, callback: Callable[[float], None]) -> None:
        ...


@dataclass
class XRViewport:
    x: float
    y: float
    width: float
    height: float


@dataclass
class XRView:
    """One eye (or display) of an immersive frame."""

    projection: Sequence[float]
    view: Sequence[float]
    viewport: XRViewport


@dataclass
class XRFrame:
    """A compositor-delivered frame. ``views`` is None when no pose is available."""

    session: ImmersiveSession
    timestamp_ms: float
    views: Optional[list[XRView]] = None


class ImmersiveSession(Protocol):
    """A running immersive session; the environment drives frame delivery."""

    @property
    def ended(self) -> bool:
        ...

    @property
    def scale_factor(self) -> Optional[float]:
        """Framebuffer scale factor the session applied, if any."""
        ...

    def request_frame(self, callback: Callable[[float, XRFrame], None]) -> None:
        ...

    def add_end_listener(self, callback: Callable[[], None]) -> None:
        ...

    def end(self) -> None:
        ...


class ImmersiveEnvironment(Protocol):
    """Source of immersive sessions."""

    def is_supported(self) -> bool:
        ...

    async def wait_for_entry(self) -> None:
        """Return once the user (or automation) asks to enter the session."""
        ...

    async def request_session(self, *, scale_factor: float = 1.0) -> ImmersiveSession:
        """Start a session; raises SessionAcquisitionFailure when refused."""
        ...
