from __future__ import annotations

from enum import Enum
from typing import Callable, List, Optional
import logging

from .edgedraw import EdgeDrawSubsystem
from .interaction import Mode
from .menus import ContextMenuDispatcher
from .model import Element, ElementModel
from .settings import CURSOR_DEFAULT, CURSOR_LOCKED

logger = logging.getLogger(__name__)

# (event kind, element or None for the canvas) -> True when the event is swallowed.
Interceptor = Callable[[str, Optional[Element]], bool]

INTERCEPTED_KINDS = ("tap", "cxttap")
# View mode keeps taps so inspectors still open on a deployed lab.
VIEW_INTERCEPTED_KINDS = ("cxttap",)


class LockState(str, Enum):
    UNLOCKED = "unlocked"
    LOCKED = "locked"


class DeploymentLock:
    """Two-state lock tracking whether the lab is deployed.

    Entering LOCKED disables dragging, edge drawing and context menus, shows
    the not-allowed cursor and installs an interceptor that swallows taps and
    right-clicks on elements. Leaving reverses each of these. Re-applying the
    current state does nothing.

    In view mode the same pinning and menu teardown apply, but only
    right-clicks are swallowed and the cursor is left alone.
    """

    def __init__(
        self,
        model: ElementModel,
        edge_draw: EdgeDrawSubsystem,
        menus: ContextMenuDispatcher,
        surface,
        interceptors: List[Interceptor],
        mode: Mode = Mode.EDIT,
    ):
        self.model = model
        self.edge_draw = edge_draw
        self.menus = menus
        self.surface = surface
        self.interceptors = interceptors
        self.mode = Mode(mode)
        self.intercepted_kinds = INTERCEPTED_KINDS if self.mode is Mode.EDIT else VIEW_INTERCEPTED_KINDS
        self.state = LockState.UNLOCKED
        self._listeners: List[Callable[[LockState], None]] = []
        model.on("add load", self._on_model_grow)

    @property
    def locked(self) -> bool:
        return self.state is LockState.LOCKED

    def on_change(self, listener: Callable[[LockState], None]) -> None:
        self._listeners.append(listener)

    def apply(self, deployed: bool) -> bool:
        """Move to the state matching ``deployed``; returns True if it changed."""
        target = LockState.LOCKED if deployed else LockState.UNLOCKED
        if target is self.state:
            return False
        if target is LockState.LOCKED:
            self._restrict()
        else:
            self._release()
        self.state = target
        logger.info("Deployment lock %s", target.value)
        for listener in list(self._listeners):
            listener(target)
        return True

    def _restrict(self) -> None:
        self.model.set_grabbable(False)
        self.edge_draw.disable()
        try:
            self.menus.detach()
        except Exception as e:
            logger.error("Failed to detach context menus: %s", e)
        if self.mode is Mode.EDIT:
            self.surface.set_cursor(CURSOR_LOCKED)
        if self._swallow not in self.interceptors:
            self.interceptors.append(self._swallow)

    def _release(self) -> None:
        self.model.set_grabbable(True)
        self.edge_draw.enable()
        try:
            self.menus.attach()
        except Exception as e:
            logger.error("Failed to rebuild context menus: %s", e)
        if self.mode is Mode.EDIT:
            self.surface.set_cursor(CURSOR_DEFAULT)
        while self._swallow in self.interceptors:
            self.interceptors.remove(self._swallow)

    def _swallow(self, kind: str, element: Optional[Element]) -> bool:
        return element is not None and kind in self.intercepted_kinds

    def _on_model_grow(self, event: str, element: Optional[Element]) -> None:
        # Nodes arriving while locked (reload, patches) must stay pinned too.
        if self.locked:
            self.model.set_grabbable(False)
