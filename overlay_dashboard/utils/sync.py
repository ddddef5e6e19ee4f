"""
Widget synchronization protocol.

Widgets never hold authoritative state. The controller pushes each widget a
single immutable config mapping (its plugin options merged with derived
state) and widgets send changes back as enumerated WidgetEvents.

Every attached widget declares the state slices it reads. After a change the
hub re-pushes only the widgets whose slices intersect the changed set.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional

logger = logging.getLogger(__name__)


class EventKind(Enum):
    """Outbound events a widget may raise."""
    TIME_CHANGED = 'time_changed'                          # payload: index
    FEATURE_CLICKED = 'feature_clicked'                    # payload: layer, id
    PLAYBACK_TOGGLED = 'playback_toggled'                  # payload: playing (optional)
    STEPS_PER_SECOND_CHANGED = 'steps_per_second_changed'  # payload: steps_per_second
    SELECTION_CLEARED = 'selection_cleared'
    FEATURE_PINNED = 'feature_pinned'                      # payload: layer, id (optional)
    FEATURE_UNPINNED = 'feature_unpinned'                  # payload: layer, id


class StateSlice(Enum):
    """Pieces of controller state a widget can depend on."""
    DATA = 'data'
    TIME = 'time'
    PLAYBACK = 'playback'
    SELECTION = 'selection'
    PINS = 'pins'


ALL_SLICES = frozenset(StateSlice)


def freeze(value: Any) -> Any:
    """
    Recursively convert dicts to read-only mappings and lists to tuples.

    Already-frozen mappings are returned as-is.
    """
    if isinstance(value, MappingProxyType):
        return value
    if isinstance(value, Mapping):
        return MappingProxyType({key: freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(item) for item in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(freeze(item) for item in value)
    return value


def thaw(value: Any) -> Any:
    """Inverse of freeze, for handing data to libraries that want plain dicts."""
    if isinstance(value, Mapping):
        return {key: thaw(item) for key, item in value.items()}
    if isinstance(value, tuple):
        return [thaw(item) for item in value]
    return value


@dataclass(frozen=True)
class WidgetEvent:
    kind: EventKind
    payload: Mapping[str, Any] = field(default_factory=dict)
    source: str = ''

    def __post_init__(self):
        object.__setattr__(self, 'payload', freeze(dict(self.payload)))


class WidgetEmitter:
    """
    Event sink handed to a widget.

    Only the event kinds the widget declared may be emitted; anything else is
    a programming error and raises ValueError.
    """

    def __init__(self, widget_id: str, allowed: FrozenSet[EventKind], dispatch: Callable[[WidgetEvent], None]):
        self.widget_id = widget_id
        self.allowed = frozenset(allowed)
        self._dispatch = dispatch

    def __call__(self, kind: EventKind, **payload) -> None:
        if kind not in self.allowed:
            raise ValueError(f"Widget '{self.widget_id}' may not emit {kind.name}")
        self._dispatch(WidgetEvent(kind, payload, source=self.widget_id))


@dataclass
class WidgetBinding:
    widget_id: str
    depends_on: FrozenSet[StateSlice]
    builder: Callable[[Any], Mapping]
    render: Callable[[Mapping], None]
    last_config: Optional[Mapping] = None
    push_count: int = 0


class SyncHub:
    """Registry of attached widgets and the push side of the protocol."""

    def __init__(self, dispatch: Callable[[WidgetEvent], None]):
        self._dispatch = dispatch
        self._bindings: Dict[str, WidgetBinding] = {}

    def emitter(self, widget_id: str, emits: Iterable[EventKind]) -> WidgetEmitter:
        return WidgetEmitter(widget_id, frozenset(emits), self._dispatch)

    def attach(
        self,
        widget_id: str,
        depends_on: Iterable[StateSlice],
        builder: Callable[[Any], Mapping],
        render: Callable[[Mapping], None],
        state: Any,
    ) -> WidgetBinding:
        """Register a widget and push its first config."""
        if widget_id in self._bindings:
            raise ValueError(f"Widget '{widget_id}' is already attached")
        binding = WidgetBinding(widget_id, frozenset(depends_on), builder, render)
        self._bindings[widget_id] = binding
        self._push(binding, state)
        return binding

    def detach(self, widget_id: str) -> bool:
        return self._bindings.pop(widget_id, None) is not None

    def detach_all(self) -> None:
        self._bindings.clear()

    def binding(self, widget_id: str) -> Optional[WidgetBinding]:
        return self._bindings.get(widget_id)

    @property
    def widget_ids(self) -> List[str]:
        return list(self._bindings)

    def publish(self, changed: Iterable[StateSlice], state: Any) -> List[str]:
        """
        Re-push every widget that depends on a changed slice.

        Returns:
            Ids of the widgets that were pushed, in attach order
        """
        changed = frozenset(changed)
        if not changed:
            return []
        pushed = []
        for binding in list(self._bindings.values()):
            if binding.depends_on & changed:
                self._push(binding, state)
                pushed.append(binding.widget_id)
        return pushed

    def _push(self, binding: WidgetBinding, state: Any) -> None:
        config = binding.builder(state)
        binding.last_config = config
        binding.push_count += 1
        binding.render(config)
