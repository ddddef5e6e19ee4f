"""Tests for immutable configs, emitters and slice-based re-pushes."""
from dataclasses import MISSING, fields
from types import SimpleNamespace

import pytest

from overlay_dashboard.utils.sync import (
    ALL_SLICES,
    EventKind,
    StateSlice,
    SyncHub,
    WidgetEvent,
    freeze,
    thaw,
)


class TestFreeze:
    def test_nested_structures(self):
        frozen = freeze({'a': [1, {'b': 2}], 'c': {3}})
        assert frozen['a'] == (1, {'b': 2})
        assert frozen['c'] == frozenset({3})
        with pytest.raises(TypeError):
            frozen['a'][1]['b'] = 5
        with pytest.raises(TypeError):
            frozen['new'] = 1

    def test_already_frozen_is_reused(self):
        frozen = freeze({'a': 1})
        assert freeze(frozen) is frozen

    def test_thaw(self):
        assert thaw(freeze({'a': [1, {'b': (2,)}]})) == {'a': [1, {'b': [2]}]}


class TestWidgetEvent:
    def test_payload_is_frozen_copy(self):
        payload = {'layer': 'Sites', 'id': 'f1'}
        event = WidgetEvent(EventKind.FEATURE_CLICKED, payload)
        payload['id'] = 'f2'
        assert event.payload['id'] == 'f1'
        with pytest.raises(TypeError):
            event.payload['id'] = 'f3'

    def test_default_payload(self):
        assert dict(WidgetEvent(EventKind.SELECTION_CLEARED).payload) == {}

    def test_default_payload_is_read_only_and_per_event(self):
        first = WidgetEvent(EventKind.SELECTION_CLEARED)
        second = WidgetEvent(EventKind.SELECTION_CLEARED, source='sidebar')
        with pytest.raises(TypeError):
            first.payload['layer'] = 'Sites'
        assert first == WidgetEvent(EventKind.SELECTION_CLEARED)
        assert first.payload is not second.payload

    def test_payload_field_uses_factory(self):
        payload_field = {f.name: f for f in fields(WidgetEvent)}['payload']
        assert payload_field.default_factory is dict
        assert payload_field.default is MISSING


@pytest.fixture
def events():
    return []


@pytest.fixture
def hub(events):
    return SyncHub(events.append)


def attach(hub, widget_id, depends_on, rendered):
    return hub.attach(
        widget_id,
        depends_on,
        lambda state: freeze({'widget': widget_id, 'version': state.version}),
        lambda config: rendered.append((widget_id, config['version'])),
        SimpleNamespace(version=0),
    )


class TestEmitter:
    def test_declared_kind_is_dispatched(self, hub, events):
        emit = hub.emitter('TimeControl-0', {EventKind.TIME_CHANGED})
        emit(EventKind.TIME_CHANGED, index=3)
        assert events == [WidgetEvent(EventKind.TIME_CHANGED, {'index': 3}, source='TimeControl-0')]

    def test_undeclared_kind_raises(self, hub, events):
        emit = hub.emitter('Legend-1', set())
        with pytest.raises(ValueError, match='Legend-1'):
            emit(EventKind.FEATURE_CLICKED, layer='Sites', id='f1')
        assert events == []


class TestSyncHub:
    """Widgets are re-pushed only when a slice they read changes."""

    def test_attach_pushes_first_config(self, hub):
        rendered = []
        binding = attach(hub, 'a', {StateSlice.TIME}, rendered)
        assert rendered == [('a', 0)]
        assert binding.push_count == 1
        assert binding.last_config['widget'] == 'a'

    def test_duplicate_attach(self, hub):
        attach(hub, 'a', {StateSlice.TIME}, [])
        with pytest.raises(ValueError):
            attach(hub, 'a', {StateSlice.PINS}, [])

    def test_publish_only_to_dependents(self, hub):
        rendered = []
        attach(hub, 'time', {StateSlice.TIME, StateSlice.DATA}, rendered)
        attach(hub, 'pins', {StateSlice.PINS}, rendered)
        rendered.clear()

        pushed = hub.publish({StateSlice.TIME}, SimpleNamespace(version=1))
        assert pushed == ['time']
        assert rendered == [('time', 1)]

    def test_publish_all(self, hub):
        rendered = []
        attach(hub, 'time', {StateSlice.TIME}, rendered)
        attach(hub, 'pins', {StateSlice.PINS}, rendered)
        assert hub.publish(ALL_SLICES, SimpleNamespace(version=2)) == ['time', 'pins']

    def test_publish_nothing(self, hub):
        rendered = []
        attach(hub, 'time', {StateSlice.TIME}, rendered)
        assert hub.publish(set(), SimpleNamespace(version=3)) == []
        assert rendered == [('time', 0)]

    def test_detach(self, hub):
        attach(hub, 'a', {StateSlice.TIME}, [])
        assert hub.detach('a')
        assert not hub.detach('a')
        assert hub.widget_ids == []
