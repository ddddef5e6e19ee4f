"""Tests for the plugin registry and plugin index parsing."""
import logging

import pytest

from overlay_dashboard.utils.config import PluginPlacement
from overlay_dashboard.utils.plugin_registry import (
    PluginDefinition,
    UnknownPluginError,
    create_plugin_registry,
    parse_plugin_index,
)
from overlay_dashboard.utils.sync import EventKind, StateSlice


@pytest.fixture
def registry():
    return create_plugin_registry()


class TestRegistry:
    def test_builtin_plugins(self, registry):
        assert set(registry.names) == {
            'TimeControl', 'Legend', 'Sidebar', 'SidebarMetadata',
            'SidebarLineChart', 'Longbar', 'LongbarLineChart',
        }

    def test_unknown_name(self, registry):
        with pytest.raises(UnknownPluginError, match='Compass'):
            registry.get('Compass')

    def test_duplicate_registration(self, registry):
        with pytest.raises(ValueError):
            registry.register(PluginDefinition('Legend', frozenset(), frozenset(), lambda *args: {}))

    def test_validate_walks_children(self, registry):
        placement = PluginPlacement('Sidebar', children=(PluginPlacement('SidebarCompass'),))
        with pytest.raises(UnknownPluginError, match='SidebarCompass'):
            registry.validate([placement])

    def test_depends_on_includes_children(self, registry):
        placement = PluginPlacement('Longbar', children=(PluginPlacement('SidebarMetadata'),))
        assert registry.depends_on(placement) == {StateSlice.DATA, StateSlice.PINS, StateSlice.SELECTION}

    def test_declared_events(self, registry):
        assert registry.get('Legend').emits == frozenset()
        assert EventKind.TIME_CHANGED in registry.get('TimeControl').emits
        assert registry.get('Longbar').emits == {EventKind.FEATURE_UNPINNED}

    def test_set_factory(self, registry):
        factory = object()
        registry.set_factory('Legend', factory)
        assert registry.get('Legend').factory is factory
        with pytest.raises(UnknownPluginError):
            registry.set_factory('Compass', factory)


class TestParsePluginIndex:
    def test_entries(self, registry):
        entries = parse_plugin_index({
            'Sidebar': {'tagName': 'vis-main-sidebar', 'path': 'sidebar.js', 'exportName': 'Sidebar'},
            'Legend': {'tagName': 'vis-main-legend', 'path': 'legend.js', 'for': 'map'},
        }, registry)
        assert entries['Sidebar'].export_name == 'Sidebar'
        assert entries['Legend'].applies_to == 'map'

    def test_malformed_entries_skipped(self, caplog):
        with caplog.at_level(logging.WARNING):
            entries = parse_plugin_index({'Broken': {'path': 'x.js'}, 'Odd': 'text'})
        assert entries == {}
        assert 'Broken' in caplog.text

    def test_unregistered_name_kept_with_warning(self, registry, caplog):
        with caplog.at_level(logging.WARNING):
            entries = parse_plugin_index({'Compass': {'tagName': 'x-compass', 'path': 'c.js'}}, registry)
        assert 'Compass' in entries
        assert 'no registered widget' in caplog.text

    def test_empty(self):
        assert parse_plugin_index(None) == {}
