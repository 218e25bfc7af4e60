"""
Tests for AgentRegistry registration and selection.
"""
import pytest

from automation_hub.agents import AgentRegistry
from automation_hub.errors import DispatchError
from automation_hub.models import AgentInfo


def agent(agent_id, platform="ios", device_name=None, status="idle"):
    return AgentInfo(id=agent_id, platform=platform, device_name=device_name or agent_id, status=status)


class TestRegister:

    def test_duplicate_id_evicts_previous_connection(self):
        registry = AgentRegistry()
        registry.register("conn-1", agent("a"))
        result = registry.register("conn-2", agent("a"))

        assert result.evicted_connection_id == "conn-1"
        assert "conn-1" not in registry
        assert registry.connection_for("a") == "conn-2"
        assert len(registry) == 1

    def test_same_connection_reregister_is_not_eviction(self):
        registry = AgentRegistry()
        registry.register("conn-1", agent("a"))
        result = registry.register("conn-1", agent("a", status="busy"))
        assert result.evicted_connection_id is None
        assert registry.get("conn-1").status == "busy"

    def test_device_name_collision_gets_suffix(self):
        registry = AgentRegistry()
        registry.register("conn-1", agent("a", device_name="Pixel"))
        second = registry.register("conn-2", agent("b", device_name="Pixel"))
        third = registry.register("conn-3", agent("c", device_name="Pixel"))

        assert second.info.device_name == "Pixel (1)"
        assert third.info.device_name == "Pixel (2)"

    def test_unregister_keeps_newer_mapping(self):
        registry = AgentRegistry()
        registry.register("conn-1", agent("a"))
        registry.register("conn-2", agent("a"))
        assert registry.unregister("conn-1") is None
        assert registry.connection_for("a") == "conn-2"


class TestSelect:

    def test_prefers_first_idle_matching_platform(self):
        registry = AgentRegistry()
        registry.register("conn-1", agent("busy-ios", status="busy"))
        registry.register("conn-2", agent("droid", platform="android"))
        registry.register("conn-3", agent("idle-ios"))

        connection_id, info = registry.select("ios")
        assert (connection_id, info.id) == ("conn-3", "idle-ios")

    def test_falls_back_to_busy_agent(self):
        registry = AgentRegistry()
        registry.register("conn-1", agent("busy-ios", status="busy"))
        assert registry.select("ios")[1].id == "busy-ios"

    def test_no_matching_platform(self):
        registry = AgentRegistry()
        registry.register("conn-1", agent("ios-only"))
        with pytest.raises(DispatchError, match="No available agent for platform: android"):
            registry.select("android")

    def test_target_must_match_platform(self):
        registry = AgentRegistry()
        registry.register("conn-1", agent("a", platform="android"))
        registry.register("conn-2", agent("b"))

        assert registry.select("ios", "b")[0] == "conn-2"
        with pytest.raises(DispatchError, match="Target agent not found or not connected: a"):
            registry.select("ios", "a")

    def test_target_never_falls_back(self):
        registry = AgentRegistry()
        registry.register("conn-1", agent("a"))
        with pytest.raises(DispatchError):
            registry.select("ios", "ghost")

    def test_set_status(self):
        registry = AgentRegistry()
        registry.register("conn-1", agent("a"))
        registry.register("conn-2", agent("b"))
        registry.set_status("conn-1", "busy")
        assert registry.select("ios")[1].id == "b"
        assert registry.set_status("conn-9", "busy") is None
