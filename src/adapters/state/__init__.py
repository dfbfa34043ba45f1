"""Persisted state adapters."""

from src.adapters.state.device_state_store import DeviceStateStore, InMemoryStateStore

__all__ = ["DeviceStateStore", "InMemoryStateStore"]
