"""Adapters layer for the offline lookup core.

This module contains the adapters that interface with files, the remote
validation service and the host platform. Adapters implement Port interfaces
defined in the domain layer.
"""
