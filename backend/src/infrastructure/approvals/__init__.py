"""Approval store adapters."""

from .settings_store import PlatformSettingsApprovalStore

__all__ = ["PlatformSettingsApprovalStore"]
