"""Approval store backed by the ``platform_settings`` key/value table."""

from typing import Any, Dict, Optional

from sqlalchemy.orm import sessionmaker

from database import get_db_session
from domain.governance.ports import ApprovalRecord, ApprovalStorePort
from models.platform_setting import PlatformSetting


class PlatformSettingsApprovalStore(ApprovalStorePort):
    """Read and write approval records as JSON values in ``platform_settings``.

    Operators approve a paused retention job by setting ``resume_approved`` to
    true on the stored value while keeping its ``resume_token`` unchanged.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def find_by_key(self, key: str) -> Optional[ApprovalRecord]:
        with get_db_session(self.session_factory) as session:
            setting = session.get(PlatformSetting, key)
            if setting is None:
                return None
            return ApprovalRecord(key=setting.key, value=dict(setting.value or {}))

    def upsert(self, key: str, value: Dict[str, Any]) -> ApprovalRecord:
        with get_db_session(self.session_factory) as session:
            setting = session.get(PlatformSetting, key)
            if setting is None:
                setting = PlatformSetting(key=key, value=dict(value))
                session.add(setting)
            else:
                setting.value = dict(value)
        return ApprovalRecord(key=key, value=dict(value))
