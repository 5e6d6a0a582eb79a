from typing import Dict, Optional
from xpreview.database import get_db
from xpreview.models import AdminAction
from xpreview.utils.logger import get_logger

logger = get_logger(__name__)

SYSTEM_ACTOR = 'system'


def record_admin_action(db, admin_id, action: str, target_type: str, target_id,
                        details: Dict = None) -> AdminAction:
    """Append an audit row inside the caller's transaction"""
    entry = AdminAction(
        admin_id=str(admin_id),
        action=action,
        target_type=str(target_type)[:50],
        target_id=str(target_id),
        details=details or {}
    )
    db.add(entry)
    db.flush()
    return entry


def log_admin_action(admin_id, action: str, target_type: str, target_id,
                     details: Dict = None) -> Optional[AdminAction]:
    """Best-effort audit write in its own transaction; failures are logged, not raised"""
    try:
        with get_db() as db:
            return record_admin_action(db, admin_id, action, target_type, target_id, details)
    except Exception as e:
        logger.error(f"Failed to write admin action {action} for {target_type} {target_id}: {str(e)}")
        return None
