"""Append-only action history for mutations."""

import logging
from typing import Any, Dict, Optional

from tracker.core.classifier import is_planned_name
from tracker.core.data_source import DataSource
from tracker.core.store import ActionHistory, ActionType, EntityType

logger = logging.getLogger(__name__)


class ActionLogger:
    """
    Writes ActionHistory records through a data source.

    Logging is a side effect of a mutation that already succeeded, so a
    failed write is reported in the log and never propagated to the caller.
    """

    def __init__(self, source: DataSource):
        self.source = source

    def log(
        self,
        action_type: ActionType,
        entity_type: EntityType,
        entity_id: str,
        entity_name: str,
        details: Optional[Dict[str, Any]] = None,
        performed_by: Optional[str] = None,
    ) -> Optional[ActionHistory]:
        record = ActionHistory(
            action_type=action_type,
            entity_type=entity_type,
            entity_id=entity_id,
            entity_name=entity_name,
            details=details or {},
            performed_by=performed_by,
        )
        try:
            self.source.insert_action(record)
        except Exception as e:
            logger.error(f"Failed to log {action_type} {entity_type} {entity_id}: {e}")
            return None
        logger.debug(f"Logged {action_type} {entity_type} {entity_id} ({entity_name})")
        return record

    def should_log_subtask(self, subtask_name: str) -> bool:
        """Subtask creation is audited only for PLANNED placeholders."""
        return is_planned_name(subtask_name)

    def should_log_sub_subtask(self, parent_subtask_name: str) -> bool:
        """Sub-subtask creation is audited only under a PLANNED subtask."""
        return is_planned_name(parent_subtask_name)
