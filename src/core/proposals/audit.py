import uuid
from datetime import datetime
from typing import Any, Optional

from src.core.proposals.models import TimelineEventRecord, TimelineEventType
from src.core.proposals.repository import ProposalRepository


class AuditRecorder:
    def __init__(self, *, repository: ProposalRepository) -> None:
        self._repository = repository

    def record_once(
        self,
        *,
        tenant_id: str,
        event_type: TimelineEventType,
        proposal_id: str,
        message: str,
        occurred_at: datetime,
        meta: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Insert a milestone unless one exists for this tenant, type and proposal.

        The lookup avoids needless inserts; the repository insert is conflict-tolerant, so
        two recorders racing past the lookup still leave a single row.
        """
        existing = self._repository.find_timeline_event(
            tenant_id=tenant_id, event_type=event_type, proposal_id=proposal_id
        )
        if existing is not None:
            return False
        return self._repository.append_timeline_event(
            TimelineEventRecord(
                event_id=f"tle_{uuid.uuid4().hex[:12]}",
                tenant_id=tenant_id,
                event_type=event_type,
                actor_type="system",
                message=message,
                occurred_at=occurred_at,
                proposal_id=proposal_id,
                meta={"proposal_id": proposal_id, **(meta or {})},
            )
        )
