from mira.models.analytics_snapshot import AnalyticsSnapshotRecord
from mira.models.dedup_entry import DedupEntry
from mira.models.forward_ticket import ForwardTicketRecord
from mira.models.user_state import UserStateRecord

__all__ = [
    "DedupEntry",
    "UserStateRecord",
    "ForwardTicketRecord",
    "AnalyticsSnapshotRecord",
]
