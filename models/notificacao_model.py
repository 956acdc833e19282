# models/notificacao_model.py
from pydantic import BaseModel, Field
from enum import Enum
from datetime import datetime, timezone
from typing import Any, Dict, Optional

class PrioridadeNotificacao(str, Enum):
    low = "LOW"
    medium = "MEDIUM"
    high = "HIGH"
    critical = "CRITICAL"

class StatusNotificacao(str, Enum):
    unread = "unread"
    read = "read"
    dismissed = "dismissed"

class NotificationData(BaseModel):
    id: str
    user_id: str
    title: str
    message: str
    type: str = "info"
    category: str = "geral"
    priority: PrioridadeNotificacao = PrioridadeNotificacao.medium
    status: StatusNotificacao = StatusNotificacao.unread
    source: str = "sistema"
    related_entity_type: Optional[str] = None
    related_entity_id: Optional[str] = None
    action_url: Optional[str] = None
    action_label: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    # True quando veio da tabela "notifications" e o status precisa ser gravado de volta
    persistida: bool = False

    @property
    def lida(self) -> bool:
        return self.status != StatusNotificacao.unread
