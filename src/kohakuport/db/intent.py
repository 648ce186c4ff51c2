"""
Tunnel intent database model for KohakuPort.

One row per container that should be tunneled. The row is the durable half
of the desired state; the in-memory half lives in IntentStore.
"""

import datetime

import peewee

from kohakuport.db.base import BaseModel
from kohakuport.models.enums import Protocol
from kohakuport.models.tunnel import TunnelIntent


class IntentRecord(BaseModel):
    """
    Persisted tunnel intent.

    Attributes:
        container_id: Container id or name the user asked for (primary key).
        target_port: Port to expose.
        protocol_override: Forced protocol value, NULL means detect.
        url: Reserved public URL, NULL means a random one.
    """

    container_id = peewee.CharField(primary_key=True)
    target_port = peewee.IntegerField()
    protocol_override = peewee.CharField(null=True)
    url = peewee.CharField(null=True)
    pooling_enabled = peewee.BooleanField(default=False)
    description = peewee.TextField(default="")
    metadata = peewee.TextField(default="")
    created_at = peewee.DateTimeField(default=datetime.datetime.now)

    class Meta:
        table_name = "tunnel_intents"

    def to_intent(self) -> TunnelIntent:
        """Convert the row to the domain dataclass."""
        return TunnelIntent(
            container_id=self.container_id,
            target_port=self.target_port,
            protocol_override=(
                Protocol(self.protocol_override) if self.protocol_override else None
            ),
            url=self.url,
            pooling_enabled=bool(self.pooling_enabled),
            description=self.description or "",
            metadata=self.metadata or "",
            created_at=self.created_at,
        )

    @classmethod
    def upsert(cls, intent: TunnelIntent) -> None:
        """Insert or replace the row for an intent."""
        cls.replace(
            container_id=intent.container_id,
            target_port=intent.target_port,
            protocol_override=(
                intent.protocol_override.value if intent.protocol_override else None
            ),
            url=intent.url,
            pooling_enabled=intent.pooling_enabled,
            description=intent.description,
            metadata=intent.metadata,
            created_at=intent.created_at,
        ).execute()
