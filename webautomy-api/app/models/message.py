import uuid

from sqlalchemy import Column, ForeignKey, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from app.database import Base


class Message(Base):
    __tablename__ = "messages"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=False, index=True)
    contact_id = Column(UUID(as_uuid=True), ForeignKey("contacts.id"))
    channel_id = Column(UUID(as_uuid=True), ForeignKey("channels.id"))
    direction = Column(Text, nullable=False)  # inbound, outbound
    content = Column(Text)
    whatsapp_message_id = Column(Text, index=True)
    status = Column(Text, nullable=False)  # received, sent, failed
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
