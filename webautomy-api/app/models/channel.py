import uuid

from sqlalchemy import Column, ForeignKey, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import relationship

from app.database import Base


class Channel(Base):
    __tablename__ = "channels"
    __table_args__ = (UniqueConstraint("org_id", "phone_number_id", name="channels_org_phone_number_key"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=False)
    platform = Column(Text, nullable=False, default="whatsapp")
    phone_number_id = Column(Text, nullable=False, index=True)
    waba_id = Column(Text)
    access_token = Column(Text)
    status = Column(Text, nullable=False, default="connected")  # connected, disconnected
    display_name = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True))
    updated_at = Column(TIMESTAMP(timezone=True))

    organization = relationship("Organization", back_populates="channels")

    @property
    def is_connected(self) -> bool:
        return self.status == "connected"
