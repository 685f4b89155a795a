from sqlalchemy import Column, ForeignKey, Text
from sqlalchemy.dialects.postgresql import UUID

from app.database import Base


class Profile(Base):
    """Supabase auth user -> organization link."""

    __tablename__ = "profiles"

    id = Column(UUID(as_uuid=True), primary_key=True)  # auth.users.id
    org_id = Column(UUID(as_uuid=True), ForeignKey("organizations.id"), nullable=True)
    role = Column(Text, nullable=False, default="member")  # owner, admin, member
