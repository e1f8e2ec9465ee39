# models.py - Database models for the interview room service
# Rooms, participants, settings and invitations are stored as keyed JSON
# documents grouped into named collections:
# - rooms[room_id]
# - rooms/participants[room_id_user_id]
# - rooms/settings[room_id]
# - invitations[token], invitations/codes[join_code]
# - rooms/waiting[participant_id], guests[participant_id]
# - audit_log[event_id]

import uuid
from datetime import datetime, timezone
from sqlalchemy import (
    Column, String, DateTime, JSON, Integer, Index, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


# ============================================================
# KEYED RECORD STORE
# ============================================================

class StoredRecord(Base):
    __tablename__ = "stored_records"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    collection = Column(String(64), nullable=False)
    key = Column(String(160), nullable=False)
    document = Column(JSON, nullable=False, default=dict)
    # Bumped on every write; used for compare-and-swap updates
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("collection", "key", name="uq_stored_records_collection_key"),
        Index("idx_stored_records_collection_seq", "collection", "seq"),
    )
