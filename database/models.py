"""Signage DB models: raw feeds, collapsed sessions and the star schema. (SQLite/PostgreSQL 호환)

Attribute names match column names so bulk inserts can pass plain dicts to
``insert(Model.__table__)``.
"""

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class _PlayerEventColumns:
    """Columns shared by the archived player feed and its staging table."""

    id = Column(Integer, primary_key=True)
    campaign_id = Column(String(100), nullable=False, default="")
    date = Column(DateTime)
    action = Column(String(30), nullable=False, default="")
    campaign_session_id = Column(String(100), nullable=False, default="")
    content_id = Column(String(100), nullable=False, default="")
    content_session_id = Column(String(100), default="")
    content_title = Column(Text, default="")
    device_id = Column(String(100), default="")
    duration_second = Column(Float, default=0.0)
    inventory_id = Column(String(100), default="")
    iso_local_time = Column(DateTime)
    iso_time = Column(DateTime, nullable=False)
    player_version = Column(String(50), default="")
    pricing_rule = Column(String(100), default="")
    content_duration = Column(Float, default=0.0)
    content_selection = Column(String(100), default="")
    content_version = Column(Integer, default=0)
    elapsed_second = Column(Float, default=0.0)
    playlist_created_time = Column(DateTime)
    sequence_id = Column(String(100), nullable=False, default="")
    advertiser_id = Column(String(100))
    iso_time_date = Column(DateTime)
    part_date = Column(DateTime)


# ─────────────────────────────────────────────
# 1. 플레이어 이벤트 원본 (full import archive)
# ─────────────────────────────────────────────
class PlayerEvent(_PlayerEventColumns, Base):
    __tablename__ = "player_history"

    __table_args__ = (
        UniqueConstraint(
            "campaign_session_id", "action", "iso_time", "content_id", "sequence_id",
            name="uq_player_history_event",
        ),
        Index("ix_player_history_session", "campaign_session_id"),
        Index("ix_player_history_action_time", "action", "iso_time"),
        Index("ix_player_history_campaign", "campaign_id"),
    )


# ─────────────────────────────────────────────
# 1-1. 플레이어 이벤트 스테이징 (skip-raw-archival import)
#      세션 집계 후 비워진다.
# ─────────────────────────────────────────────
class PlayerEventStaging(_PlayerEventColumns, Base):
    __tablename__ = "player_history_staging"

    __table_args__ = (
        UniqueConstraint(
            "campaign_session_id", "action", "iso_time", "content_id", "sequence_id",
            name="uq_player_history_staging_event",
        ),
        Index("ix_player_history_staging_session", "campaign_session_id"),
    )


# ─────────────────────────────────────────────
# 2. 콘텐츠 노출(관객 감지) 원본
# ─────────────────────────────────────────────
class ContentPerformance(Base):
    __tablename__ = "raw_content_performance"

    id = Column(Integer, primary_key=True)
    content_id = Column(String(100), nullable=False, default="")
    title = Column(Text, default="")
    audience_id = Column(String(100), nullable=False, default="")
    age = Column(String(20), default="")
    gender = Column(String(20), default="")
    play_at = Column(DateTime, nullable=False)
    attention_sec = Column(Float, default=0.0)
    is_attention = Column(Boolean, default=False)
    is_entrance = Column(Boolean, default=False)
    content_group = Column(String(200), default="")

    __table_args__ = (
        UniqueConstraint("content_id", "audience_id", "play_at", name="uq_content_performance_key"),
        Index("ix_content_performance_match", "content_id", "play_at"),
        Index("ix_content_performance_play_at", "play_at"),
        Index("ix_content_performance_audience", "audience_id"),
    )


# ─────────────────────────────────────────────
# 3. 세션 (campaign_session_id 단위로 집계된 플레이어 이벤트)
# ─────────────────────────────────────────────
class PlayerSession(Base):
    __tablename__ = "raw_player_history"

    id = Column(Integer, primary_key=True)
    campaign_session_id = Column(String(100), nullable=False, unique=True)
    campaign_id = Column(String(100), default="")
    start_at = Column(DateTime)                  # 가장 이른 PLAY_START
    end_at = Column(DateTime)                    # 선택된 PLAY_END
    duration_second = Column(Float)
    elapsed_second = Column(Float)
    content_id = Column(String(100), default="")
    content_session_id = Column(String(100), default="")
    content_title = Column(Text, default="")
    device_id = Column(String(100), default="")
    inventory_id = Column(String(100), default="")
    player_version = Column(String(50), default="")
    pricing_rule = Column(String(100), default="")
    content_duration = Column(Float)
    content_selection = Column(String(100), default="")
    content_version = Column(Integer)
    playlist_created_time = Column(DateTime)
    sequence_id = Column(String(100), default="")
    advertiser_id = Column(String(100))
    content_performance_ids = Column(JSON, nullable=False, default=list)  # 연결된 raw_content_performance ID 목록

    __table_args__ = (
        Index("ix_raw_player_history_match", "content_id", "start_at"),
    )


# ─────────────────────────────────────────────
# 4. 캠페인
# ─────────────────────────────────────────────
class Campaign(Base):
    __tablename__ = "campaign"

    id = Column(Integer, primary_key=True)
    campaign_id = Column(String(100), nullable=False, unique=True)
    content_id = Column(String(100), default="")
    content_title = Column(Text, default="")
    created_at = Column(DateTime, default=datetime.utcnow)


# ─────────────────────────────────────────────
# 5. 고객 (audience_id 단위)
# ─────────────────────────────────────────────
class Customer(Base):
    __tablename__ = "customer"

    id = Column(Integer, primary_key=True)
    customer_id = Column(String(100), nullable=False, unique=True)
    gender = Column(String(20), nullable=False, default="unknown")
    age = Column(String(20), nullable=False, default="unknown")
    total_watch_time = Column(Float, default=0.0)


# ─────────────────────────────────────────────
# 6. 이벤트 (캠페인 × 고객 × 시각)
# ─────────────────────────────────────────────
class Event(Base):
    __tablename__ = "event"

    id = Column(Integer, primary_key=True)
    campaign_id = Column(String(100), ForeignKey("campaign.campaign_id"), nullable=False)
    customer_id = Column(String(100), ForeignKey("customer.customer_id"), nullable=False)
    play_at = Column(DateTime, nullable=False)
    is_attention = Column(Boolean, default=False)
    is_entrance = Column(Boolean, default=False)
    attention_sec = Column(Float, default=0.0)
    content_group = Column(String(200), default="")

    __table_args__ = (
        UniqueConstraint("campaign_id", "customer_id", "play_at", name="uq_event_triple"),
        Index("ix_event_campaign", "campaign_id"),
        Index("ix_event_customer", "customer_id"),
    )


# ─────────────────────────────────────────────
# 7. 캠페인 성과 요약
# ─────────────────────────────────────────────
class PerformanceSummary(Base):
    __tablename__ = "performance_summary"

    id = Column(Integer, primary_key=True)
    campaign_id = Column(String(100), ForeignKey("campaign.campaign_id"), nullable=False, unique=True)
    content_id = Column(String(100), default="")
    title = Column(Text, default="")
    content_group = Column(String(200), default="")
    impressions = Column(Integer, nullable=False, default=0)
    attention_rate = Column(Float, nullable=False, default=0.0)
    entrance_rate = Column(Float, nullable=False, default=0.0)
    grade = Column(String(2), nullable=False, default="D")

    __table_args__ = (
        Index("ix_performance_summary_entrance", "entrance_rate"),
    )


# ─────────────────────────────────────────────
# 8. 캠페인 상세 (시청자/분포)
# ─────────────────────────────────────────────
class CampaignDetail(Base):
    __tablename__ = "campaign_detail"

    id = Column(Integer, primary_key=True)
    campaign_id = Column(String(100), ForeignKey("campaign.campaign_id"), nullable=False, unique=True)
    total_viewers = Column(Integer, default=0)
    attention_count = Column(Integer, default=0)
    entrance_count = Column(Integer, default=0)
    total_watch_time = Column(Float, default=0.0)
    age_distribution = Column(JSON, default=list)     # [{"bucket": "20-29", "count": 3}]
    gender_distribution = Column(JSON, default=list)  # [{"bucket": "F", "count": 2}]
