import enum

from sqlalchemy import (
    Column, Integer, String, Boolean,
    DateTime, ForeignKey, Index, func,
)
from sqlalchemy.orm import relationship

from battle_tracker.database import Base


class Side(str, enum.Enum):
    ATTACKER = "ATTACKER"
    DEFENDER = "DEFENDER"
    UNKNOWN = "UNKNOWN"


class FighterType(str, enum.Enum):
    PLAYER = "PLAYER"
    AIRCRAFT = "AIRCRAFT"


class Battle(Base):
    __tablename__ = "battles"

    id              = Column(Integer, primary_key=True, autoincrement=False)  # remote war id
    attacker_id     = Column(Integer, nullable=False)
    attacker_name   = Column(String(255), nullable=True)
    attacker_avatar = Column(String(500), nullable=True)
    defender_id     = Column(Integer, nullable=False)
    defender_name   = Column(String(255), nullable=True)
    defender_avatar = Column(String(500), nullable=True)
    region_id       = Column(Integer, nullable=True)
    region_name     = Column(String(255), nullable=True)
    attackers_score = Column(Integer, nullable=True)
    defenders_score = Column(Integer, nullable=True)
    is_revolution   = Column(Boolean, nullable=False, default=False)
    fetched_at      = Column(DateTime(timezone=True), server_default=func.now())

    rounds = relationship(
        "Round",
        back_populates="battle",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_battles_fetched", "fetched_at"),
    )


class Round(Base):
    __tablename__ = "rounds"

    id               = Column(Integer, primary_key=True, autoincrement=False)  # remote round id
    battle_id        = Column(
        Integer, ForeignKey("battles.id", ondelete="CASCADE"), nullable=False
    )
    end_date         = Column(DateTime(timezone=True), nullable=True)
    attackers_score  = Column(Integer, nullable=True)
    defenders_score  = Column(Integer, nullable=True)
    attackers_points = Column(Integer, nullable=True)
    defenders_points = Column(Integer, nullable=True)
    fetched_at       = Column(DateTime(timezone=True), server_default=func.now())

    battle = relationship("Battle", back_populates="rounds")
    hits = relationship(
        "Hit",
        back_populates="round",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_rounds_battle", "battle_id"),
    )


class Hit(Base):
    __tablename__ = "hits"

    id           = Column(Integer, primary_key=True)
    round_id     = Column(
        Integer, ForeignKey("rounds.id", ondelete="CASCADE"), nullable=False
    )
    fighter_id   = Column(Integer, nullable=False)
    fighter_type = Column(String(10), nullable=False, default=FighterType.PLAYER.value)
    damage       = Column(Integer, nullable=False, default=0)
    side         = Column(String(10), nullable=False, default=Side.UNKNOWN.value)
    item_id      = Column(Integer, nullable=True)   # null = bare hands
    created_at   = Column(DateTime(timezone=True), nullable=True)

    round = relationship("Round", back_populates="hits")

    __table_args__ = (
        Index("ix_hits_round", "round_id"),
        Index("ix_hits_fighter", "fighter_id"),
    )


class Player(Base):
    """Soft cache of account names and avatars, refreshed at most once a day."""
    __tablename__ = "players"

    id         = Column(Integer, primary_key=True, autoincrement=False)  # remote account id
    name       = Column(String(255), nullable=True)
    avatar     = Column(String(500), nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_players_updated", "updated_at"),
    )
