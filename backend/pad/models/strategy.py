"""Discovery strategy (search query template) with usage counters."""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from pad.database import Base, utcnow


class DiscoveryStrategy(Base):
    __tablename__ = "discovery_strategies"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    platform: Mapped[str | None] = mapped_column(String(30))
    country: Mapped[str | None] = mapped_column(String(2))
    query_template: Mapped[str | None] = mapped_column(Text)
    total_uses: Mapped[int] = mapped_column(Integer, default=0)
    successful_discoveries: Mapped[int] = mapped_column(Integer, default=0)
    false_positives: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    last_used: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    @property
    def success_rate(self) -> float:
        reviewed = self.successful_discoveries + self.false_positives
        if not reviewed:
            return 0.0
        return round(self.successful_discoveries / reviewed * 100, 1)
