from sqlalchemy import Column, String, Integer, ForeignKey, UniqueConstraint, Enum
from sqlalchemy.orm import relationship
import enum

from sitecraft.platform.db.base import BaseModel


class AssetKind(enum.Enum):
    """Artifacts captured by the fetcher"""
    html = "html"
    screenshot_desktop = "screenshot_desktop"
    screenshot_mobile = "screenshot_mobile"
    metadata = "metadata"
    robots_txt = "robots_txt"
    sitemap_xml = "sitemap_xml"


class Asset(BaseModel):
    """A fetched artifact for one analysis, stored once and read by every worker."""
    __tablename__ = "analysis_assets"

    analysis_id = Column(String, ForeignKey("analyses.id", ondelete="CASCADE"), nullable=False, index=True)

    kind = Column(Enum(AssetKind, name="asset_kind"), nullable=False)
    locator = Column(String(1024), nullable=False)
    content_type = Column(String(255), nullable=True)
    size_bytes = Column(Integer, nullable=True)

    analysis = relationship("Analysis", back_populates="assets", lazy="select")

    __table_args__ = (
        UniqueConstraint('analysis_id', 'kind', name='uq_analysis_assets_analysis_kind'),
    )
