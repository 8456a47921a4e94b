"""ORM model for vulnerabilities held by the embedded store."""

from sqlalchemy import JSON, Column, Integer, String

from vulnstream.models.base import Base


class VulnerabilityRow(Base):
    """
    One canonical Vulnerability keyed by its id (last write wins on duplicate ids).

    The full canonical record lives in `document`; severity, published and status
    are copied into indexed columns for secondary lookups. `seq` records first
    insertion order and is kept when a duplicate id overwrites the row.
    """

    __tablename__ = "vulnerabilities"

    id = Column(String(512), primary_key=True)
    seq = Column(Integer, nullable=False, index=True)
    severity = Column(String(16), nullable=False, index=True)
    published = Column(String(64), nullable=True, index=True)
    status = Column(String(255), nullable=True, index=True)
    document = Column(JSON, nullable=False)
