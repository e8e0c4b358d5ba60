"""
Database Models for crawlscope

traffic_events holds one row per classified request; ingestion_cursors is the
append-only log of successful ingestion runs.
"""

from datetime import datetime, timezone

from crawlscope.extensions import db


def _utcnow():
    return datetime.now(timezone.utc)


class TrafficEvent(db.Model):
    """One enriched and classified access log record."""

    __tablename__ = 'traffic_events'

    id = db.Column(db.BigInteger().with_variant(db.Integer, 'sqlite'), primary_key=True)
    timestamp = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    duration = db.Column(db.Float)

    # Client
    client_ip = db.Column(db.String(64), nullable=False, index=True)
    subnet = db.Column(db.String(64), index=True)
    cf_ray = db.Column(db.String(64))

    # Request
    site = db.Column(db.String(255), nullable=False, index=True)
    method = db.Column(db.String(12))
    path = db.Column(db.Text, nullable=False)
    query_string = db.Column(db.Text)
    status = db.Column(db.Integer)
    response_size = db.Column(db.BigInteger)
    user_agent = db.Column(db.Text)
    referer = db.Column(db.Text)
    accept_language = db.Column(db.String(255))

    # Geo
    country = db.Column(db.String(8))
    city = db.Column(db.String(120))
    latitude = db.Column(db.Float)
    longitude = db.Column(db.Float)

    # Network origin
    asn = db.Column(db.Integer, index=True)
    asn_org = db.Column(db.String(255))
    datacenter_provider = db.Column(db.String(64), index=True)

    # Signals
    has_sec_fetch_headers = db.Column(db.Boolean, nullable=False, default=False)
    has_client_hints = db.Column(db.Boolean, nullable=False, default=False)
    is_mobile = db.Column(db.Boolean, nullable=False, default=False)
    bot_from_email = db.Column(db.String(255))
    openai_host_hash = db.Column(db.String(255))
    has_cf_worker = db.Column(db.Boolean, nullable=False, default=False)
    cf_worker_domain = db.Column(db.String(255))
    is_exploit_attempt = db.Column(db.Boolean, nullable=False, default=False)

    # Classification
    is_bot = db.Column(db.Boolean, nullable=False)
    category = db.Column(db.String(40), nullable=False, index=True)
    identity_name = db.Column(db.String(120), index=True)
    detection_tier = db.Column(db.SmallInteger)
    reason = db.Column(db.Text)

    headers_json = db.Column(db.JSON)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, server_default=db.func.now())

    __table_args__ = (
        db.Index('ix_traffic_events_site_timestamp', 'site', 'timestamp'),
    )

    def __repr__(self):
        return f"<TrafficEvent {self.timestamp} {self.site}{self.path} {self.category}>"


class IngestionCursor(db.Model):
    """Resume point written after each fully successful ingestion run."""

    __tablename__ = 'ingestion_cursors'

    id = db.Column(db.Integer, primary_key=True)
    last_processed_timestamp = db.Column(db.DateTime(timezone=True), nullable=False)
    last_record_id = db.Column(db.String(64))
    records_processed = db.Column(db.Integer, nullable=False, default=0)
    duration_ms = db.Column(db.Integer)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, index=True)

    def __repr__(self):
        return f"<IngestionCursor {self.last_processed_timestamp} n={self.records_processed}>"
