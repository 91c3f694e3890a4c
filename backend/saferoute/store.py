"""
위험 요소 제보 저장소 (SQLAlchemy)
- 생성 / 목록 / ID 조회 / 주변 조회
- 검증 상태 변경, 투표, 유형별 통계
- CSV 일괄 등록 (python -m saferoute.store import <csv>)
"""

import argparse
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import numpy as np
import pandas as pd
from sqlalchemy import Column, DateTime, Float, Integer, String, case, create_engine, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from tqdm import tqdm

from . import geo
from .config import DB_TIMEOUT_SECONDS, SQLALCHEMY_DATABASE_URL
from .errors import NotFoundError, UpstreamUnavailable, ValidationError
from .models import HazardReport, HazardStatus, HazardType, Severity, parse_enum

logger = logging.getLogger(__name__)

Base = declarative_base()

LIST_LIMIT = 1000


class HazardRecord(Base):
    __tablename__ = "hazard_reports"

    id = Column(String, primary_key=True, index=True)
    type = Column(String, index=True, nullable=False)
    latitude = Column(Float, index=True, nullable=False)
    longitude = Column(Float, index=True, nullable=False)
    severity = Column(String, nullable=False, default=Severity.MEDIUM.value)
    status = Column(String, index=True, nullable=False, default=HazardStatus.PENDING.value)
    upvotes = Column(Integer, nullable=False, default=0)
    downvotes = Column(Integer, nullable=False, default=0)
    description = Column(String, default="")
    address = Column(String, default="")
    created_at = Column(DateTime(timezone=True), index=True, nullable=False)
    verified_at = Column(DateTime(timezone=True), nullable=True)

    def to_report(self) -> HazardReport:
        return HazardReport(
            id=self.id,
            type=self.type,
            lat=self.latitude,
            lon=self.longitude,
            severity=self.severity,
            status=self.status,
            created_at=self.created_at,
            upvotes=self.upvotes or 0,
            downvotes=self.downvotes or 0,
            verified_at=self.verified_at,
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SqlHazardStore:
    """SQLAlchemy-backed hazard store; also the bulk source for the hazard index."""

    def __init__(self, database_url: str = SQLALCHEMY_DATABASE_URL, timeout: float = DB_TIMEOUT_SECONDS):
        connect_args = {"check_same_thread": False, "timeout": timeout} if database_url.startswith("sqlite") else {}
        self.engine = create_engine(database_url, connect_args=connect_args)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        Base.metadata.create_all(bind=self.engine)

    def _session(self):
        return self.SessionLocal()

    def _run(self, action: str, fn):
        """DB 오류는 UpstreamUnavailable 로 변환"""
        db = self._session()
        try:
            return fn(db)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Hazard store {action} failed: {e}")
            raise UpstreamUnavailable(f"Hazard store {action} failed") from e
        finally:
            db.close()

    # --- write ---

    def create(self, hazard_type, lat: float, lon: float, severity=Severity.MEDIUM,
               description: str = "", address: str = "", status=HazardStatus.PENDING,
               created_at: Optional[datetime] = None) -> HazardReport:
        lat, lon = geo.validate_coordinate(lat, lon)
        hazard_type = parse_enum(HazardType, hazard_type, "hazard type")
        severity = parse_enum(Severity, severity, "severity")
        status = parse_enum(HazardStatus, status, "status")
        if description and len(description) > 500:
            raise ValidationError("Description cannot exceed 500 characters")
        now = created_at or _utcnow()

        def _create(db):
            record = HazardRecord(
                id=uuid.uuid4().hex,
                type=hazard_type.value,
                latitude=lat,
                longitude=lon,
                severity=severity.value,
                status=status.value,
                upvotes=0,
                downvotes=0,
                description=(description or "").strip(),
                address=(address or "").strip(),
                created_at=now,
                verified_at=now if status == HazardStatus.VERIFIED else None,
            )
            db.add(record)
            db.commit()
            db.refresh(record)
            return record.to_report()

        report = self._run("create", _create)
        logger.info(f"Hazard report created: {report.id} ({report.type.value}, {report.severity.value})")
        return report

    def update_status(self, hazard_id: str, status) -> HazardReport:
        """검증/반려 처리 (외부 검수 단계에서 호출)"""
        status = parse_enum(HazardStatus, status, "status")

        def _update(db):
            record = db.get(HazardRecord, hazard_id)
            if record is None:
                raise NotFoundError(f"Hazard report not found: {hazard_id}")
            record.status = status.value
            record.verified_at = _utcnow() if status == HazardStatus.VERIFIED else None
            db.commit()
            db.refresh(record)
            return record.to_report()

        return self._run("status update", _update)

    def vote(self, hazard_id: str, upvote: bool) -> HazardReport:
        def _vote(db):
            record = db.get(HazardRecord, hazard_id)
            if record is None:
                raise NotFoundError(f"Hazard report not found: {hazard_id}")
            if upvote:
                record.upvotes = (record.upvotes or 0) + 1
            else:
                record.downvotes = (record.downvotes or 0) + 1
            db.commit()
            db.refresh(record)
            return record.to_report()

        return self._run("vote", _vote)

    # --- read ---

    def get(self, hazard_id: str) -> HazardReport:
        def _get(db):
            record = db.get(HazardRecord, hazard_id)
            if record is None:
                raise NotFoundError(f"Hazard report not found: {hazard_id}")
            return record.to_report()

        return self._run("lookup", _get)

    def get_details(self, hazard_id: str) -> dict:
        """Report plus the free-text fields scoring ignores."""
        def _get(db):
            record = db.get(HazardRecord, hazard_id)
            if record is None:
                raise NotFoundError(f"Hazard report not found: {hazard_id}")
            return {"report": record.to_report(), "description": record.description or "",
                    "address": record.address or ""}

        return self._run("lookup", _get)

    def list(self, hazard_type=None, status=None, limit: int = LIST_LIMIT) -> List[HazardReport]:
        def _list(db):
            query = db.query(HazardRecord)
            if hazard_type is not None:
                query = query.filter(HazardRecord.type == parse_enum(HazardType, hazard_type, "hazard type").value)
            if status is not None:
                query = query.filter(HazardRecord.status == parse_enum(HazardStatus, status, "status").value)
            records = query.order_by(HazardRecord.created_at.desc()).limit(limit).all()
            return [r.to_report() for r in records]

        return self._run("list", _list)

    def fetch_all(self) -> List[HazardReport]:
        """인덱스 갱신용 전체 조회 (반려된 제보 제외)"""
        def _fetch(db):
            records = db.query(HazardRecord).filter(HazardRecord.status != HazardStatus.REJECTED.value).all()
            return [r.to_report() for r in records]

        return self._run("bulk read", _fetch)

    def statistics(self) -> dict:
        """전체 제보 수와 유형별 (전체 / 검증 / 대기) 집계"""
        def _stats(db):
            rows = (
                db.query(
                    HazardRecord.type,
                    func.count(HazardRecord.id),
                    func.sum(case((HazardRecord.status == HazardStatus.VERIFIED.value, 1), else_=0)),
                    func.sum(case((HazardRecord.status == HazardStatus.PENDING.value, 1), else_=0)),
                )
                .group_by(HazardRecord.type)
                .order_by(HazardRecord.type)
                .all()
            )
            by_type = [{"type": t, "count": int(count), "verified": int(verified or 0), "pending": int(pending or 0)}
                       for t, count, verified, pending in rows]
            return {"total": sum(s["count"] for s in by_type), "by_type": by_type}

        return self._run("statistics", _stats)

    def find_nearby(self, lat: float, lon: float, radius_km: float, include_pending: bool = True) -> List[HazardReport]:
        """
        반경 내 제보 조회

        Bounding box in SQL narrows the rows; haversine decides membership.
        """
        lat, lon = geo.validate_coordinate(lat, lon)
        if radius_km is None or radius_km < 0:
            raise ValidationError(f"Radius must be non-negative, got {radius_km}")
        radius_m = radius_km * 1000.0

        dlat = np.degrees(radius_m / geo.EARTH_RADIUS_M)
        cos_lat = np.cos(np.radians(lat))
        dlon = 180.0 if cos_lat < 1e-6 or dlat >= 90 else min(180.0, dlat / cos_lat)

        def _nearby(db):
            query = db.query(HazardRecord).filter(
                HazardRecord.latitude >= lat - dlat,
                HazardRecord.latitude <= lat + dlat,
                HazardRecord.status != HazardStatus.REJECTED.value,
            )
            if not include_pending:
                query = query.filter(HazardRecord.status == HazardStatus.VERIFIED.value)
            if dlon < 180.0 and -180.0 <= lon - dlon and lon + dlon <= 180.0:
                query = query.filter(HazardRecord.longitude >= lon - dlon, HazardRecord.longitude <= lon + dlon)
            return [r.to_report() for r in query.all()]

        rows = self._run("nearby query", _nearby)
        found = []
        for report in rows:
            distance = geo.haversine_m(lat, lon, report.lat, report.lon)
            if distance <= radius_m:
                found.append((distance, report))
        found.sort(key=lambda item: (item[0], item[1].id))
        return [report for _, report in found]


# ============================================
# CSV 일괄 등록
# ============================================

LAT_COLUMNS = ["lat", "latitude", "y", "위도"]
LON_COLUMNS = ["lon", "lng", "longitude", "x", "경도"]


def import_hazards_csv(store: SqlHazardStore, filepath, default_status=HazardStatus.PENDING,
                       verbose: bool = True) -> int:
    """
    CSV 제보 일괄 등록

    Required columns: type + a latitude/longitude pair (any of the common
    names). Optional: severity, status, description, address.
    Rows that fail validation are skipped and logged.
    """
    filepath = Path(filepath)
    if not filepath.exists():
        raise FileNotFoundError(f"CSV not found: {filepath}")

    df = pd.read_csv(filepath)
    cols = df.columns.tolist()
    lat_col = next((c for c in LAT_COLUMNS if c in cols), None)
    lon_col = next((c for c in LON_COLUMNS if c in cols), None)
    if not lat_col or not lon_col or "type" not in cols:
        raise ValidationError(f"{filepath.name}: need type and lat/lon columns. Columns: {cols}")

    logger.info(f"{filepath.name}: using columns lat={lat_col}, lon={lon_col}")
    created = 0
    for _, row in tqdm(df.iterrows(), total=len(df), desc="hazards", disable=not verbose):
        if pd.isna(row[lat_col]) or pd.isna(row[lon_col]):
            continue
        try:
            store.create(
                row["type"],
                row[lat_col],
                row[lon_col],
                severity=row["severity"] if "severity" in cols and not pd.isna(row["severity"]) else Severity.MEDIUM,
                status=row["status"] if "status" in cols and not pd.isna(row["status"]) else default_status,
                description=str(row["description"]) if "description" in cols and not pd.isna(row["description"]) else "",
                address=str(row["address"]) if "address" in cols and not pd.isna(row["address"]) else "",
            )
            created += 1
        except ValidationError as e:
            logger.warning(f"Skipping row {row.name}: {e}")
    logger.info(f"{filepath.name}: imported {created} of {len(df)} rows")
    return created


def main(argv=None):
    parser = argparse.ArgumentParser(description="SafeRoute hazard store utility")
    parser.add_argument("command", choices=["import", "count"])
    parser.add_argument("csv", nargs="?")
    parser.add_argument("--database-url", default=SQLALCHEMY_DATABASE_URL)
    parser.add_argument("--status", default=HazardStatus.PENDING.value,
                        choices=[s.value for s in HazardStatus])
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO)
    store = SqlHazardStore(args.database_url)
    if args.command == "import":
        if not args.csv:
            parser.error("import needs a CSV path")
        n = import_hazards_csv(store, args.csv, default_status=args.status)
        print(f"   ✅ {n:,} hazard reports imported")
    else:
        stats = store.statistics()
        print(f"   ✅ {stats['total']:,} reports")
        for row in stats["by_type"]:
            print(f"      {row['type']}: {row['count']:,} (verified {row['verified']:,}, pending {row['pending']:,})")


if __name__ == "__main__":
    main()
