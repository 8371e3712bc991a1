# src/fitstake/verification.py
"""
Plausibility checks for self-reported step telemetry.

Each supported platform gets its own ``Verifier``. A verifier never raises
for a single bad record: the record is zeroed and the reasons are kept as
anomaly metadata. Only an empty or malformed submission is rejected.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from .config import settings
from .errors import ValidationError
from .metrics import telemetry_records_total
from .schemas import Platform, TelemetryRecord
from .utils.logging import setup_logger

logger = setup_logger(__name__, level=settings.log_level)


@dataclass
class NormalizedRecord:
    date: str
    steps: int
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None


@dataclass
class Anomaly:
    date: str
    steps: int
    reasons: List[str]


@dataclass
class VerificationResult:
    records: List[NormalizedRecord] = field(default_factory=list)
    verified_records: int = 0
    suspicious_records: int = 0
    anomalies: List[Anomaly] = field(default_factory=list)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into naive UTC. Returns None when unparseable."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def to_steps(value) -> Optional[int]:
    """Round a reported count to whole steps. Returns None for non-finite values."""
    if value is None or not math.isfinite(value):
        return None
    return round(value)


class Verifier:
    """Base class: walks the records and delegates the per-record decision."""

    platform: Platform
    counts_zero_as_verified = False

    def verify(self, records: Sequence[TelemetryRecord]) -> VerificationResult:
        if not records:
            raise ValidationError("Health data must be a non-empty array")

        result = VerificationResult()
        for record in records:
            steps = to_steps(record.count)
            if steps is None:
                steps = 0
                accepted, suspicious, reasons = False, True, [f"invalid step count: {record.count}"]
            else:
                accepted, suspicious, reasons = self.check(record, steps)

            if accepted:
                if steps > 0 or self.counts_zero_as_verified:
                    result.verified_records += 1
                outcome = "verified"
            else:
                outcome = "suspicious" if suspicious else "rejected"
                if suspicious:
                    result.suspicious_records += 1
                if steps != 0 or suspicious:
                    result.anomalies.append(Anomaly(date=record.date, steps=steps, reasons=reasons))
            telemetry_records_total.labels(platform=self.platform.value, outcome=outcome).inc()

            result.records.append(NormalizedRecord(
                date=record.date,
                steps=steps if accepted else 0,
                start_time=parse_timestamp(record.start_time),
                end_time=parse_timestamp(record.end_time),
            ))

        if result.anomalies:
            logger.warning(
                f"{self.platform.value} submission: {len(result.anomalies)} anomalous records "
                f"out of {len(records)}"
            )
        return result

    def check(self, record: TelemetryRecord, steps: int):
        """Return ``(accepted, suspicious, reasons)`` for one record."""
        raise NotImplementedError


class AttestedVerifier(Verifier):
    """Records from a platform that attests its own samples (e.g. HealthKit)."""

    platform = Platform.ATTESTED

    def __init__(self, max_steps: int = None, warning_steps: int = None):
        self.max_steps = max_steps if max_steps is not None else settings.attested_max_steps
        self.warning_steps = warning_steps if warning_steps is not None else settings.attested_warning_steps

    def check(self, record: TelemetryRecord, steps: int):
        if steps > self.max_steps:
            return False, True, [f"extremely high step count: {steps}"]
        if steps < 0:
            return False, True, [f"negative step count: {steps}"]
        if steps == 0:
            return False, False, []
        if steps > self.warning_steps:
            logger.warning(f"High step count on {record.date}: {steps}")
        return True, False, []


class AggregatedVerifier(Verifier):
    """
    Records merged from several apps (e.g. Health Connect). These must be
    corroborated by their source list and the individual sub-records.
    """

    platform = Platform.AGGREGATED
    counts_zero_as_verified = True

    def __init__(self, max_steps: int = None, slack: int = None, tolerance: int = None,
                 max_window_seconds: int = None, known_providers: Sequence[str] = None):
        self.max_steps = max_steps if max_steps is not None else settings.aggregated_max_steps
        self.slack = slack if slack is not None else settings.aggregate_slack
        self.tolerance = tolerance if tolerance is not None else settings.aggregate_tolerance
        self.max_window_seconds = (
            max_window_seconds if max_window_seconds is not None else settings.max_record_window_seconds
        )
        providers = known_providers if known_providers is not None else settings.known_providers
        self.known_providers = [p.lower() for p in providers]

    def check(self, record: TelemetryRecord, steps: int):
        reasons = []
        suspicious = False

        sources = [s for s in (record.sources or []) if s]
        sub_records = record.records or []

        if not sources:
            reasons.append("missing data sources")
        if not record.record_count or record.record_count <= 0:
            reasons.append("missing record count")
        if not sub_records:
            reasons.append("missing detailed records")
        if steps < 0 or steps > self.max_steps:
            reasons.append(f"step count out of range: {steps}")

        if sub_records:
            sub_counts = [to_steps(r.count) for r in sub_records]
            invalid = [r.id or str(i) for i, (r, c) in enumerate(zip(sub_records, sub_counts)) if c is None]
            if invalid:
                suspicious = True
                reasons.append(f"invalid step count in records: {', '.join(invalid)}")
            records_sum = sum(c for c in sub_counts if c is not None)
            if steps > records_sum + self.slack and abs(steps - records_sum) > self.tolerance:
                suspicious = True
                reasons.append(f"step count mismatch: reported {steps}, records sum {records_sum}")

            window_reasons = self._check_windows(record, sub_records)
            if window_reasons:
                suspicious = True
                reasons.extend(window_reasons)

        if sources and not any(self._is_known_provider(s) for s in sources):
            suspicious = True
            reasons.append(f"unrecognized data sources: {', '.join(sources)}")

        return not reasons, suspicious, reasons

    def _check_windows(self, record: TelemetryRecord, sub_records) -> List[str]:
        overall_start = parse_timestamp(record.start_time)
        overall_end = parse_timestamp(record.end_time)
        reasons = []
        for index, sub in enumerate(sub_records):
            label = sub.id or str(index)
            start = parse_timestamp(sub.start_time)
            end = parse_timestamp(sub.end_time)
            if start is None or end is None:
                reasons.append(f"record {label} has no valid time window")
                continue
            duration = (end - start).total_seconds()
            if duration <= 0 or duration > self.max_window_seconds:
                reasons.append(f"record {label} has invalid duration: {duration:.0f}s")
            if overall_start is not None and start < overall_start:
                reasons.append(f"record {label} starts outside the reported window")
            if overall_end is not None and end > overall_end:
                reasons.append(f"record {label} ends outside the reported window")
        return reasons

    def _is_known_provider(self, source: str) -> bool:
        source = source.lower()
        return any(provider in source for provider in self.known_providers)


def get_verifier(platform) -> Verifier:
    platform = Platform(platform)
    if platform is Platform.ATTESTED:
        return AttestedVerifier()
    return AggregatedVerifier()
