# PATH: execution/accounting.py
"""
Execution accounting.

Append-only ExecutionLog of ExecutionRecords:
- trailing-hour counting (source of truth for the rate limit)
- JSONL persistence, one record per line, appended on update
- windowed profit report and CSV export
"""

import csv
import json
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from core.logging import get_logger
from core.models import ExecutionRecord
from core.time import now_timestamp

logger = get_logger(__name__)

HOUR_SECONDS = 3600
DAY_SECONDS = 24 * HOUR_SECONDS

CSV_HEADER = ["timestamp", "tx_hash", "pair", "profit_usd", "route"]


@dataclass
class ProfitReport:
    """Profit summary over a trailing window."""
    window_seconds: int
    executions: int = 0
    successful: int = 0
    total_profit_usd: Decimal = Decimal("0")
    average_profit_usd: Decimal = Decimal("0")
    top_pairs: List[Tuple[str, Decimal]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "window_seconds": self.window_seconds,
            "executions": self.executions,
            "successful": self.successful,
            "total_profit_usd": str(self.total_profit_usd),
            "average_profit_usd": str(self.average_profit_usd),
            "top_pairs": [{"pair": p, "profit_usd": str(v)} for p, v in self.top_pairs],
        }


class ExecutionLog:
    """
    Append-only execution history.

    Usage:
        log = ExecutionLog(Path("data/executions.jsonl"))
        log.load()
        log.append(record)
        if log.count_last_hour() >= max_per_hour: ...
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = path
        self._records: List[ExecutionRecord] = []
        self._unsaved: List[ExecutionRecord] = []

    def __len__(self) -> int:
        return len(self._records)

    @property
    def records(self) -> List[ExecutionRecord]:
        return list(self._records)

    def load(self) -> int:
        """Load records from the JSONL file; returns the count loaded."""
        if self.path is None or not self.path.exists():
            return 0
        loaded = []
        with open(self.path, "r") as f:
            for line in f:
                if line.strip():
                    loaded.append(ExecutionRecord.from_dict(json.loads(line)))
        self._records = loaded
        logger.info(f"Loaded {len(loaded)} execution records", extra={"context": {"path": str(self.path)}})
        return len(loaded)

    def append(self, record: ExecutionRecord) -> None:
        self._records.append(record)
        self._unsaved.append(record)
        self.flush()

    def flush(self) -> bool:
        """Write unsaved records; on I/O failure they stay queued."""
        if self.path is None or not self._unsaved:
            return True
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a") as f:
                for record in self._unsaved:
                    f.write(json.dumps(record.to_dict()) + "\n")
        except OSError as e:
            logger.warning(
                f"Execution log write failed: {e}",
                extra={"context": {"pending": len(self._unsaved)}},
            )
            return False
        self._unsaved.clear()
        return True

    def since(self, cutoff: float) -> List[ExecutionRecord]:
        return [r for r in self._records if r.timestamp >= cutoff]

    def count_last_hour(self, now: Optional[float] = None) -> int:
        now = now_timestamp() if now is None else now
        return len(self.since(now - HOUR_SECONDS))

    def last_for_pair(self, pair: str) -> Optional[ExecutionRecord]:
        for record in reversed(self._records):
            if record.pair == pair:
                return record
        return None

    def profit_report(
        self,
        window_seconds: int = DAY_SECONDS,
        now: Optional[float] = None,
        top: int = 5,
    ) -> ProfitReport:
        now = now_timestamp() if now is None else now
        records = self.since(now - window_seconds)
        report = ProfitReport(window_seconds=window_seconds, executions=len(records))

        by_pair: Dict[str, Decimal] = defaultdict(Decimal)
        for record in records:
            if not record.success:
                continue
            report.successful += 1
            profit = record.realized_profit_usd or Decimal("0")
            report.total_profit_usd += profit
            by_pair[record.pair] += profit

        if report.successful:
            report.average_profit_usd = report.total_profit_usd / report.successful
        report.top_pairs = sorted(by_pair.items(), key=lambda kv: kv[1], reverse=True)[:top]
        return report

    def write_csv(
        self,
        path: Path,
        window_seconds: Optional[int] = DAY_SECONDS,
        now: Optional[float] = None,
    ) -> int:
        """Export successful executions as CSV; returns rows written."""
        now = now_timestamp() if now is None else now
        records = self._records if window_seconds is None else self.since(now - window_seconds)
        rows = [r for r in records if r.success]

        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", newline="") as f:
            writer = csv.writer(f)
            writer.writerow(CSV_HEADER)
            for r in rows:
                writer.writerow([
                    r.timestamp,
                    r.tx_hash or "",
                    r.pair,
                    str(r.realized_profit_usd or Decimal("0")),
                    r.route,
                ])
        return len(rows)
