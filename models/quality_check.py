# models/quality_check.py

from dataclasses import dataclass, field
from typing import Any, Dict


def format_duration(seconds: float) -> str:
    seconds = int(seconds or 0)
    hours = seconds // 3600
    mins = (seconds % 3600) // 60
    return f"{hours}h {mins}m"


@dataclass
class QualityCheckResult:
    script_id: str
    passed: bool
    checks: Dict[str, bool] = field(default_factory=dict)
    notes: str = ""
    total_duration_seconds: float = 0.0

    @property
    def failed_checks(self):
        return [name for name, ok in self.checks.items() if not ok]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "script_id": self.script_id,
            "passed": self.passed,
            "checks": dict(self.checks),
            "notes": self.notes,
            "total_duration_seconds": self.total_duration_seconds,
            "total_duration_formatted": format_duration(self.total_duration_seconds),
        }
