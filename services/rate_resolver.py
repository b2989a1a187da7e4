"""
Package rate resolution.

Maps a free-text package label to a monthly teacher salary. Labels typed by
the registration workflow are noisy ("grade 5", "Grade 5 ", "Grade 5 - MWF"),
so the lookup falls through progressively looser matches. A label that
matches nothing resolves to the configured default rate with an anomaly
attached; it never fails the computation.
"""
import logging
from decimal import Decimal
from typing import Dict, Iterable, Optional, Tuple

from constants import AnomalyCode
from schemas import Anomaly, ResolvedRate

logger = logging.getLogger(__name__)


class RateResolver:
    """
    Normalized lookup index over the PackageRate table.

    The index is built once at construction:
        exact label -> rate
        lowercased label -> (label, rate)
        lowercased + trimmed label -> (label, rate)
    plus a list of normalized keys for the substring fallback, longest first
    so the most specific package wins.
    """

    def __init__(self, rates: Iterable[Tuple[str, Decimal]], default_rate: Decimal):
        self.default_rate = Decimal(default_rate)
        self._exact: Dict[str, Decimal] = {}
        self._lower: Dict[str, Tuple[str, Decimal]] = {}
        self._trimmed: Dict[str, Tuple[str, Decimal]] = {}

        for label, rate in rates:
            if label is None:
                continue
            rate = Decimal(rate)
            self._exact.setdefault(label, rate)
            self._lower.setdefault(label.lower(), (label, rate))
            self._trimmed.setdefault(label.strip().lower(), (label, rate))

        self._substring_keys = sorted(
            (k for k in self._trimmed if k), key=lambda k: (-len(k), k)
        )

    @classmethod
    def from_rows(cls, rows, default_rate: Decimal) -> "RateResolver":
        """Build from PackageRate ORM rows."""
        return cls(((r.package_label, r.monthly_salary) for r in rows), default_rate)

    def resolve(self, package_label: Optional[str]) -> ResolvedRate:
        if package_label is not None and package_label.strip():
            hit = self._lookup(package_label)
            if hit:
                match, matched_label, rate = hit
                return ResolvedRate(
                    package_label=package_label,
                    matched_label=matched_label,
                    match=match,
                    monthly_salary=rate,
                )

        logger.warning(
            "unconfigured_package label=%r default_rate=%s", package_label, self.default_rate
        )
        return ResolvedRate(
            package_label=package_label,
            match="default",
            monthly_salary=self.default_rate,
            anomaly=Anomaly(
                code=AnomalyCode.UNCONFIGURED_PACKAGE,
                message=f"No package rate configured for {package_label!r}; default rate applied",
                context={"package_label": package_label, "default_rate": str(self.default_rate)},
            ),
        )

    def _lookup(self, label: str) -> Optional[Tuple[str, str, Decimal]]:
        if label in self._exact:
            return "exact", label, self._exact[label]

        lowered = label.lower()
        if lowered in self._lower:
            matched, rate = self._lower[lowered]
            return "case_insensitive", matched, rate

        normalized = lowered.strip()
        if normalized in self._trimmed:
            matched, rate = self._trimmed[normalized]
            return "trimmed", matched, rate

        for key in self._substring_keys:
            if key in normalized or normalized in key:
                matched, rate = self._trimmed[key]
                return "substring", matched, rate

        return None
