"""
GATF dataset validation.

Runs the platform's acceptance checks over a sample of synthetic rows:
volume, completeness, duplication and, when a column schema is given,
per-column type, range, allowed-value and uniqueness rules.
"""

import json
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import structlog

logger = structlog.get_logger(__name__)

_TYPE_CHECKS = {
    "string": lambda v: isinstance(v, str),
    "integer": lambda v: isinstance(v, int) and not isinstance(v, bool),
    "number": lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
    "boolean": lambda v: isinstance(v, bool),
    "object": lambda v: isinstance(v, dict),
    "array": lambda v: isinstance(v, list),
}


@dataclass
class CheckResult:
    """Outcome of a single validation check."""

    name: str
    passed: bool
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "passed": self.passed,
            "message": self.message,
            "details": self.details,
        }


@dataclass
class ValidationReport:
    """Aggregated result of a GATF validation run."""

    passed: bool
    score: float
    row_count: int
    checks: List[CheckResult]

    @property
    def failed_checks(self) -> List[CheckResult]:
        return [check for check in self.checks if not check.passed]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "score": self.score,
            "row_count": self.row_count,
            "checks_total": len(self.checks),
            "checks_failed": len(self.failed_checks),
            "checks": [check.to_dict() for check in self.checks],
        }


class GATFValidator:
    """
    Validates synthetic datasets against GATF acceptance rules.

    ``rules`` passed to :meth:`validate` override the instance defaults for
    a single run (``min_rows``, ``max_null_ratio``, ``max_duplicate_ratio``,
    ``pass_threshold``).
    """

    def __init__(
        self,
        max_null_ratio: float = 0.1,
        max_duplicate_ratio: float = 0.05,
        min_rows: int = 1,
        pass_threshold: float = 1.0,
    ):
        self.max_null_ratio = max_null_ratio
        self.max_duplicate_ratio = max_duplicate_ratio
        self.min_rows = min_rows
        self.pass_threshold = pass_threshold

    def validate(
        self,
        rows: List[Dict[str, Any]],
        schema: Optional[Dict[str, Any]] = None,
        rules: Optional[Dict[str, Any]] = None,
    ) -> ValidationReport:
        """
        Validate rows.

        Args:
            rows: Dataset rows as dictionaries
            schema: Optional ``{"columns": {name: column_rules}}``
            rules: Optional per-run threshold overrides

        Raises:
            ValueError: If rows are not a list of objects or rules are malformed
        """
        if not isinstance(rows, list) or not all(isinstance(row, dict) for row in rows):
            raise ValueError("rows must be a list of objects")

        rules = rules or {}
        min_rows = int(rules.get("min_rows", self.min_rows))
        max_null_ratio = float(rules.get("max_null_ratio", self.max_null_ratio))
        max_duplicate_ratio = float(rules.get("max_duplicate_ratio", self.max_duplicate_ratio))
        pass_threshold = float(rules.get("pass_threshold", self.pass_threshold))

        checks = [self._check_row_count(rows, min_rows)]

        if rows:
            checks.extend(self._check_nulls(rows, max_null_ratio))
            checks.append(self._check_duplicates(rows, max_duplicate_ratio))

        columns = (schema or {}).get("columns") or {}
        if not isinstance(columns, dict):
            raise ValueError("schema.columns must be an object")
        for column, column_rules in columns.items():
            checks.extend(self._check_column(rows, column, column_rules or {}))

        passed_count = sum(1 for check in checks if check.passed)
        score = round(passed_count / len(checks), 4)
        if pass_threshold >= 1.0:
            passed = passed_count == len(checks)
        else:
            passed = score >= pass_threshold

        report = ValidationReport(passed=passed, score=score, row_count=len(rows), checks=checks)
        logger.info(
            "GATF validation finished",
            passed=passed,
            score=score,
            row_count=len(rows),
            failed_checks=[check.name for check in report.failed_checks],
        )
        return report

    def _check_row_count(self, rows: List[Dict[str, Any]], min_rows: int) -> CheckResult:
        passed = len(rows) >= max(min_rows, 1)
        return CheckResult(
            name="row_count",
            passed=passed,
            message=f"{len(rows)} rows (minimum {min_rows})",
            details={"row_count": len(rows), "min_rows": min_rows},
        )

    def _check_nulls(self, rows: List[Dict[str, Any]], max_null_ratio: float) -> List[CheckResult]:
        columns = sorted({key for row in rows for key in row})
        checks = []
        for column in columns:
            nulls = sum(1 for row in rows if _is_null(row.get(column)))
            ratio = nulls / len(rows)
            checks.append(
                CheckResult(
                    name=f"null_ratio.{column}",
                    passed=ratio <= max_null_ratio,
                    message=f"{ratio:.2%} null values (maximum {max_null_ratio:.2%})",
                    details={"nulls": nulls, "ratio": round(ratio, 4)},
                )
            )
        return checks

    def _check_duplicates(
        self, rows: List[Dict[str, Any]], max_duplicate_ratio: float
    ) -> CheckResult:
        seen = set()
        duplicates = 0
        for row in rows:
            fingerprint = json.dumps(row, sort_keys=True, default=str)
            if fingerprint in seen:
                duplicates += 1
            else:
                seen.add(fingerprint)

        ratio = duplicates / len(rows)
        return CheckResult(
            name="duplicate_rows",
            passed=ratio <= max_duplicate_ratio,
            message=f"{ratio:.2%} duplicate rows (maximum {max_duplicate_ratio:.2%})",
            details={"duplicates": duplicates, "ratio": round(ratio, 4)},
        )

    def _check_column(
        self, rows: List[Dict[str, Any]], column: str, column_rules: Dict[str, Any]
    ) -> List[CheckResult]:
        prefix = f"schema.{column}"
        checks = []
        nullable = bool(column_rules.get("nullable", True))

        missing = sum(1 for row in rows if column not in row)
        null_count = sum(1 for row in rows if column in row and _is_null(row[column]))
        presence_ok = missing == 0 and (nullable or null_count == 0)
        checks.append(
            CheckResult(
                name=f"{prefix}.presence",
                passed=presence_ok,
                message=(
                    "column present in all rows" if presence_ok
                    else f"{missing} rows missing column, {null_count} null values"
                ),
                details={"missing": missing, "nulls": null_count, "nullable": nullable},
            )
        )

        values = [row[column] for row in rows if column in row and not _is_null(row[column])]

        expected_type = column_rules.get("type")
        if expected_type:
            type_check = _TYPE_CHECKS.get(expected_type)
            if type_check is None:
                raise ValueError(f"Unsupported column type for {column}: {expected_type}")
            bad = [v for v in values if not type_check(v)]
            checks.append(
                CheckResult(
                    name=f"{prefix}.type",
                    passed=not bad,
                    message=f"{len(bad)} values are not {expected_type}",
                    details={"expected_type": expected_type, "invalid": len(bad),
                             "examples": _examples(bad)},
                )
            )

        minimum = column_rules.get("min")
        maximum = column_rules.get("max")
        if minimum is not None or maximum is not None:
            numeric = [v for v in values if _TYPE_CHECKS["number"](v)]
            out_of_range = [
                v for v in numeric
                if (minimum is not None and v < minimum) or (maximum is not None and v > maximum)
            ]
            checks.append(
                CheckResult(
                    name=f"{prefix}.range",
                    passed=not out_of_range,
                    message=f"{len(out_of_range)} values outside [{minimum}, {maximum}]",
                    details={"min": minimum, "max": maximum, "out_of_range": len(out_of_range),
                             "examples": _examples(out_of_range)},
                )
            )

        allowed = column_rules.get("allowed")
        if allowed is not None:
            unexpected = [v for v in values if v not in allowed]
            checks.append(
                CheckResult(
                    name=f"{prefix}.allowed",
                    passed=not unexpected,
                    message=f"{len(unexpected)} values outside the allowed set",
                    details={"unexpected": len(unexpected), "examples": _examples(unexpected)},
                )
            )

        if column_rules.get("unique"):
            fingerprints = [json.dumps(v, sort_keys=True, default=str) for v in values]
            duplicate_count = len(fingerprints) - len(set(fingerprints))
            checks.append(
                CheckResult(
                    name=f"{prefix}.unique",
                    passed=duplicate_count == 0,
                    message=f"{duplicate_count} duplicate values",
                    details={"duplicates": duplicate_count},
                )
            )

        return checks


def _is_null(value: Any) -> bool:
    return value is None or (isinstance(value, float) and math.isnan(value))


def _examples(values: List[Any], limit: int = 5) -> List[Any]:
    return values[:limit]
