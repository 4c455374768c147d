"""CSV and JSON exports of an aggregate."""

import csv
import io

from billofmaterial.exporters.serialization import dumps
from billofmaterial.models.schemas import SBOMAggregate

CSV_COLUMNS = [
    "Name",
    "Version",
    "Type",
    "License",
    "Security Score",
    "Risk Level",
    "Bundle Size (KB)",
    "Last Update",
    "Weekly Downloads",
]


def to_csv(aggregate: SBOMAggregate) -> str:
    """One row per dependency record across every package."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    for record in aggregate.all_dependencies:
        writer.writerow([
            record.name,
            record.version,
            "development" if record.is_dev else "production",
            record.license,
            record.security_score if record.security_score is not None else "N/A",
            record.risk.risk_level.value if record.risk else "N/A",
            record.minified_size,
            record.last_publish_date or "Unknown",
            record.weekly_downloads,
        ])
    return buffer.getvalue()


def to_json(aggregate: SBOMAggregate, indent: int | None = 2) -> str:
    """The whole aggregate as camelCase JSON."""
    return dumps(aggregate, indent=indent)
