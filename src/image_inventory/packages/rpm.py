"""RPM package list parsing.

The RPM database is a Berkeley DB / SQLite file and is not read directly;
records come from the output of::

    rpm --nodigest --nosignature -qa \\
        --qf "%{NAME}\\t%|EPOCH?{%{EPOCH}:}|%{VERSION}-%{RELEASE}\\t%{SIZE}\\n"

Static analysis never runs that command, so it never yields rpm records.
Callers that run ``rpm -qa`` inside the image themselves pass its output to
``parse_rpm_query_output``.
"""

import logging

from ..models import PackageRecord

logger = logging.getLogger(__name__)

RPM_QUERY_FORMAT = "%{NAME}\t%|EPOCH?{%{EPOCH}:}|%{VERSION}-%{RELEASE}\t%{SIZE}\n"


def parse_rpm_query_output(text: str) -> list[PackageRecord]:
    """Parse ``NAME\\tVERSION\\tSIZE`` lines into package records.

    Examples:
        parse_rpm_query_output("libcom_err\\t1.41.12-23.el6\\t59233")
        # [PackageRecord(name="libcom_err", version="1.41.12-23.el6")]
    """
    records = []
    for line in text.splitlines():
        if not line.strip():
            continue
        parts = line.split("\t")
        if len(parts) < 2 or not parts[0] or not parts[1]:
            logger.warning("Skipping malformed rpm line: %r", line)
            continue
        records.append(PackageRecord(name=parts[0], version=parts[1]))
    return records
