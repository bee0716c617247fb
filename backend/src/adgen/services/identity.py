"""Job identity resolution for workflow-engine payloads.

Prompt-optimization workflows address generation units with composite ids of
the form "<parent_job_id>_VARIATION_<variant>". Storage is keyed by the
parent id; the variant is kept as a human-readable label on outputs.
"""

from dataclasses import dataclass
from typing import Optional

VARIATION_SEPARATOR = "_VARIATION_"
DEFAULT_VARIANT = "A"


@dataclass(frozen=True)
class JobIdentity:
    """Resolved identity of an inbound workflow payload."""

    job_id: str
    variant: Optional[str] = None
    source_id: Optional[str] = None  # identifier as received, before splitting


def split_variant_id(identifier: str) -> tuple[str, Optional[str]]:
    """Split a composite variant id.

    Examples:
        >>> split_variant_id("abc_VARIATION_B")
        ('abc', 'B')
        >>> split_variant_id("abc_VARIATION_")
        ('abc', 'A')
        >>> split_variant_id("abc")
        ('abc', None)
    """
    if VARIATION_SEPARATOR not in identifier:
        return identifier, None
    parent, _, variant = identifier.partition(VARIATION_SEPARATOR)
    return parent, variant or DEFAULT_VARIANT


def resolve_job_identity(
    job_id: Optional[str],
    parent_job_id: Optional[str] = None,
    variant_info: Optional[str] = None,
) -> Optional[JobIdentity]:
    """Determine which stored job a payload refers to.

    An explicit parent_job_id wins. Otherwise a composite job_id is split
    into parent and variant. Returns None when no identifier is present.
    """
    if not parent_job_id and job_id and VARIATION_SEPARATOR in job_id:
        parent_job_id, variant_info = split_variant_id(job_id)

    resolved = parent_job_id or job_id
    if not resolved:
        return None
    return JobIdentity(job_id=resolved, variant=variant_info, source_id=job_id)
