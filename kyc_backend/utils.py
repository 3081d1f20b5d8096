from datetime import datetime, timezone


def utcnow() -> datetime:
    """Hora UTC sem tzinfo (as colunas DateTime guardam UTC naive)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
