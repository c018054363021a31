from typing import Any
from pydantic import ValidationError


class DataValidationError(Exception):
    def __init__(self, source: str, errors: list[dict[str, Any]], original: ValidationError | None = None):
        self.source = source
        self.errors = errors
        self.original = original
        msg = f"Validation failed for {len(errors)} records from source '{source}'"

        super().__init__(msg)

    def summary(self, limit: int = 5) -> str:
        """Human-readable summary of the first few validation issues."""
        lines = []
        for err in self.errors[:limit]:
            loc = ".".join(str(p) for p in err.get("loc", []))
            lines.append(f"- {loc}: {err.get('msg')} ({err.get('type')})")
        if len(self.errors) > limit:
            lines.append(f"... ({len(self.errors) - limit} more)")
        return "\n".join(lines)


class QuotaExhaustedError(Exception):
    """A provider rejected the request because its request quota is used up.

    Distinct from "not found": the geocoding chain never absorbs this error,
    so the batch processor can pause and retry the record later.
    """

    def __init__(self, provider: str, detail: str | None = None):
        self.provider = provider
        self.detail = detail
        msg = f"Quota exhausted for provider '{provider}'"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class EmptyZoneDatabaseError(RuntimeError):
    """Raised when a batch is started before any postal zones are loaded."""


class RecordAbandonedError(Exception):
    """The batch gave up on a record (timeout or cancellation) mid-resolution."""
