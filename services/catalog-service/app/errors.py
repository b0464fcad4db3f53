from typing import Dict, List, Optional


class CatalogError(Exception):
    """Base for failures that map onto a response envelope."""

    status_code = 500

    def __init__(self, message: str, errors: Optional[Dict[str, List[str]]] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors


class Unauthorized(CatalogError):
    status_code = 403


class NotFound(CatalogError):
    status_code = 404


class ValidationFailed(CatalogError):
    status_code = 422

    def __init__(self, errors: Dict[str, List[str]], message: str = "The given data was invalid."):
        super().__init__(message, errors)


class ConflictingState(CatalogError):
    status_code = 400


class TransactionFailure(CatalogError):
    status_code = 500


def pydantic_errors(exc) -> Dict[str, List[str]]:
    """Group pydantic ValidationError entries by dotted field path."""
    grouped: Dict[str, List[str]] = {}
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path", "form")]
        field = ".".join(loc) or "__root__"
        grouped.setdefault(field, []).append(err.get("msg", "Invalid value"))
    return grouped
