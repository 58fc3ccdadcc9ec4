from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from ...errors import TraceabilityError


@dataclass(frozen=True)
class ProductLine:
    """One (product, quantity) request line."""
    product_id: int
    quantity: int


@dataclass(frozen=True)
class OperationResult:
    """Outcome of a coordinator operation: a payload or one specific error kind."""
    success: bool
    data: Any = None
    error: Optional[TraceabilityError] = None

    @classmethod
    def ok(cls, data: Any = None) -> "OperationResult":
        return cls(success=True, data=data)

    @classmethod
    def failed(cls, error: TraceabilityError) -> "OperationResult":
        return cls(success=False, error=error)

    @property
    def error_code(self) -> Optional[str]:
        return self.error.code if self.error is not None else None

    @property
    def message(self) -> Optional[str]:
        return self.error.message if self.error is not None else None

    def unwrap(self) -> Any:
        """Return the payload or raise the carried error."""
        if not self.success:
            raise self.error
        return self.data

    def __bool__(self) -> bool:
        return self.success
