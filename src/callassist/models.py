from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List


@dataclass
class OrderRecord:
    """One order as cached for the lifetime of a call session."""

    order_number: str
    product: str = "N/A"
    quantity: int = 0
    price_per_unit: float = 0.0
    total_amount: float = 0.0
    order_date: str = "N/A"
    status: str = "N/A"
    shipping_city: str | None = None
    expected_delivery_date: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OrderRecord":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        known["order_number"] = str(known.get("order_number", ""))
        return cls(**known)


@dataclass
class ToolCall:
    """A tool request produced by the model; consumed once by the executor."""

    id: str
    name: str
    arguments: str = ""


@dataclass
class SessionState:
    """Per-call conversation state (messages, cached orders, tool call count)."""

    session_key: str
    caller: str = ""
    customer_name: str = ""
    messages: List[Dict[str, Any]] = field(default_factory=list)
    orders: List[OrderRecord] = field(default_factory=list)
    tool_calls_count: int = 0

    @property
    def is_new(self) -> bool:
        return not self.messages


def trim_history(messages: List[Dict[str, Any]], limit: int) -> List[Dict[str, Any]]:
    """Keep the most recent `limit` messages, dropping the oldest first."""
    if limit <= 0:
        return []
    return list(messages[-limit:])
