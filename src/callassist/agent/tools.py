import json
import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Mapping, Type

from pydantic import BaseModel, Field, ValidationError, field_validator

from ..errors import CrmError, DuplicateToolError, ToolInvocationError, ToolValidationError
from ..services.crm import CrmClient, parse_order_summary

logger = logging.getLogger(__name__)


class ToolKind(str, Enum):
    """The closed set of tools the model may call."""

    ORDER_SUMMARY_STATUS = "order_summary_status"
    CASE_STATUS = "case_status"
    CREATE_CASE = "create_case"
    UPDATE_DELIVERY_DATE = "update_delivery_date"


class OrderSummaryArgs(BaseModel):
    phone_number: str = Field(description="The phone number to look up orders for")


class CaseStatusArgs(BaseModel):
    case_number: str = Field(description="The case number to check")


class CreateCaseArgs(BaseModel):
    subject: str = Field(description="Subject of the case")
    description: str = Field(description="Detailed description of the issue")
    origin: str = Field(default="Phone", description="Source of case creation")
    contact_name: str = Field(description="Name of the contact")
    contact_email: str = Field(description="Email of the contact")


class UpdateDeliveryDateArgs(BaseModel):
    expected_delivery_date: str = Field(
        description="The new expected delivery date in YYYY-MM-DD format"
    )

    @field_validator("expected_delivery_date")
    @classmethod
    def _iso_date(cls, value: str) -> str:
        date.fromisoformat(value)
        return value


@dataclass(frozen=True)
class ToolResult:
    """Outcome of a tool invocation: content for the model, plus the error if it failed."""

    content: str
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


ToolHandler = Callable[[Any], Awaitable[str]]


@dataclass(frozen=True)
class ToolDefinition:
    kind: ToolKind
    description: str
    args_model: Type[BaseModel]
    handler: ToolHandler

    @property
    def name(self) -> str:
        return self.kind.value

    def schema(self) -> Dict[str, Any]:
        """OpenAI function-calling schema derived from the argument model."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.args_model.model_json_schema(),
            },
        }

    async def invoke(self, arguments: Dict[str, Any]) -> ToolResult:
        """Validate arguments, then run the handler.

        Invalid arguments and backend failures come back as a failed
        ToolResult; anything else propagates to the caller.
        """
        try:
            args = self.args_model.model_validate(arguments)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}"
                for err in e.errors()
            )
            error = ToolValidationError(f"Invalid arguments for {self.name}: {problems}")
            logger.warning("%s", error)
            return ToolResult(content=f"Error: {error}", error=error)

        try:
            content = await self.handler(args)
        except ToolInvocationError as e:
            logger.error("Tool %s failed: %s", self.name, e)
            return ToolResult(content=str(e), error=e)
        return ToolResult(content=content)


class ToolRegistry:
    """Name -> ToolDefinition mapping, filled once at startup and read-only afterwards."""

    def __init__(self) -> None:
        self._tools: Dict[str, ToolDefinition] = {}

    def register(self, tool: ToolDefinition) -> None:
        if tool.name in self._tools:
            raise DuplicateToolError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def resolve(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    @property
    def tools(self) -> Mapping[str, ToolDefinition]:
        return MappingProxyType(self._tools)

    def schemas(self) -> List[Dict[str, Any]]:
        return [tool.schema() for tool in self._tools.values()]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[ToolDefinition]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)


class CrmTools:
    """Tool handlers backed by the CRM client."""

    def __init__(self, crm: CrmClient) -> None:
        self._crm = crm

    async def order_summary_status(self, args: OrderSummaryArgs) -> str:
        try:
            payload = await self._crm.get_order_summary(args.phone_number)
        except CrmError as e:
            raise ToolInvocationError(f"Error fetching order summary: {e}") from e
        name, orders = parse_order_summary(payload)
        if not orders:
            return "No orders found for this phone number."
        return json.dumps(
            {"customer_name": name, "orders": [o.to_dict() for o in orders]}
        )

    async def case_status(self, args: CaseStatusArgs) -> str:
        try:
            status = await self._crm.get_case_status(args.case_number)
        except CrmError as e:
            raise ToolInvocationError(
                f"Error fetching case {args.case_number} status: {e}"
            ) from e
        return f"Case {args.case_number} status: {status}"

    async def create_case(self, args: CreateCaseArgs) -> str:
        try:
            data = await self._crm.create_case(
                subject=args.subject,
                description=args.description,
                origin=args.origin,
                contact_name=args.contact_name,
                contact_email=args.contact_email,
            )
        except CrmError as e:
            raise ToolInvocationError(f"Error creating case: {e}") from e
        return f"Case created successfully: {json.dumps(data, default=str)}"

    async def update_delivery_date(self, args: UpdateDeliveryDateArgs) -> str:
        try:
            data = await self._crm.update_delivery_date(args.expected_delivery_date)
        except CrmError as e:
            raise ToolInvocationError(f"Error updating delivery date: {e}") from e
        return f"Delivery date updated successfully: {json.dumps(data, default=str)}"


def build_tool_registry(crm: CrmClient) -> ToolRegistry:
    """Construct the registry of CRM tools. Called once at startup."""
    handlers = CrmTools(crm)
    registry = ToolRegistry()
    registry.register(
        ToolDefinition(
            kind=ToolKind.ORDER_SUMMARY_STATUS,
            description="Get the summary of a customer's orders by their phone number",
            args_model=OrderSummaryArgs,
            handler=handlers.order_summary_status,
        )
    )
    registry.register(
        ToolDefinition(
            kind=ToolKind.CASE_STATUS,
            description="Get the status of a support case by its case number",
            args_model=CaseStatusArgs,
            handler=handlers.case_status,
        )
    )
    registry.register(
        ToolDefinition(
            kind=ToolKind.CREATE_CASE,
            description="Create a new support case for the caller",
            args_model=CreateCaseArgs,
            handler=handlers.create_case,
        )
    )
    registry.register(
        ToolDefinition(
            kind=ToolKind.UPDATE_DELIVERY_DATE,
            description="Update the expected delivery date of the caller's order",
            args_model=UpdateDeliveryDateArgs,
            handler=handlers.update_delivery_date,
        )
    )
    logger.info("Tools registered: %s", ", ".join(t.name for t in registry))
    return registry
