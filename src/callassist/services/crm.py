"""Async client for the Salesforce Apex REST endpoints behind the assistant.

Every call is a single attempt. Transport and status failures raise
``CrmError``; tools turn that into a sentence the model can relay.
"""

import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Tuple

import httpx

from ..errors import CrmError
from ..models import OrderRecord
from ..settings import get_settings

logger = logging.getLogger(__name__)

APEX_ROOT = "/services/apexrest"


def format_order_date(value: str | None) -> str:
    """Render an ISO date like ``2024-01-01`` as ``Jan 1, 2024``."""
    if not value:
        return "N/A"
    try:
        parsed = datetime.strptime(value[:10], "%Y-%m-%d")
    except ValueError:
        return value
    return f"{parsed:%b} {parsed.day}, {parsed.year}"


def _order_from_record(record: Dict[str, Any]) -> OrderRecord:
    product = record.get("Product_VB__r") or {}
    return OrderRecord(
        order_number=str(record.get("Name") or "N/A"),
        product=product.get("Name") or "N/A",
        quantity=int(float(record.get("Product_Quantity__c") or 0)),
        price_per_unit=float(product.get("Price__c") or 0.0),
        total_amount=float(record.get("Total_Amount__c") or 0.0),
        order_date=format_order_date(record.get("Order_Date__c")),
        status=record.get("Order_Status__c") or "N/A",
        shipping_city=record.get("Shipping_Address__City__s"),
        expected_delivery_date=record.get("Expected_Delivery_Date__c"),
    )


def parse_order_summary(payload: Any) -> Tuple[str | None, List[OrderRecord]]:
    """Map an order summary payload to (customer name, orders).

    The Apex endpoint answers with a list of contact records, sometimes
    JSON-encoded a second time as a string.
    """
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError:
            logger.warning("Order summary is not JSON: %.100s", payload)
            return None, []

    if not isinstance(payload, list) or not payload:
        return None, []

    contact = payload[0] if isinstance(payload[0], dict) else {}
    name = contact.get("Name")
    records = (contact.get("UserOrders__r") or {}).get("records") or []
    orders = [_order_from_record(r) for r in records if isinstance(r, dict)]
    return name, orders


class CrmClient:
    """Bearer-token authenticated JSON calls against the CRM."""

    def __init__(
        self,
        base_url: str,
        access_token: str | None,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._access_token = access_token
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._access_token:
            headers["Authorization"] = f"Bearer {self._access_token}"
        return headers

    async def _request(self, method: str, path: str, body: Dict[str, Any] | None = None) -> Any:
        url = f"{self.base_url}{APEX_ROOT}{path}"
        logger.info("CRM %s %s", method, url)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(method, url, json=body, headers=self._headers())
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error("CRM %s %s returned %s: %s", method, path, e.response.status_code, e.response.text)
            raise CrmError(
                f"CRM returned HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except (httpx.TimeoutException, httpx.RequestError) as e:
            kind = "timeout" if isinstance(e, httpx.TimeoutException) else "connection error"
            logger.error("CRM %s %s failed: %s", method, path, e)
            raise CrmError(f"CRM {kind}: {e}") from e

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    async def get_order_summary(self, phone_number: str) -> Any:
        """Raw order summary for the contact owning phone_number."""
        return await self._request("POST", "/getOrderDetails", {"phoneNumber": phone_number})

    async def load_orders(self, phone_number: str) -> Tuple[str | None, List[OrderRecord]]:
        """Fetch and parse the caller's orders; any failure yields no orders."""
        try:
            payload = await self.get_order_summary(phone_number)
        except CrmError as e:
            logger.warning("Could not load orders for caller: %s", e)
            return None, []
        try:
            name, orders = parse_order_summary(payload)
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning("Malformed order summary from CRM: %s", e)
            return None, []
        logger.info("Loaded %d orders from CRM", len(orders))
        return name, orders

    async def get_case_status(self, case_number: str) -> str:
        data = await self._request("GET", f"/CaseStatus/{case_number}")
        if isinstance(data, dict):
            return str(data.get(case_number) or "Unknown")
        return "Unknown"

    async def create_case(
        self,
        subject: str,
        description: str,
        origin: str,
        contact_name: str,
        contact_email: str,
    ) -> Any:
        return await self._request(
            "POST",
            "/CaseStatus/",
            {
                "subject": subject,
                "description": description,
                "origin": origin,
                "contactName": contact_name,
                "contactEmail": contact_email,
            },
        )

    async def update_delivery_date(self, expected_delivery_date: str) -> Any:
        return await self._request(
            "POST",
            "/updateExpectedDeliveryDate",
            {"expectedDeliveryDate": expected_delivery_date},
        )


def get_crm_client() -> CrmClient:
    """Build a CrmClient from settings."""
    settings = get_settings()
    return CrmClient(
        base_url=settings.crm_base_url,
        access_token=settings.crm_access_token,
        timeout=settings.crm_timeout_seconds,
    )
