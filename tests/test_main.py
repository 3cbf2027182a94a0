import xml.etree.ElementTree as ET
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from fastapi.testclient import TestClient

from callassist.agent import CallAssistantService, TurnExecutor, get_call_assistant_async
from callassist.main import app
from callassist.services.crm import CrmClient
from callassist.services.session_store import MemorySessionStore
from callassist.settings import Settings

FALLBACK = "I'm sorry, I couldn't process your request."


@pytest.fixture
def assistant() -> MagicMock:
    m = MagicMock(spec=CallAssistantService)
    m.settings = Settings(_env_file=None)
    m.start_call = AsyncMock(return_value="Hi Ada, how can I help?")
    m.handle_turn = AsyncMock(return_value="Your order has shipped.")
    return m


@pytest.fixture
def client(assistant: MagicMock):
    app.dependency_overrides[get_call_assistant_async] = lambda: assistant
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_incoming_call_greets(client: TestClient, assistant: MagicMock) -> None:
    response = client.post("/incoming-call", data={"From": "+15550100", "CallSid": "CA1"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/xml")
    root = ET.fromstring(response.text)
    assert root.find("Say").text == "Hi Ada, how can I help?"
    assert root.find("Gather").get("action") == "/respond"
    assistant.start_call.assert_awaited_once_with("CA1", "+15550100")


def test_incoming_call_existing_session_only_listens(client: TestClient, assistant: MagicMock) -> None:
    assistant.start_call.return_value = None
    root = ET.fromstring(client.post("/incoming-call", data={"From": "+15550100"}).text)
    assert root.find("Say") is None
    assert root.find("Gather") is not None
    assistant.start_call.assert_awaited_once_with("+15550100", "+15550100")


def test_respond_speaks_answer(client: TestClient, assistant: MagicMock) -> None:
    response = client.post(
        "/respond",
        data={"From": "+15550100", "CallSid": "CA1", "SpeechResult": "Where is my order?"},
    )

    root = ET.fromstring(response.text)
    assert root.find("Say").text == "Your order has shipped."
    assert root.find("Gather") is not None
    assistant.handle_turn.assert_awaited_once_with("CA1", "+15550100", "Where is my order?")


def test_respond_unexpected_failure_still_returns_twiml(client: TestClient, assistant: MagicMock) -> None:
    assistant.handle_turn.side_effect = ConnectionError("redis went away")

    response = client.post("/respond", data={"CallSid": "CA1", "SpeechResult": "hi"})

    assert response.status_code == 200
    root = ET.fromstring(response.text)
    assert root.find("Say").text == FALLBACK


def test_respond_programming_error_still_returns_twiml(client: TestClient, assistant: MagicMock) -> None:
    assistant.handle_turn.side_effect = AttributeError("'NoneType' object has no attribute 'name'")

    response = client.post("/respond", data={"CallSid": "CA1", "SpeechResult": "hi"})

    assert response.status_code == 200
    root = ET.fromstring(response.text)
    assert root.find("Say").text == FALLBACK
    assert root.find("Gather") is not None


def test_incoming_call_failure_still_returns_twiml(client: TestClient, assistant: MagicMock) -> None:
    assistant.start_call.side_effect = ValueError("could not convert string to float: 'two'")

    response = client.post("/incoming-call", data={"From": "+15550100", "CallSid": "CA1"})

    assert response.status_code == 200
    root = ET.fromstring(response.text)
    assert root.find("Say").text == FALLBACK
    assert root.find("Gather") is not None


def test_fallback_comes_from_assistant_settings(client: TestClient, assistant: MagicMock) -> None:
    assistant.settings = Settings(_env_file=None, fallback_message="Please hold on.")
    assistant.handle_turn.side_effect = TimeoutError()

    root = ET.fromstring(client.post("/respond", data={"CallSid": "CA1", "SpeechResult": "hi"}).text)

    assert root.find("Say").text == "Please hold on."


def test_incoming_call_with_malformed_crm_record_still_greets() -> None:
    record = {"Name": "O-0001", "Product_Quantity__c": "two", "Order_Status__c": "Shipped"}
    summary = [{"Name": "Ada Lovelace", "UserOrders__r": {"totalSize": 1, "records": [record]}}]
    crm = CrmClient(
        base_url="https://crm.example.com",
        access_token="token-123",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json=summary)),
    )
    settings = Settings(_env_file=None)
    service = CallAssistantService(
        store=MemorySessionStore(ttl_seconds=3600, history_limit=10),
        executor=MagicMock(spec=TurnExecutor),
        crm=crm,
        settings=settings,
    )
    app.dependency_overrides[get_call_assistant_async] = lambda: service
    try:
        response = TestClient(app).post(
            "/incoming-call", data={"From": "+15550100", "CallSid": "CA1"}
        )
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    root = ET.fromstring(response.text)
    assert root.find("Say").text == settings.greeting_template.format(name="there")
