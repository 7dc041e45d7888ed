import json

import httpx
import openai
import pytest

from app.services.intake_agent import (
    ASK_ADDRESS,
    ASK_PROBLEM,
    NEED_ZIP,
    IntakeAgentError,
    OpenAIIntakeAgent,
    ScriptedIntakeAgent,
    guess_category,
    is_greeting,
)
from app.types.conversation import ChatTurn
from app.types.intake_contract import extract_intake_payload
from app.types.job import Urgency


def _history(*texts):
    return [ChatTurn(role="user", content=text) for text in texts]


@pytest.mark.parametrize("text", ["hi", "Hello", "  hey ", "ok", "help"])
def test_greetings(text):
    assert is_greeting(text)


def test_problem_is_not_a_greeting():
    assert not is_greeting("My sink is leaking")


@pytest.mark.parametrize(
    "text, category",
    [
        ("The kitchen sink is leaking", "plumbing"),
        ("Breaker keeps tripping", "electrical"),
        ("AC is blowing warm air", "hvac"),
        ("dishwasher won't drain", "plumbing"),
        ("Fridge is not cold", "appliance_repair"),
        ("Missing shingles after the storm", "roofing"),
        ("Need a shelf hung", "general_handyman"),
    ],
)
def test_guess_category(text, category):
    assert guess_category(text) == category


@pytest.mark.asyncio
async def test_scripted_agent_walks_through_intake():
    agent = ScriptedIntakeAgent()
    assert await agent.converse(_history("hi"), "plumber") == ASK_PROBLEM
    assert "How urgent" in await agent.converse(_history("hi", "Toilet is overflowing"), "plumber")
    assert await agent.converse(_history("Toilet is overflowing", "4"), "plumber") == ASK_ADDRESS
    assert await agent.converse(_history("Toilet is overflowing", "4", "downtown"), "plumber") == NEED_ZIP

    reply = await agent.converse(_history("Toilet is overflowing", "4", "downtown", "55 Oak Ave 90210"), "plumber")
    visible, payload = extract_intake_payload(reply)
    assert visible == "Thanks! Let me find a contractor near 90210."
    assert payload.problem_summary == "Toilet is overflowing"
    assert payload.service_category == "plumbing"
    assert payload.urgency is Urgency.EMERGENCY
    assert payload.address == "55 Oak Ave 90210"


@pytest.mark.asyncio
async def test_scripted_agent_defaults_urgency():
    reply = await ScriptedIntakeAgent().converse(_history("Outlet sparks", "whenever", "90210"), "electrician")
    _, payload = extract_intake_payload(reply)
    assert payload.urgency is Urgency.MEDIUM


@pytest.mark.asyncio
async def test_scripted_agent_splits_services():
    services = await ScriptedIntakeAgent().parse_services("drain cleaning, pipe repair and water heaters", "plumber")
    assert services == ["drain cleaning", "pipe repair", "water heaters"]


@pytest.mark.asyncio
async def test_openai_agent_sends_system_prompt_and_history(monkeypatch):
    agent = OpenAIIntakeAgent(api_key="test-key", model="gpt-test")
    seen = []

    async def fake_complete(messages):
        seen.append(messages)
        return "What's your zip code?"

    monkeypatch.setattr(agent, "_complete", fake_complete)
    reply = await agent.converse(_history("My sink is leaking"), "plumber")

    assert reply == "What's your zip code?"
    [messages] = seen
    assert messages[0]["role"] == "system"
    assert "plumber business" in messages[0]["content"]
    assert messages[1:] == [{"role": "user", "content": "My sink is leaking"}]


@pytest.mark.asyncio
async def test_openai_agent_wraps_transport_errors(monkeypatch):
    agent = OpenAIIntakeAgent(api_key="test-key")

    async def failing_complete(messages):
        raise openai.APIConnectionError(request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"))

    monkeypatch.setattr(agent, "_complete", failing_complete)
    with pytest.raises(IntakeAgentError):
        await agent.converse(_history("hello"), "plumber")


@pytest.mark.asyncio
async def test_openai_agent_parses_service_list(monkeypatch):
    agent = OpenAIIntakeAgent(api_key="test-key")

    async def fake_complete(messages):
        return json.dumps(["drain cleaning", " ", "leak detection"])

    monkeypatch.setattr(agent, "_complete", fake_complete)
    assert await agent.parse_services("I clear drains and find leaks", "plumber") == [
        "drain cleaning",
        "leak detection",
    ]


@pytest.mark.asyncio
async def test_openai_agent_keeps_raw_services_on_bad_json(monkeypatch):
    agent = OpenAIIntakeAgent(api_key="test-key")

    async def fake_complete(messages):
        return "Sure! Drain cleaning and leak detection."

    monkeypatch.setattr(agent, "_complete", fake_complete)
    assert await agent.parse_services(" I clear drains ", "plumber") == ["I clear drains"]
