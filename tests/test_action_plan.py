"""Tests for JSON extraction, fallback plans and the action-plan generator."""

import json

import httpx
import pytest

from app.core.contracts import ActionHints, EventType
from app.services.action_plan import (
    ActionPlanGenerator,
    build_prompt,
    extract_json_block,
    fallback_plan,
)


FIRE_EVENT = {
    "id": "evt_1",
    "event_type": "fire",
    "location": "Uttarakhand",
    "confidence": 0.94,
}

MODEL_PLAN = {
    "immediate": ["Evacuate Zone A", "Deploy 12 fire units", "Alert hospitals"],
    "medium": ["Set up relief camps"],
    "resources": [{"name": "Fire Trucks", "quantity": 12}],
    "sms": "RAKSHAK ALERT: fire near Uttarakhand. Call 112.",
    "legal": "Order under Disaster Management Act 2005.",
}


def _responses_body(text: str) -> dict:
    return {
        "output": [
            {"type": "reasoning", "content": []},
            {"type": "message", "content": [{"type": "output_text", "text": text}]},
        ]
    }


def _generator(handler, api_key="sk-test") -> ActionPlanGenerator:
    return ActionPlanGenerator(
        api_key=api_key,
        model="gpt-test",
        base_url="https://llm.example/v1/",
        timeout_s=5,
        transport=httpx.MockTransport(handler),
    )


def _never_called(request: httpx.Request) -> httpx.Response:
    raise AssertionError(f"unexpected request to {request.url}")


class TestExtractJsonBlock:
    def test_object_surrounded_by_prose(self):
        result = extract_json_block('Here is the plan:\n{"sms": "hi", "immediate": ["a"]}\nStay safe.')
        assert result.ok
        assert result.value == {"sms": "hi", "immediate": ["a"]}

    def test_code_fence(self):
        result = extract_json_block('```json\n{"a": {"b": 1}}\n```')
        assert result.ok
        assert result.value == {"a": {"b": 1}}

    def test_stray_brace_after_object(self):
        result = extract_json_block('{"a": 1} and a note with a } brace')
        assert result.ok
        assert result.value == {"a": 1}

    @pytest.mark.parametrize("text", ["", "no json here", "} backwards {", '{"a": ]}'])
    def test_failures_are_reported_not_raised(self, text):
        result = extract_json_block(text)
        assert result.ok is False
        assert result.value is None
        assert result.error


class TestFallbackPlan:
    def test_fire_plan_mentions_location(self):
        plan = fallback_plan({"event_type": "fire", "location": "Test Town"})

        assert "Test Town" in plan.sms
        assert len(plan.immediate) >= 3
        assert plan.medium_term
        assert plan.resources[0].name == "Fire Trucks"

    @pytest.mark.parametrize("event_type", ["deforestation", "pollution", "flood"])
    def test_each_type_has_its_own_plan(self, event_type):
        plan = fallback_plan({"event_type": event_type, "location": "X"})
        assert plan.sms != fallback_plan({"event_type": "earthquake", "location": "X"}).sms
        assert plan.sms.endswith("-RAKSHAK")

    def test_unknown_type_gets_generic_plan(self):
        plan = fallback_plan({"event_type": "earthquake", "location": "Y"})
        assert plan.immediate[0] == "Alert district authorities"
        assert "Y" in plan.sms

    def test_missing_fields(self):
        plan = fallback_plan({})
        assert "the affected area" in plan.sms
        assert plan.immediate

    def test_enum_event_type(self):
        plan = fallback_plan({"event_type": EventType.FLOOD, "location": "Patna"})
        assert plan.sms.startswith("FLOOD WARNING")

    def test_plans_are_independent_copies(self):
        a = fallback_plan({"event_type": "fire"})
        a.immediate.append("extra")
        assert "extra" not in fallback_plan({"event_type": "fire"}).immediate


class TestBuildPrompt:
    def test_embeds_incident_data(self):
        hints = ActionHints(
            predicted_spread="2km/h NE",
            nearby_villages=["Rampur", "Dhanaulti"],
            resources_available={"fire_trucks": 4},
        )

        prompt = build_prompt(FIRE_EVENT, hints)

        assert "Type: fire" in prompt
        assert "Location: Uttarakhand" in prompt
        assert "Confidence: 94%" in prompt
        assert "Predicted Spread: 2km/h NE" in prompt
        assert "Rampur, Dhanaulti" in prompt
        assert "fire_trucks: 4" in prompt

    def test_defaults(self):
        prompt = build_prompt({}, ActionHints())
        assert "Type: unknown" in prompt
        assert "Nearby Villages: None identified" in prompt


class TestActionPlanGenerator:
    @pytest.mark.asyncio
    async def test_without_key_uses_fallback(self):
        gen = _generator(_never_called, api_key="")

        plan = await gen.generate(FIRE_EVENT)

        assert gen.configured is False
        assert plan == fallback_plan(FIRE_EVENT)

    @pytest.mark.asyncio
    async def test_model_plan_with_aliases(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=_responses_body("Sure!\n" + json.dumps(MODEL_PLAN)))

        plan = await _generator(handler).generate(FIRE_EVENT, ActionHints(nearby_villages=["Rampur"]))

        assert plan.immediate == MODEL_PLAN["immediate"]
        assert plan.medium_term == ["Set up relief camps"]
        assert plan.legal_notice.startswith("Order under")
        assert plan.resources[0].quantity == 12

        (req,) = requests
        assert req.url.path == "/v1/responses"
        assert req.headers["authorization"] == "Bearer sk-test"
        body = json.loads(req.content)
        assert body["model"] == "gpt-test"
        assert "Rampur" in body["input"][0]["content"]

    @pytest.mark.asyncio
    async def test_top_level_output_text(self):
        handler = lambda r: httpx.Response(200, json={"output_text": json.dumps(MODEL_PLAN)})
        plan = await _generator(handler).generate(FIRE_EVENT)
        assert plan.sms == MODEL_PLAN["sms"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(500, text="upstream error"),
            httpx.Response(200, text="not json"),
            httpx.Response(200, json={"output": []}),
            httpx.Response(200, json={"output": ["oops"]}),
            httpx.Response(200, json={"output": [{"type": "message", "content": ["oops", 3]}]}),
            httpx.Response(200, json={"output": "oops"}),
            httpx.Response(200, json=["oops"]),
            httpx.Response(200, json=_responses_body("I cannot help with that.")),
            httpx.Response(200, json=_responses_body('{"immediate": "evacuate", "sms": 5}')),
            httpx.Response(200, json=_responses_body('{"notes": "empty plan"}')),
        ],
    )
    async def test_bad_model_output_falls_back(self, response):
        plan = await _generator(lambda r: response).generate(FIRE_EVENT)
        assert plan == fallback_plan(FIRE_EVENT)

    @pytest.mark.asyncio
    async def test_transport_error_falls_back(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        plan = await _generator(handler).generate({"event_type": "flood", "location": "Patna"})
        assert "Patna" in plan.sms
