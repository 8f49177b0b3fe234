import pytest

from billing_copilot.ai.events import EventCollector, EventType, TurnOutcome
from billing_copilot.ai.handler import TurnRequest
from billing_copilot.app import CopilotApp
from billing_copilot.config import AppConfig
from billing_copilot.errors import CopilotError
from tests.fakes import USER_ID, FakeModelClient, text_response


def _config(tmp_path, **assistant):
    return AppConfig(storage={"db_path": str(tmp_path / "app.db")}, assistant=assistant)


async def test_app_runs_a_turn_and_closes_the_model(tmp_path):
    model = FakeModelClient([text_response("Vous avez 0 facture.")])
    app = CopilotApp(_config(tmp_path), model_client=model)
    await app.start()
    try:
        collector = EventCollector()
        outcome = await app.run_turn(TurnRequest(user_id=USER_ID, message="Liste mes factures"), collector)
    finally:
        await app.stop()

    assert outcome == TurnOutcome.COMPLETED
    assert collector.types[0] == EventType.USAGE
    assert collector.types[-1] == EventType.MESSAGE_COMPLETE
    assert len(app.tool_registry) == 8
    assert len(model.tools_seen[0]) == 8
    assert model.closed


async def test_orchestrator_requires_start(tmp_path):
    app = CopilotApp(_config(tmp_path), model_client=FakeModelClient())

    with pytest.raises(RuntimeError):
        app.orchestrator


async def test_start_without_configured_provider_fails(tmp_path):
    app = CopilotApp(_config(tmp_path))
    try:
        with pytest.raises(CopilotError, match="Aucune clé API"):
            await app.start()
    finally:
        await app.stop()


async def test_configured_currency_rates_reach_the_tool(tmp_path):
    app = CopilotApp(_config(tmp_path, currency_rates={"EUR": 3.5}), model_client=FakeModelClient())
    await app.start()
    try:
        tool = app.tool_registry.require("convert_currency")
        assert tool.convert(10, "EUR", "TND") == pytest.approx(35.0)
    finally:
        await app.stop()
