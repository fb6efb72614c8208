import aiohttp
import pytest
from aioresponses import aioresponses

from agent_scheduler.executors.http import HttpAgentExecutor, HttpExecutorSettings


@pytest.fixture(scope="function")
def http_executor():
    return HttpAgentExecutor(HttpExecutorSettings(
        base_url="https://agents.example.com/",
        headers={"Authorization": "Bearer token"},
        body={"trigger": "cron"},
        timeout=30,
    ))


def test_url_for(http_executor):
    assert http_executor.url_for("agent-1") == "https://agents.example.com/agents/agent-1/run"


@pytest.mark.asyncio
async def test_execute_success(http_executor):
    with aioresponses() as m:
        m.post(
            'https://agents.example.com/agents/agent-1/run',
            status=200,
            body='{"result": "success"}'
        )

        result = await http_executor.execute("agent-1")

        assert result == {"status": 200, "body": '{"result": "success"}'}


@pytest.mark.asyncio
async def test_execute_error_status_raises(http_executor):
    with aioresponses() as m:
        m.post('https://agents.example.com/agents/agent-1/run', status=503, body="unavailable")

        with pytest.raises(aiohttp.ClientResponseError) as exc_info:
            await http_executor.execute("agent-1")

        assert exc_info.value.status == 503


@pytest.mark.asyncio
async def test_execute_connection_error_raises(http_executor):
    with aioresponses() as m:
        m.post(
            'https://agents.example.com/agents/agent-1/run',
            exception=aiohttp.ClientConnectionError("Connection error")
        )

        with pytest.raises(aiohttp.ClientConnectionError, match="Connection error"):
            await http_executor.execute("agent-1")
