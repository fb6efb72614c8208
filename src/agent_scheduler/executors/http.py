from typing import Any, Dict, Optional

import aiohttp
from pydantic import BaseModel, Field

from agent_scheduler.executors.protocol import AgentExecutor


class HttpExecutorSettings(BaseModel):
    base_url: str = Field(..., description="Base URL of the service that runs agents")
    path_template: str = Field("/agents/{agent_id}/run", description="Path appended to the base URL")
    method: str = Field("POST", description="The HTTP method to use")
    headers: Dict[str, str] = Field(default={}, description="Optional headers to include in the request")
    body: Dict[str, Any] = Field(default={}, description="Optional body payload for the request")
    timeout: Optional[float] = Field(None, gt=0, description="Total request timeout in seconds")


class HttpAgentExecutor(AgentExecutor):
    """
    Agent executor that triggers a run through an HTTP call using aiohttp.
    Non-2xx responses are raised as ``aiohttp.ClientResponseError``.
    """

    def __init__(self, settings: HttpExecutorSettings):
        self.settings = settings

    def url_for(self, agent_id: str) -> str:
        return self.settings.base_url.rstrip("/") + self.settings.path_template.format(agent_id=agent_id)

    async def execute(self, agent_id: str) -> Dict[str, Any]:
        """
        Asynchronously run the agent by making an HTTP request.

        Args:
            agent_id (str): The agent to run.

        Returns:
            Dict[str, Any]: The response status and body.
        """
        session_kwargs: Dict[str, Any] = {}
        if self.settings.timeout:
            session_kwargs["timeout"] = aiohttp.ClientTimeout(total=self.settings.timeout)
        async with aiohttp.ClientSession(**session_kwargs) as session:
            async with session.request(
                method=self.settings.method,
                url=self.url_for(agent_id),
                headers=self.settings.headers,
                json=self.settings.body,
            ) as response:
                body = await response.text()
                response.raise_for_status()
                return {"status": response.status, "body": body}
