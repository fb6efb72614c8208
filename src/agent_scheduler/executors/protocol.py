from typing import Any, Protocol


class AgentExecutor(Protocol):
    """
    Protocol class for agent executors.
    """

    async def execute(self, agent_id: str) -> Any:
        """
        Run the agent to completion.

        Args:
            agent_id (str): The agent to run.

        Raises:
            Exception: Any error is treated by the scheduler as a failed execution.
        """
        ...
