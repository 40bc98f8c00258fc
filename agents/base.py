"""
Base class for components of the optimization loop.
"""

import logging
from typing import Any

from models.enums import AgentType
from models.events import SYSTEM_EXCEPTION, OptimizationEvent
from utils.event_bus import EventBus

logger_base = logging.getLogger(__name__)  # Use a specific logger


class BaseAgent:
    """Base class for loop components that publish events"""

    def __init__(
        self, agent_id: str, agent_type: AgentType, event_bus: EventBus | None = None
    ):
        self.agent_id = agent_id
        self.agent_type = agent_type
        self.event_bus = event_bus

    async def publish_event(
        self, event_type: str, payload: dict[str, Any], run_id: str | None = None
    ) -> None:
        """Publish an event to the event bus, if one is attached"""
        if self.event_bus is None:
            logger_base.debug(
                f"Agent {self.agent_id} has no event bus; dropping {event_type}"
            )
            return

        event = OptimizationEvent(
            event_type=event_type, payload=payload, source=self.agent_type, run_id=run_id
        )
        await self.event_bus.publish(event)

    async def handle_exception(
        self,
        exception: BaseException,
        context: dict[str, Any],
        run_id: str | None = None,
    ) -> None:
        """Log an exception with traceback and publish it as a system event"""
        error_details = {
            "error_type": type(exception).__name__,
            "error_message": str(exception),
            "context": context,
            "agent_id": self.agent_id,
        }
        logger_base.error(
            f"Exception in {self.agent_type.value} agent ({self.agent_id}): {str(exception)}",
            exc_info=exception,
        )
        await self.publish_event(
            SYSTEM_EXCEPTION, {"error_details": error_details}, run_id=run_id
        )
