"""
OpenAI-compatible Planner
-------------------------
Chat-completions backend over httpx.

API key is read from the environment by name and never enters the
conversation history.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
import json
import logging
import os

import httpx

from core.errors import PlanningError
from infra.config import PlannerSettings
from tools.registry import ToolDescriptor
from .adapter import Final, PlannerAdapter, PlannerOutput, Proposed, ProposedCall, build_system_prompt


class OpenAIChatPlanner(PlannerAdapter):
    """
    Planner backed by POST {base_url}/chat/completions with tool_choice=auto.

    Any transport error, non-2xx status or malformed body raises PlanningError.
    """

    name = "openai"

    def __init__(
        self,
        settings: PlannerSettings,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.settings = settings
        self._api_key = api_key or os.getenv(settings.api_key_env)
        self._logger = logging.getLogger("echo.planner.openai")
        self._client = httpx.AsyncClient(
            base_url=settings.base_url.rstrip("/"),
            timeout=settings.timeout_seconds,
            transport=transport,
        )

    def _get_headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": "Echo/1.0",
        }
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _build_payload(
        self,
        history: List[Dict[str, Any]],
        catalog: Sequence[ToolDescriptor]
    ) -> Dict[str, Any]:
        messages = [{"role": "system", "content": build_system_prompt(catalog)}]
        messages.extend(history)

        payload: Dict[str, Any] = {
            "model": self.settings.model,
            "messages": messages,
        }
        if catalog:
            payload["tools"] = [tool.to_openai_function() for tool in catalog]
            payload["tool_choice"] = "auto"
        if self.settings.temperature is not None:
            payload["temperature"] = self.settings.temperature
        return payload

    async def plan(
        self,
        history: List[Dict[str, Any]],
        catalog: Sequence[ToolDescriptor]
    ) -> PlannerOutput:
        payload = self._build_payload(history, catalog)
        start_time = datetime.now()

        try:
            response = await self._client.post(
                "/chat/completions", json=payload, headers=self._get_headers()
            )
        except httpx.TimeoutException as e:
            raise PlanningError("Planner request timed out") from e
        except httpx.HTTPError as e:
            raise PlanningError(f"Planner request failed: {e}") from e

        response_time = (datetime.now() - start_time).total_seconds() * 1000

        if response.status_code == 429:
            raise PlanningError("Planner rate limit exceeded")
        if response.status_code in (401, 403):
            raise PlanningError("Planner authentication failed")
        if not response.is_success:
            raise PlanningError(f"Planner returned status {response.status_code}")

        try:
            body = response.json()
            message = body["choices"][0]["message"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise PlanningError(f"Malformed planner response: {e}") from e

        output = self._parse_message(message)
        self._logger.info(
            f"Planner responded in {response_time:.0f}ms: "
            f"{'final' if isinstance(output, Final) else f'{len(output.tool_calls)} tool calls'}"
        )
        return output

    def _parse_message(self, message: Any) -> PlannerOutput:
        """Turn a chat-completions message into Final or Proposed."""
        if not isinstance(message, dict):
            raise PlanningError("Malformed planner response: message is not an object")

        content = message.get("content") or ""
        raw_calls = message.get("tool_calls") or []

        if not raw_calls:
            return Final(text=content)

        calls = []
        for raw in raw_calls:
            try:
                function = raw["function"]
                name = function["name"]
            except (KeyError, TypeError) as e:
                raise PlanningError(f"Malformed tool call in planner response: {e}") from e

            calls.append(ProposedCall(
                name=name,
                arguments=self._decode_arguments(function.get("arguments")),
                call_id=raw.get("id"),
            ))

        return Proposed(tool_calls=tuple(calls), message=content or None)

    @staticmethod
    def _decode_arguments(raw: Any) -> Any:
        """JSON-decode argument strings; keep undecodable input for the policy engine."""
        if raw is None or raw == "":
            return {}
        if not isinstance(raw, str):
            return raw
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return raw

    async def aclose(self) -> None:
        await self._client.aclose()
