from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ValidationError

from weapp_devtools.controller.views import ActionResult
from weapp_devtools.exceptions import ConfigurationError, UserError

logger = logging.getLogger(__name__)


@dataclass
class RegisteredAction:
	name: str
	description: str
	param_model: type[BaseModel]
	function: Callable[[Any], Awaitable[ActionResult]]

	def schema(self) -> dict[str, Any]:
		return {'name': self.name, 'description': self.description, 'parameters': self.param_model.model_json_schema(by_alias=True)}


class Registry:
	"""Named actions with a pydantic parameter model each."""

	def __init__(self, exclude_actions: list[str] | None = None):
		self.actions: dict[str, RegisteredAction] = {}
		self.exclude_actions = exclude_actions or []

	def action(self, description: str, param_model: type[BaseModel], name: str | None = None):
		def decorator(func: Callable[[Any], Awaitable[ActionResult]]):
			action_name = name or func.__name__
			if action_name in self.exclude_actions:
				return func
			if action_name in self.actions:
				raise ValueError(f'Action {action_name!r} is already registered')
			self.actions[action_name] = RegisteredAction(action_name, description, param_model, func)
			return func

		return decorator

	def validate_params(self, action: RegisteredAction, params: dict[str, Any] | None) -> BaseModel:
		try:
			return action.param_model.model_validate(params or {})
		except ValidationError as e:
			problems = []
			connection_problem = False
			for item in e.errors():
				loc = item.get('loc', ())
				connection_problem = connection_problem or (bool(loc) and loc[0] == 'connection')
				problems.append(f'{".".join(str(part) for part in loc) or "<root>"}: {item.get("msg")}')
			message = f'Invalid parameters for {action.name}: {"; ".join(problems)}'
			if connection_problem:
				raise ConfigurationError(message) from e
			raise UserError(message) from e

	async def execute_action(self, name: str, params: dict[str, Any] | None = None) -> ActionResult:
		action = self.actions.get(name)
		if action is None:
			raise UserError(f'Unknown action {name!r}. Available actions: {", ".join(sorted(self.actions))}')
		validated = self.validate_params(action, params)
		logger.debug(f'▶️ {name}({validated.model_dump(exclude_none=True)})')
		return await action.function(validated)

	def schemas(self) -> list[dict[str, Any]]:
		return [action.schema() for action in self.actions.values()]
