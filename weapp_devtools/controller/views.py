from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, StringConstraints
from pydantic.alias_generators import to_camel

from weapp_devtools.config import ConnectionOverrides

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]

Transition = Literal['navigateTo', 'redirectTo', 'reLaunch', 'switchTab', 'navigateBack']


class ActionResult(BaseModel):
	"""What an action hands back to the caller: text for display, optional PNG screenshot, optional structured data."""

	text: str | None = None
	image: str | None = Field(default=None, description='base64 encoded PNG')
	data: Any = None


# Action Input Models
class ConnectionParams(BaseModel):
	model_config = ConfigDict(
		extra='forbid',
		alias_generator=to_camel,
		validate_by_alias=True,
		validate_by_name=True,
	)

	connection: ConnectionOverrides | None = None


class EnsureConnectionAction(ConnectionParams):
	reconnect: bool = False


class NavigateAction(ConnectionParams):
	path: NonEmptyStr | None = None
	query: dict[str, str] | None = None
	transition: Transition = 'navigateTo'
	wait_ms: NonNegativeInt | None = None


class ScreenshotAction(ConnectionParams):
	path: NonEmptyStr | None = None


class CallMethodAction(ConnectionParams):
	method: NonEmptyStr
	args: list[Any] | None = None


class GetConsoleLogsAction(ConnectionParams):
	clear: bool = False


class DataPathAction(ConnectionParams):
	path: NonEmptyStr | None = None


class SetDataAction(ConnectionParams):
	data: dict[str, Any]


class WaitForElementAction(ConnectionParams):
	selector: NonEmptyStr


class WaitForTimeoutAction(ConnectionParams):
	milliseconds: NonNegativeInt


class ElementAction(ConnectionParams):
	selector: NonEmptyStr
	# selector inside a custom component located by `selector`
	inner_selector: NonEmptyStr | None = None


class TapElementAction(ElementAction):
	wait_ms: NonNegativeInt | None = None


class InputTextAction(ElementAction):
	value: str | int | float


class ElementMethodAction(ElementAction):
	method: NonEmptyStr
	args: list[Any] | None = None


class ElementDataAction(ElementAction):
	path: NonEmptyStr | None = None


class ElementSetDataAction(ElementAction):
	data: dict[str, Any]


class InnerElementAction(ElementAction):
	target_selector: NonEmptyStr


class ElementWxmlAction(ElementAction):
	outer: bool = False
