"""Parsing, serialization and tool definitions for the command protocol."""

import inspect
import json
import secrets
import time
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from flutter_mate.protocol.views import COMMAND_TYPES, BaseCommand, ParseResult

_BASE36 = '0123456789abcdefghijklmnopqrstuvwxyz'


def parse(data: Any) -> ParseResult:
	"""Validate raw input (JSON text, bytes or a mapping) into a Command.

	Checks run in a fixed order: input type, JSON decoding, object shape,
	presence and type of `action`, membership in the action set, and finally
	the variant's own fields. The first failing check decides the error.
	"""
	raw = data

	if isinstance(data, (bytes, bytearray)):
		try:
			data = bytes(data).decode('utf-8')
		except UnicodeDecodeError as e:
			return ParseResult.fail(f'parse error: {e}', raw=raw)

	if isinstance(data, str):
		try:
			data = json.loads(data)
		except json.JSONDecodeError as e:
			return ParseResult.fail(f'parse error: {e}', raw=raw)
		if not isinstance(data, dict):
			return ParseResult.fail(f'invalid input type: {type(data).__name__}', raw=raw)
	elif isinstance(data, Mapping):
		data = dict(data)
	else:
		return ParseResult.fail(f'invalid input type: {type(data).__name__}', raw=raw)

	request_id = data.get('id') if isinstance(data.get('id'), str) else None

	action = data.get('action')
	if action is None or action == '':
		return ParseResult.fail('missing required field: action', request_id, raw)
	if not isinstance(action, str):
		return ParseResult.fail("invalid value for field 'action': expected string", request_id, raw)

	command_cls = COMMAND_TYPES.get(action)
	if command_cls is None:
		return ParseResult.fail(f'unknown action: {action}', request_id, raw)

	try:
		command = command_cls.model_validate(data)
	except ValidationError as e:
		return ParseResult.fail(_describe_validation_error(e), request_id, raw)

	return ParseResult.ok(command, request_id, raw)


def _describe_validation_error(error: ValidationError) -> str:
	errors = error.errors()
	missing = [_field_name(e) for e in errors if e['type'] == 'missing']
	if missing:
		return f'missing required field: {", ".join(missing)}'
	first = errors[0]
	return f"invalid value for field '{_field_name(first)}': {first['msg']}"


def _field_name(error: Any) -> str:
	loc = error.get('loc') or ()
	return str(loc[0]) if loc else '?'


def command_to_dict(command: BaseCommand) -> dict[str, Any]:
	"""Wire representation of a command, without a request id."""
	return command.model_dump(by_alias=True, exclude_none=True, mode='json')


def serialize_command(command: BaseCommand, request_id: str | None = None) -> bytes:
	"""Serialize a command into its flattened wire form (no trailing newline)."""
	payload: dict[str, Any] = {}
	if request_id is not None:
		payload['id'] = request_id
	payload.update(command_to_dict(command))
	return json.dumps(payload, separators=(',', ':')).encode('utf-8')


def _to_base36(value: int) -> str:
	if value == 0:
		return '0'
	digits = []
	while value:
		value, rem = divmod(value, 36)
		digits.append(_BASE36[rem])
	return ''.join(reversed(digits))


def generate_request_id() -> str:
	"""Short, unique request id: base36 microseconds plus a random suffix."""
	micros = time.time_ns() // 1000
	suffix = _to_base36(secrets.randbelow(36**6)).rjust(6, '0')
	return f'{_to_base36(micros)}_{suffix}'


# ── Tool definitions ─────────────────────────────────────────────────────────


def _clean_property(prop: dict[str, Any]) -> dict[str, Any]:
	prop = {k: v for k, v in prop.items() if k != 'title'}

	# `X | None` renders as anyOf[X, null]; tools only need the plain type
	any_of = prop.pop('anyOf', None)
	if any_of is not None:
		non_null = [option for option in any_of if option.get('type') != 'null']
		if len(non_null) == 1:
			prop = {**non_null[0], **prop}
		else:
			prop['anyOf'] = non_null
	if prop.get('default', ...) is None:
		del prop['default']
	return prop


def tool_definition(command_cls: type[BaseCommand]) -> dict[str, Any]:
	schema = command_cls.model_json_schema(by_alias=True)
	properties = {
		name: _clean_property(prop) for name, prop in schema.get('properties', {}).items() if name != 'action'
	}
	input_schema: dict[str, Any] = {'type': 'object', 'properties': properties}
	required = [name for name in schema.get('required', []) if name != 'action']
	if required:
		input_schema['required'] = required

	return {
		'name': command_cls.action_name(),
		'description': inspect.cleandoc(command_cls.__doc__ or ''),
		'inputSchema': input_schema,
	}


def tool_definitions() -> list[dict[str, Any]]:
	"""One tool per action, generated from the same models `parse` validates against."""
	return [tool_definition(cls) for cls in COMMAND_TYPES.values()]
