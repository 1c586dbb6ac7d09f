from flutter_mate.protocol.service import generate_request_id, parse, serialize_command, tool_definitions
from flutter_mate.protocol.views import ACTIONS, COMMAND_TYPES, BaseCommand, Command, ParseResult, Request, Response

__all__ = [
	'ACTIONS',
	'COMMAND_TYPES',
	'BaseCommand',
	'Command',
	'ParseResult',
	'Request',
	'Response',
	'generate_request_id',
	'parse',
	'serialize_command',
	'tool_definitions',
]
