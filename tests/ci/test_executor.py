"""Tests for CommandExecutor: extension mapping, snapshot lookups and waits."""

import pytest
from conftest import login_snapshot

from flutter_mate.daemon.executor import CommandExecutor
from flutter_mate.exceptions import ActionFailedError
from flutter_mate.protocol import parse


def command(**payload):
	result = parse(payload)
	assert result.is_valid, result.error
	return result.command


class TestExtensionMapping:
	@pytest.mark.parametrize(
		'payload, extension, args',
		[
			({'action': 'tap', 'ref': 'w5'}, 'tap', {'ref': 'w5'}),
			({'action': 'tapAt', 'x': 10, 'y': 20}, 'tapAt', {'x': 10.0, 'y': 20.0}),
			({'action': 'doubleTap', 'ref': 'w5'}, 'doubleTap', {'ref': 'w5'}),
			({'action': 'longPress', 'ref': 'w5', 'durationMs': 800}, 'longPress', {'ref': 'w5', 'durationMs': 800}),
			({'action': 'hover', 'ref': 'w5'}, 'hover', {'ref': 'w5'}),
			({'action': 'drag', 'from': 'w1', 'to': 'w2'}, 'drag', {'fromRef': 'w1', 'toRef': 'w2'}),
			({'action': 'swipe', 'direction': 'left', 'distance': 300}, 'swipe', {'direction': 'left', 'distance': 300.0}),
			({'action': 'scroll', 'ref': 'w2', 'direction': 'down', 'amount': 250}, 'scroll', {'ref': 'w2', 'direction': 'down', 'distance': 250.0}),
			({'action': 'fill', 'ref': 'w4', 'text': 'me@example.com'}, 'setText', {'ref': 'w4', 'text': 'me@example.com'}),
			({'action': 'typeText', 'ref': 'w4', 'text': 'hi', 'delayMs': 20}, 'typeText', {'ref': 'w4', 'text': 'hi', 'delayMs': 20}),
			({'action': 'focus', 'ref': 'w4'}, 'focus', {'ref': 'w4'}),
			({'action': 'pressKey', 'key': 'enter'}, 'pressKey', {'key': 'enter'}),
			(
				{'action': 'keyDown', 'key': 'a', 'control': True},
				'keyDown',
				{'key': 'a', 'control': True, 'shift': False, 'alt': False, 'command': False},
			),
			({'action': 'toggle', 'ref': 'w7'}, 'toggle', {'ref': 'w7'}),
			({'action': 'toggle', 'ref': 'w7', 'value': False}, 'toggle', {'ref': 'w7', 'value': False}),
			({'action': 'select', 'ref': 'w8', 'value': 'Blue'}, 'select', {'ref': 'w8', 'value': 'Blue'}),
			({'action': 'navigate', 'route': '/settings'}, 'navigate', {'route': '/settings'}),
			({'action': 'back'}, 'back', {}),
			({'action': 'screenshot', 'selector': 'w3'}, 'screenshot', {'ref': 'w3'}),
			({'action': 'screenshot', 'fullPage': True}, 'screenshot', {'fullPage': True}),
		],
	)
	async def test_one_extension_call(self, fake_client, payload, extension, args):
		await CommandExecutor(fake_client).execute(command(**payload))
		assert fake_client.calls == [(extension, args)]

	async def test_clear_focuses_first(self, fake_client):
		await CommandExecutor(fake_client).execute(command(action='clear', ref='w4'))
		assert fake_client.calls == [('focus', {'ref': 'w4'}), ('clearText', {})]

	async def test_snapshot_options(self, fake_client):
		data = await CommandExecutor(fake_client).execute(command(action='snapshot', maxDepth=2, selector='w2'))
		assert fake_client.calls == [('snapshot', {'interactive': True, 'compact': False, 'depth': 2, 'fromRef': 'w2'})]
		assert data['nodes'][0]['ref'] == 'w0'

	async def test_returns_extension_payload(self, fake_client):
		fake_client.responses['screenshot'] = {'success': True, 'result': {'success': True, 'image': 'iVBOR', 'format': 'png'}}
		data = await CommandExecutor(fake_client).execute(command(action='screenshot'))
		assert data['image'] == 'iVBOR'

	async def test_failure_carries_app_error(self, fake_client):
		fake_client.responses['tap'] = {'success': False, 'error': 'Element not found: w99', 'result': {}}
		with pytest.raises(ActionFailedError, match='Element not found: w99'):
			await CommandExecutor(fake_client).execute(command(action='tap', ref='w99'))

	async def test_failure_without_message(self, fake_client):
		fake_client.responses['back'] = {'success': False, 'result': {}}
		with pytest.raises(ActionFailedError, match='back failed'):
			await CommandExecutor(fake_client).execute(command(action='back'))

	@pytest.mark.parametrize('action', ['connect', 'run', 'close', 'status'])
	async def test_daemon_actions_are_not_executed_here(self, fake_client, action):
		payload = {'action': action, 'uri': 'ws://x/ws'} if action == 'connect' else {'action': action}
		with pytest.raises(ValueError):
			await CommandExecutor(fake_client).execute(command(**payload))


class TestLookups:
	async def test_find(self, fake_client):
		data = await CommandExecutor(fake_client).execute(command(action='find', ref='w5'))
		assert data['widget'] == 'ElevatedButton'
		assert data['semantics']['label'] == 'Login'
		assert fake_client.calls == [('snapshot', {'interactive': False})]

	async def test_find_missing(self, fake_client):
		with pytest.raises(ActionFailedError, match='Element not found: w99'):
			await CommandExecutor(fake_client).execute(command(action='find', ref='w99'))

	async def test_get_text(self, fake_client):
		fake_client.responses['snapshot'] = {'success': True, 'result': login_snapshot('me@example.com')}
		executor = CommandExecutor(fake_client)
		assert (await executor.execute(command(action='getText', ref='w4')))['text'] == 'Email'
		assert (await executor.execute(command(action='getText', ref='w3')))['text'] == 'Welcome back'

	async def test_visibility(self, fake_client):
		executor = CommandExecutor(fake_client)
		assert (await executor.execute(command(action='isVisible', ref='w5')))['visible'] is True
		assert (await executor.execute(command(action='isVisible', ref='w6')))['visible'] is False
		assert (await executor.execute(command(action='isVisible', ref='w99')))['visible'] is False

	async def test_enabled_state(self, fake_client):
		executor = CommandExecutor(fake_client)
		assert (await executor.execute(command(action='isEnabled', ref='w4')))['enabled'] is True
		# hasEnabledState without isEnabled
		assert (await executor.execute(command(action='isEnabled', ref='w5')))['enabled'] is False
		# no enabled state at all
		assert (await executor.execute(command(action='isEnabled', ref='w3')))['enabled'] is True

	async def test_failed_snapshot(self, fake_client):
		fake_client.responses['snapshot'] = {'success': True, 'result': {'success': False, 'error': 'No render tree'}}
		with pytest.raises(ActionFailedError, match='No render tree'):
			await CommandExecutor(fake_client).execute(command(action='find', ref='w1'))


class TestWaits:
	async def test_fixed_wait(self, fake_client):
		assert await CommandExecutor(fake_client).execute(command(action='wait', milliseconds=0)) == {'waited': 0}
		assert fake_client.calls == []

	async def test_wait_for_element_state(self, fake_client):
		data = await CommandExecutor(fake_client).execute(command(action='wait', milliseconds=500, state='hidden', **{'for': 'w6'}))
		assert data['ref'] == 'w6'
		assert data['state'] == 'hidden'

	async def test_wait_for_element_state_timeout(self, fake_client):
		with pytest.raises(ActionFailedError, match='Timeout waiting for w5 to be enabled'):
			await CommandExecutor(fake_client).execute(command(action='wait', milliseconds=0, state='enabled', **{'for': 'w5'}))

	async def test_wait_for_pattern(self, fake_client):
		data = await CommandExecutor(fake_client).execute(command(action='waitFor', pattern='welcome'))
		assert data == {'ref': 'w3', 'text': 'Welcome back'}

	async def test_wait_for_matches_labels(self, fake_client):
		data = await CommandExecutor(fake_client).execute(command(action='waitFor', pattern='^log'))
		assert data == {'ref': 'w5', 'label': 'Login'}

	async def test_wait_for_timeout(self, fake_client):
		with pytest.raises(ActionFailedError, match='Timeout waiting for element matching: Dashboard'):
			await CommandExecutor(fake_client).execute(command(action='waitFor', pattern='Dashboard', timeout=50, poll=10))
		# checked at least once before giving up
		assert len(fake_client.calls) >= 2

	async def test_wait_for_disappear(self, fake_client):
		data = await CommandExecutor(fake_client).execute(command(action='waitForDisappear', pattern='Loading'))
		assert data == {'disappeared': True, 'pattern': 'Loading'}

	async def test_wait_for_disappear_timeout(self, fake_client):
		with pytest.raises(ActionFailedError, match='Timeout waiting for element to disappear'):
			await CommandExecutor(fake_client).execute(command(action='waitForDisappear', pattern='Welcome', timeout=0))

	async def test_wait_for_value_polls_until_match(self, fake_client):
		snapshots = iter([login_snapshot(''), login_snapshot('me@'), login_snapshot('me@example.com')])
		fake_client.responses['snapshot'] = lambda args: {'success': True, 'result': next(snapshots)}

		data = await CommandExecutor(fake_client).execute(
			command(action='waitForValue', ref='w4', pattern=r'@example\.com$', timeout=2000, poll=10)
		)
		assert data == {'ref': 'w4', 'value': 'me@example.com'}
		assert len(fake_client.calls) == 3

	async def test_invalid_pattern(self, fake_client):
		with pytest.raises(ActionFailedError, match='invalid pattern'):
			await CommandExecutor(fake_client).execute(command(action='waitFor', pattern='(unclosed'))
