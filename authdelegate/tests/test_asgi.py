"""Tests for :mod:`authdelegate.asgi`."""

import asyncio
import json
import os
import tempfile
from unittest import TestCase, mock

from fastapi import FastAPI

from .. import asgi
from ..exceptions import InvalidOptions


class TestLoadApp(TestCase):
    """Tests for :func:`.asgi.load_app`."""

    def setUp(self):
        self.workdir = tempfile.TemporaryDirectory()
        patcher = mock.patch(f'{asgi.__name__}.setup_logger')
        patcher.start()
        self.addCleanup(patcher.stop)
        self.config_path = os.path.join(self.workdir.name, 'config.json')

    def tearDown(self):
        self.workdir.cleanup()

    def write_options(self, **document):
        with open(self.config_path, 'w') as f:
            json.dump(document, f)

    def test_load_app(self):
        """The app is built from the options file in the environment."""
        self.write_options(port=8080, upstreams=[
            {'url': 'http://sessions.test/auth', 'cookie_name': '_session'},
            {'url': 'http://fallback.test/auth'},
        ])
        with mock.patch.object(asgi.config, 'AUTHDELEGATE_CONFIG',
                               self.config_path):
            app = asgi.load_app()
        self.assertIsInstance(app, FastAPI)
        rules = [d.rule for d in app.state.dispatcher.delegates]
        self.assertEqual(rules[0].match_cookie, '_session')
        self.assertTrue(rules[1].is_default)

    def test_invalid_options(self):
        """Startup fails if the options are invalid."""
        self.write_options(port=8080)
        with mock.patch.object(asgi.config, 'AUTHDELEGATE_CONFIG',
                               self.config_path):
            with self.assertRaises(InvalidOptions):
                asgi.load_app()


class TestApplication(TestCase):
    """Tests for :func:`.asgi.application`."""

    @mock.patch.object(asgi, '_app', None)
    @mock.patch(f'{asgi.__name__}.load_app')
    def test_loads_once(self, mock_load_app):
        """The options are loaded on the first call only."""
        mock_load_app.return_value = mock.AsyncMock()
        scope = {'type': 'http'}
        receive, send = mock.AsyncMock(), mock.AsyncMock()
        asyncio.run(asgi.application(scope, receive, send))
        asyncio.run(asgi.application(scope, receive, send))
        self.assertEqual(mock_load_app.call_count, 1)
        self.assertEqual(mock_load_app.return_value.await_count, 2)
