"""Tests for the app factory."""

import os
import unittest
from unittest.mock import patch

from bracketeer import create_app
from bracketeer.core.settings import EXTENSION_KEY, EngineSettings


class AppFactoryTestCase(unittest.TestCase):
    """Test case for the app factory."""

    def test_defaults(self):
        """The engine settings default to the five minute window and 30s turns."""
        app = create_app({"TESTING": True})

        settings = app.extensions[EXTENSION_KEY]
        self.assertEqual(settings.ready_window_ms, 300_000)
        self.assertEqual(settings.veto_ready_delay_ms, 30_000)
        self.assertEqual(settings.veto_turn_ms, 30_000)
        self.assertEqual(len(settings.default_map_pool), 10)
        self.assertEqual(settings.playoff_qualifiers_per_group, 2)

    def test_environment_overrides(self):
        """Timing and the default pool can be set from the environment."""
        env_vars = {
            "READY_CONFIRM_WINDOW_MS": "60000",
            "VETO_TURN_MS": "5000",
            "DEFAULT_MAP_POOL": " Alpha, Beta ,,Alpha",
        }

        with patch.dict(os.environ, env_vars):
            app = create_app({"TESTING": True})

        settings = EngineSettings.from_app(app)
        self.assertEqual(settings.ready_window_ms, 60_000)
        self.assertEqual(settings.veto_turn_ms, 5_000)
        self.assertEqual(settings.default_map_pool, ("Alpha", "Beta"))

    def test_test_config_wins(self):
        app = create_app({"TESTING": True, "VETO_READY_DELAY_MS": 1})

        self.assertEqual(EngineSettings.from_app(app).veto_ready_delay_ms, 1)

    @patch("bracketeer._init_firebase")
    def test_firebase_skipped_when_testing(self, mock_init):
        create_app({"TESTING": True})
        mock_init.assert_not_called()

        create_app({"TESTING": False})
        mock_init.assert_called_once()

    @patch("firebase_admin.initialize_app")
    @patch("firebase_admin.credentials.Certificate")
    def test_credentials_from_env(self, mock_certificate, mock_init_app):
        env_vars = {"FIREBASE_CREDENTIALS_JSON": '{"project_id": "bracket-test"}'}

        with patch.dict(os.environ, env_vars), patch("firebase_admin._apps", {}):
            create_app()

        mock_certificate.assert_called_once_with({"project_id": "bracket-test"})
        self.assertEqual(
            mock_init_app.call_args[0][1], {"projectId": "bracket-test"}
        )


class MapPoolSettingsTestCase(unittest.TestCase):
    """Test case for choosing a tournament's map pool."""

    def test_tournament_pool_or_default(self):
        settings = EngineSettings(default_map_pool=("a", "b", "c"))

        self.assertEqual(settings.map_pool_for({"mapPool": ["x", " y "]}), ["x", "y"])
        self.assertEqual(settings.map_pool_for({"mapPool": ["x"]}), ["a", "b", "c"])
        self.assertEqual(settings.map_pool_for(None), ["a", "b", "c"])

    def test_from_config_accepts_string_pool(self):
        settings = EngineSettings.from_config({"DEFAULT_MAP_POOL": "x,y", "VETO_TURN_MS": "bad"})

        self.assertEqual(settings.default_map_pool, ("x", "y"))
        self.assertEqual(settings.veto_turn_ms, 30_000)


if __name__ == "__main__":
    unittest.main()
