from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from streambot.profile import (
    DEFAULT_IMAGE_PROMPT,
    DEFAULT_WELCOME,
    EngineConfig,
    ProfileError,
    build_engine_config,
    ensure_bot_directories,
    load_bot_profile,
    personalize,
)

MINIMAL = """\
name: {name}
display_name: Test Bot
account: owner@example.com
instructions: Be helpful.
"""


class BotProfileTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        (self.root / "config" / "bots").mkdir(parents=True)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _write(self, name: str, body: str) -> None:
        (self.root / "config" / "bots" / f"{name}.yaml").write_text(body, encoding="utf-8")

    def _load(self, name: str):
        return load_bot_profile(name, repo_root=self.root, data_root=self.root / "data")

    def test_minimal_profile_gets_defaults(self) -> None:
        self._write("tester", MINIMAL.format(name="tester"))
        profile = self._load("tester")
        self.assertEqual(profile.display_name, "Test Bot")
        self.assertEqual(profile.welcome_message, DEFAULT_WELCOME)
        self.assertEqual(profile.image_prompt, DEFAULT_IMAGE_PROMPT)
        self.assertEqual(profile.tools, ())
        self.assertEqual(profile.commands, {})
        self.assertEqual(profile.parse_mode, "HTML")
        self.assertIsNone(profile.webhook_url)
        self.assertEqual(profile.engine, EngineConfig())
        self.assertEqual(profile.engine.conclusion_prefix, "TG_CONCLUSION ")
        self.assertEqual(profile.paths.db_path, self.root / "data" / "tester" / "memory.db")
        self.assertEqual(profile.paths.secrets_dir, self.root / "data" / "tester" / "secrets")

    def test_engine_section_and_commands(self) -> None:
        body = MINIMAL.format(name="tester") + (
            "tools: [get_time]\n"
            "commands:\n"
            "  /menu: Today's menu\n"
            "engine:\n"
            "  command_grammar: legacy\n"
            "  session_timeout_hours: 6\n"
            "  history_limit: 9999\n"
        )
        self._write("tester", body)
        profile = self._load("tester")
        self.assertEqual(profile.tools, ("get_time",))
        self.assertEqual(profile.commands, {"menu": "Today's menu"})
        self.assertEqual(profile.engine.conclusion_prefix, "CONCLUSION ")
        self.assertEqual(profile.engine.session_timeout_hours, 6.0)
        self.assertEqual(profile.engine.history_limit, 200)

    def test_missing_file(self) -> None:
        with self.assertRaises(ProfileError):
            self._load("nobody")

    def test_missing_required_keys(self) -> None:
        self._write("tester", "name: tester\ndisplay_name: Test Bot\n")
        with self.assertRaisesRegex(ProfileError, "account, instructions"):
            self._load("tester")

    def test_name_must_match_filename(self) -> None:
        self._write("tester", MINIMAL.format(name="other"))
        with self.assertRaisesRegex(ProfileError, "mismatch"):
            self._load("tester")

    def test_commands_cannot_override_builtins(self) -> None:
        self._write("tester", MINIMAL.format(name="tester") + "commands:\n  help: custom help\n")
        with self.assertRaisesRegex(ProfileError, "help"):
            self._load("tester")

    def test_tools_must_be_a_list(self) -> None:
        self._write("tester", MINIMAL.format(name="tester") + "tools: get_time\n")
        with self.assertRaises(ProfileError):
            self._load("tester")

    def test_ensure_directories(self) -> None:
        self._write("tester", MINIMAL.format(name="tester"))
        profile = self._load("tester")
        ensure_bot_directories(profile)
        self.assertTrue(profile.paths.secrets_dir.is_dir())

    def test_shipped_profiles_load(self) -> None:
        repo_root = Path(__file__).resolve().parent.parent
        for name in ("generic", "recipe"):
            profile = load_bot_profile(name, repo_root=repo_root, data_root=self.root)
            self.assertEqual(profile.name, name)
        recipe = load_bot_profile("recipe", repo_root=repo_root, data_root=self.root)
        self.assertEqual(sorted(recipe.commands), ["quick", "vegetarian"])
        self.assertIn("Mushroom risotto", recipe.commands["vegetarian"])
        self.assertTrue(recipe.image_prompt.startswith("What dish is this?"))
        generic = load_bot_profile("generic", repo_root=repo_root, data_root=self.root)
        self.assertEqual(generic.image_prompt, DEFAULT_IMAGE_PROMPT)
        self.assertIn("kitchen", recipe.engine.error_notice)


class EngineConfigTests(unittest.TestCase):
    def test_unknown_grammar_rejected(self) -> None:
        with self.assertRaises(ProfileError):
            build_engine_config({"command_grammar": "xml"})

    def test_empty_reset_marker_rejected(self) -> None:
        with self.assertRaises(ProfileError):
            build_engine_config({"reset_marker": "  "})

    def test_non_numeric_value_rejected(self) -> None:
        with self.assertRaises(ProfileError):
            build_engine_config({"session_timeout_hours": "soon"})

    def test_blank_error_notice_falls_back(self) -> None:
        self.assertEqual(build_engine_config({"error_notice": " "}).error_notice, EngineConfig().error_notice)


class PersonalizeTests(unittest.TestCase):
    def test_placeholders(self) -> None:
        self.assertEqual(personalize("Hi {user_name}, I'm {bot_name}.", "Recipe Bot", "Ana"), "Hi Ana, I'm Recipe Bot.")
        self.assertEqual(personalize("Hi {user_name}!", "Recipe Bot"), "Hi there!")


if __name__ == "__main__":
    unittest.main()
