import os
import unittest

from gls.config import (
    DEFAULT_BASE_URL,
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_MIN_REFRESH_MINUTES,
    DEFAULT_STALE_DAYS,
    load_settings,
    split_csv,
)
from gls.errors import ConfigError


class LoadSettingsTests(unittest.TestCase):
    def test_missing_token_raises_config_error(self) -> None:
        with self.assertRaises(ConfigError):
            load_settings({})
        with self.assertRaises(ConfigError):
            load_settings({"GITLAB_TOKEN": "   "})

    def test_defaults_select_membership_mode(self) -> None:
        settings = load_settings({"GITLAB_TOKEN": "tok"})

        self.assertEqual(settings.token, "tok")
        self.assertEqual(settings.base_url, DEFAULT_BASE_URL)
        self.assertEqual(settings.paths, ())
        self.assertTrue(settings.membership_mode)
        self.assertEqual(settings.max_concurrency, DEFAULT_MAX_CONCURRENCY)
        self.assertEqual(settings.stale_days, DEFAULT_STALE_DAYS)
        self.assertEqual(settings.min_refresh_minutes, DEFAULT_MIN_REFRESH_MINUTES)
        self.assertFalse(settings.db_path.startswith("~"))
        self.assertIsNone(settings.clone_dir)

    def test_group_paths_are_trimmed_and_ordered(self) -> None:
        settings = load_settings({
            "GITLAB_TOKEN": "tok",
            "GITLAB_PATHS": " acme/backend , ,acme/frontend ",
            "GITLAB_BASE_URL": "https://gitlab.example.com/",
        })

        self.assertEqual(settings.paths, ("acme/backend", "acme/frontend"))
        self.assertFalse(settings.membership_mode)
        self.assertEqual(settings.base_url, "https://gitlab.example.com")

    def test_invalid_numbers_fall_back_to_defaults(self) -> None:
        settings = load_settings({
            "GITLAB_TOKEN": "tok",
            "GLS_MAX_CONCURRENCY": "lots",
            "GLS_STALE_DAYS": "0",
            "GLS_REFRESH_MIN_INTERVAL_MINUTES": "-5",
            "GLS_PER_PAGE": "50",
        })

        self.assertEqual(settings.max_concurrency, DEFAULT_MAX_CONCURRENCY)
        self.assertEqual(settings.stale_days, DEFAULT_STALE_DAYS)
        self.assertEqual(settings.min_refresh_minutes, DEFAULT_MIN_REFRESH_MINUTES)
        self.assertEqual(settings.per_page, 50)

    def test_flags_and_clone_directory(self) -> None:
        settings = load_settings({
            "GITLAB_TOKEN": "tok",
            "GLS_LOG": "true",
            "GLS_DEBUG": "0",
            "GITLAB_CLONE_DIRECTORY": "~/src",
            "GLS_POST_CLONE_ACTION": "code .",
        })

        self.assertTrue(settings.log_info)
        self.assertFalse(settings.debug)
        self.assertEqual(settings.clone_dir, os.path.expanduser("~/src"))
        self.assertEqual(settings.post_clone_action, "code .")

    def test_non_http_base_url_is_rejected(self) -> None:
        with self.assertRaises(ConfigError):
            load_settings({"GITLAB_TOKEN": "tok", "GITLAB_BASE_URL": "gitlab.example.com"})

    def test_overrides_replace_loaded_values(self) -> None:
        settings = load_settings({"GITLAB_TOKEN": "tok"}, db_path=":memory:", max_concurrency=2)

        self.assertEqual(settings.db_path, ":memory:")
        self.assertEqual(settings.max_concurrency, 2)


class SplitCsvTests(unittest.TestCase):
    def test_blank_items_are_dropped(self) -> None:
        self.assertEqual(split_csv("a, b,,c ,"), ["a", "b", "c"])
        self.assertEqual(split_csv(None), [])


if __name__ == "__main__":
    unittest.main()
