"""
Tests for profile storage and environment configuration.
"""

import os
import stat
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from notionctl.config import NotionConfig, ProfileStore, load_config
from notionctl.errors import ErrorKind, NotionError


class TestProfileStore(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self.tmp.name) / "notionctl"

    def tearDown(self):
        self.tmp.cleanup()

    def test_save_and_load(self):
        ProfileStore(self.dir).save_token("work", "  secret_abc  ", "2022-06-28")

        store = ProfileStore(self.dir)
        self.assertEqual(store.load_auth("work"), ("secret_abc", "2022-06-28"))
        mode = stat.S_IMODE(os.stat(self.dir / "config.json").st_mode)
        self.assertEqual(mode, 0o600)

    def test_default_version(self):
        store = ProfileStore(self.dir)
        store.save_token("default", "tok")
        self.assertEqual(store.load_version("default"), "2025-09-03")
        store.save_version("default", "2026-01-01")
        self.assertEqual(ProfileStore(self.dir).load_version("default"), "2026-01-01")

    def test_missing_profile_is_auth_error(self):
        with self.assertRaises(NotionError) as cm:
            ProfileStore(self.dir).load_auth("nobody")
        self.assertEqual(cm.exception.kind, ErrorKind.AUTH)
        self.assertIn("auth login", str(cm.exception))

    def test_empty_token_rejected(self):
        with self.assertRaises(NotionError) as cm:
            ProfileStore(self.dir).save_token("default", "   ")
        self.assertEqual(cm.exception.kind, ErrorKind.VALIDATION)

    def test_corrupt_file(self):
        self.dir.mkdir(parents=True)
        (self.dir / "config.json").write_text("{not json", encoding="utf-8")
        with self.assertRaises(NotionError) as cm:
            ProfileStore(self.dir)
        self.assertEqual(cm.exception.kind, ErrorKind.VALIDATION)


class TestLoadConfig(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.store = ProfileStore(Path(self.tmp.name))

    def tearDown(self):
        self.tmp.cleanup()

    @patch.dict(os.environ, {"NOTIONCTL_TOKEN": "env-token"}, clear=True)
    def test_env_token_short_circuits_store(self):
        cfg = load_config("missing", store=self.store)
        self.assertEqual(cfg.token, "env-token")
        self.assertEqual(cfg.notion_version, "2025-09-03")

    @patch.dict(os.environ, {"NOTIONCTL_NOTION_VERSION": "2022-06-28"}, clear=True)
    def test_env_version_overrides_stored(self):
        self.store.save_token("default", "stored", "2025-09-03")
        cfg = load_config("default", store=self.store)
        self.assertEqual(cfg.token, "stored")
        self.assertEqual(cfg.notion_version, "2022-06-28")

    @patch.dict(
        os.environ,
        {
            "NOTIONCTL_TOKEN": "t",
            "NOTIONCTL_MAX_RETRIES": "2",
            "NOTIONCTL_BASE_URL": "http://localhost:9999/v1/",
            "NOTIONCTL_TIMEOUT_SEC": "nope",
            "NOTIONCTL_DEBUG": "1",
        },
        clear=True,
    )
    def test_env_overrides(self):
        cfg = load_config(store=self.store)
        self.assertEqual(cfg.max_retries, 2)
        self.assertEqual(cfg.base_url, "http://localhost:9999/v1")
        self.assertEqual(cfg.timeout_sec, 30.0)
        self.assertTrue(cfg.debug)

    @patch.dict(os.environ, {}, clear=True)
    def test_no_credentials(self):
        with self.assertRaises(NotionError) as cm:
            load_config("default", store=self.store)
        self.assertEqual(cm.exception.kind, ErrorKind.AUTH)

    def test_repr_redacts_token(self):
        text = repr(NotionConfig(token="secret_abc"))
        self.assertNotIn("secret_abc", text)
        self.assertIn("***REDACTED***", text)


if __name__ == "__main__":
    unittest.main()
