"""Tests for dotenv parsing, variable substitution and secret stores."""

from pathlib import Path

import pytest

from pangolin.configuration.secrets import (
    EnvironmentSecretStore,
    MappingSecretStore,
    create_secret_store,
)
from pangolin.configuration.substitution import (
    find_secret_names,
    load_dotenv,
    parse_dotenv,
    resolve_secret_tree,
    substitute,
    substitute_tree,
)
from pangolin.core.errors import ConfigError


class TestParseDotenv:
    """Test dotenv parsing."""

    def test_basic_pairs(self) -> None:
        """Test comments, blanks, export and quotes."""
        text = "\n".join(
            [
                "# comment",
                "",
                "PORT=8080",
                "export HOST = example.test ",
                'TITLE="My App"',
                "QUOTE='single'",
                "EQUALS=a=b",
                "not a pair",
                "=novalue",
            ]
        )
        assert parse_dotenv(text) == {
            "PORT": "8080",
            "HOST": "example.test",
            "TITLE": "My App",
            "QUOTE": "single",
            "EQUALS": "a=b",
        }

    def test_mismatched_quotes_kept(self) -> None:
        """Test only a matching pair of quotes is stripped."""
        assert parse_dotenv("A=\"x'") == {"A": "\"x'"}

    def test_load_missing_file(self, temp_dir: Path) -> None:
        """Test a missing dotenv file yields an empty overlay."""
        assert load_dotenv(temp_dir / ".env") == {}

    def test_load_file(self, temp_dir: Path) -> None:
        """Test a dotenv file is read."""
        (temp_dir / ".env").write_text("DB_HOST=db.local\n")
        assert load_dotenv(temp_dir / ".env") == {"DB_HOST": "db.local"}


class TestSubstitute:
    """Test ${NAME} substitution."""

    def test_overlay_beats_environment(self) -> None:
        """Test the dotenv overlay has precedence over the process environment."""
        assert substitute("${PORT}", {"PORT": "1"}, {"PORT": "2"}) == "1"

    def test_environment_fallback(self) -> None:
        """Test the environment is consulted when the overlay lacks the name."""
        assert substitute("http://${HOST}:80", {}, {"HOST": "h"}) == "http://h:80"

    def test_default_value(self) -> None:
        """Test ${NAME:-default} falls back to the default."""
        assert substitute("${PORT:-8080}", {}, {}) == "8080"
        assert substitute("${PORT:-}", {}, {}) == ""

    def test_unresolved_left_verbatim(self) -> None:
        """Test unknown names without a default stay as written."""
        assert substitute("${MISSING}/x", {}, {}) == "${MISSING}/x"

    def test_secret_tokens_untouched(self) -> None:
        """Test secret placeholders are reserved."""
        assert substitute("${secret:db}", {"secret:db": "x"}, {}) == "${secret:db}"

    def test_idempotent(self) -> None:
        """Test applying substitution twice changes nothing further."""
        overlay = {"A": "1"}
        once = substitute("${A}-${B}-${C:-c}", overlay, {})
        assert substitute(once, overlay, {}) == once == "1-${B}-c"

    def test_tree(self) -> None:
        """Test nested dicts and lists are substituted, other scalars kept."""
        tree = {"a": ["${X}", 3], "b": {"c": "${X}"}, "d": True}
        assert substitute_tree(tree, {"X": "v"}, {}) == {
            "a": ["v", 3],
            "b": {"c": "v"},
            "d": True,
        }


class TestSecretPlaceholders:
    """Test secret discovery and resolution."""

    def test_find_secret_names(self) -> None:
        """Test names are collected sorted and de-duplicated."""
        tree = {"a": "${secret:zeta}", "b": ["${secret:alpha}", "${secret:zeta}"], "c": "${X}"}
        assert find_secret_names(tree) == ["alpha", "zeta"]

    def test_resolve_secret_tree(self) -> None:
        """Test known secrets are replaced and unknown ones kept."""
        tree = {"p": "pw=${secret:db}", "q": "${secret:other}"}
        assert resolve_secret_tree(tree, {"db": "s3"}) == {"p": "pw=s3", "q": "${secret:other}"}


class TestSecretStores:
    """Test secret store implementations."""

    def test_environment_store_key(self) -> None:
        """Test names are upper-cased with - and . mapped to _."""
        store = EnvironmentSecretStore(environ={"PANGOLIN_SECRETS_DB_ADMIN_PW": "x"})
        assert store.get("db-admin.pw") == "x"
        assert store.get("missing") is None

    def test_mapping_store(self) -> None:
        """Test the in-memory store."""
        assert MappingSecretStore({"a": "1"}).get("a") == "1"

    def test_create_secret_store(self) -> None:
        """Test store selection by name."""
        assert create_secret_store(None) is None
        assert isinstance(create_secret_store("env"), EnvironmentSecretStore)
        with pytest.raises(ConfigError):
            create_secret_store("vault")
