"""Runtime settings: SQLite key/value records and layered resolution.

Resolution order for every known key is fixed:

1. the ``settings`` table (editable through the CLI and the web API),
2. the process environment,
3. the ``AppConfig`` default.

Pipelines receive a resolved ``AppConfig`` and never look settings up on
their own.
"""

from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Mapping

from docrag.config import ENV_VARS, AppConfig
from docrag.models import Setting


@dataclass(frozen=True, slots=True)
class SettingSpec:
    key: str
    field: str
    category: str
    description: str


KNOWN_SETTINGS: Dict[str, SettingSpec] = {
    spec.key: spec
    for spec in (
        SettingSpec(
            "openai_chat_model",
            "chat_model",
            "ai",
            "OpenAI chat model to use (gpt-4, gpt-4-turbo, gpt-4o, gpt-4o-mini)",
        ),
        SettingSpec(
            "openai_embedding_model",
            "embedding_model",
            "ai",
            "Embedding model; must keep the dimensionality the index was built with",
        ),
        SettingSpec(
            "openai_max_output_tokens",
            "max_output_tokens",
            "ai",
            "Maximum tokens for AI response generation",
        ),
        SettingSpec(
            "openai_context_budget",
            "context_budget",
            "ai",
            "Maximum tokens allocated for context chunks",
        ),
        SettingSpec(
            "log_level",
            "log_level",
            "system",
            "Application logging level (debug, info, warn, error)",
        ),
    )
}

_FIELD_TO_ENV = {field: var for var, field in ENV_VARS.items()}


class SettingsStore:
    """Persistence for administrator-editable settings."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        try:
            yield self._conn
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT,
                    description TEXT,
                    category TEXT NOT NULL DEFAULT 'general',
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_settings_category ON settings(category)")

    @staticmethod
    def _row_to_setting(row: sqlite3.Row) -> Setting:
        return Setting(
            key=row["key"],
            value=row["value"],
            category=row["category"],
            description=row["description"],
            updated_at=row["updated_at"],
        )

    def get(self, key: str) -> Setting | None:
        row = self._conn.execute("SELECT * FROM settings WHERE key = ?", (key,)).fetchone()
        return self._row_to_setting(row) if row else None

    def get_value(self, key: str, default: str | None = None) -> str | None:
        setting = self.get(key)
        return setting.value if setting else default

    def set(
        self,
        key: str,
        value: str | None,
        *,
        description: str | None = None,
        category: str = "general",
    ) -> Setting:
        if not key:
            raise ValueError("Setting key is required")
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO settings(key, value, description, category)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    description = COALESCE(excluded.description, settings.description),
                    category = excluded.category,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (key, value, description, category),
            )
        return self.get(key)  # type: ignore[return-value]

    def update_value(self, key: str, value: str | None) -> Setting | None:
        """Change the value of an existing setting; ``None`` when the key is unknown."""
        with self.transaction() as conn:
            cursor = conn.execute(
                "UPDATE settings SET value = ?, updated_at = CURRENT_TIMESTAMP WHERE key = ?",
                (value, key),
            )
        if cursor.rowcount == 0:
            return None
        return self.get(key)

    def all(self) -> List[Setting]:
        rows = self._conn.execute("SELECT * FROM settings ORDER BY category, key").fetchall()
        return [self._row_to_setting(row) for row in rows]

    def by_category(self, category: str) -> List[Setting]:
        rows = self._conn.execute(
            "SELECT * FROM settings WHERE category = ? ORDER BY key", (category,)
        ).fetchall()
        return [self._row_to_setting(row) for row in rows]

    def grouped(self) -> Dict[str, List[Setting]]:
        groups: Dict[str, List[Setting]] = {}
        for setting in self.all():
            groups.setdefault(setting.category, []).append(setting)
        return groups

    def count(self) -> int:
        return int(self._conn.execute("SELECT COUNT(*) FROM settings").fetchone()[0])

    def initialize_defaults(self, defaults: AppConfig | None = None) -> int:
        """Create missing known settings from ``defaults``. Returns how many were added."""
        defaults = defaults or AppConfig()
        added = 0
        for spec in KNOWN_SETTINGS.values():
            if self.get(spec.key) is not None:
                continue
            self.set(
                spec.key,
                str(getattr(defaults, spec.field)),
                description=spec.description,
                category=spec.category,
            )
            added += 1
        return added


class SettingsResolver:
    """Resolve configuration with precedence settings table > environment > defaults."""

    def __init__(
        self,
        store: SettingsStore | None = None,
        *,
        environ: Mapping[str, str] | None = None,
        defaults: AppConfig | None = None,
    ) -> None:
        self.store = store
        self.environ = os.environ if environ is None else environ
        self.defaults = defaults or AppConfig()

    def resolve(self, key: str) -> tuple[str | None, str]:
        """Return ``(value, layer)`` for a known setting key."""
        spec = KNOWN_SETTINGS.get(key)
        if spec is None:
            raise KeyError(f"Unknown setting: {key}")

        if self.store is not None:
            value = self.store.get_value(key)
            if value not in (None, ""):
                return value, "settings"

        env_var = _FIELD_TO_ENV.get(spec.field)
        if env_var and self.environ.get(env_var):
            return self.environ[env_var], "environment"

        return str(getattr(self.defaults, spec.field)), "default"

    def config(self) -> AppConfig:
        """Build the effective, validated configuration for one pipeline run."""
        env_values = {
            field: self.environ[var] for var, field in ENV_VARS.items() if self.environ.get(var)
        }
        config = self.defaults.with_overrides(env_values)
        if self.store is not None:
            stored = {}
            for spec in KNOWN_SETTINGS.values():
                value = self.store.get_value(spec.key)
                if value not in (None, ""):
                    stored[spec.field] = value
            config = config.with_overrides(stored)
        return config.validate()
