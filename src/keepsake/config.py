"""Pipeline configuration.

Values come from dataclass defaults, overridden by ``KEEPSAKE_*`` environment
variables (a ``.env`` file in the working tree is loaded first).
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

DEFAULT_HOME = Path.home() / ".keepsake"
BACKENDS = ("http", "groq", "local")


@dataclass
class MemoryConfig:
    """Configuration for the memory pipeline.

    Attributes:
        db_path: SQLite database file.
        transcripts_dir: Directory holding chat transcripts.
        backend: Extraction backend: "http", "groq" or "local".
        service_url: Endpoint for the "http" backend.
        service_token: Bearer token sent to the endpoint.
        groq_api_key: API key for the "groq" backend.
        groq_model: Model used by the "groq" backend.
        timeout: Hard ceiling in seconds for one extraction, retries included.
        max_retries: Retries of transient transport failures.
        backoff: Delays in seconds between retries.
        recent_turns: User turns sent per extraction.
        known_facts_limit: Stored facts sent as already known.
        log_dir: Directory for the JSONL event log (None to disable).
        verbose: Log per-rule and per-attempt detail.
    """

    db_path: Path = field(default_factory=lambda: DEFAULT_HOME / "memory.db")
    transcripts_dir: Path = field(default_factory=lambda: DEFAULT_HOME / "transcripts")
    backend: str = "http"
    service_url: str | None = None
    service_token: str | None = None
    groq_api_key: str | None = None
    groq_model: str = "llama-3.1-70b-versatile"
    timeout: float = 20.0
    max_retries: int = 2
    backoff: tuple[float, ...] = (0.25, 0.8)
    recent_turns: int = 6
    known_facts_limit: int = 25
    log_dir: Path | None = None
    verbose: bool = False

    def __post_init__(self) -> None:
        """Validate config."""
        if self.backend not in BACKENDS:
            raise ValueError(f"backend must be one of {', '.join(BACKENDS)}")
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if self.max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        if any(delay < 0 for delay in self.backoff):
            raise ValueError("backoff delays cannot be negative")
        if self.recent_turns < 1:
            raise ValueError("recent_turns must be at least 1")
        if self.known_facts_limit < 0:
            raise ValueError("known_facts_limit cannot be negative")

    @classmethod
    def from_env(cls) -> "MemoryConfig":
        """Build a config from the environment and a ``.env`` file."""
        load_dotenv(find_dotenv(usecwd=True))

        kwargs: dict = {}
        home = os.getenv("KEEPSAKE_HOME")
        if home:
            home_path = Path(home).expanduser()
            kwargs["db_path"] = home_path / "memory.db"
            kwargs["transcripts_dir"] = home_path / "transcripts"

        if os.getenv("KEEPSAKE_DB_PATH"):
            kwargs["db_path"] = Path(os.environ["KEEPSAKE_DB_PATH"]).expanduser()
        if os.getenv("KEEPSAKE_TRANSCRIPTS_DIR"):
            kwargs["transcripts_dir"] = Path(os.environ["KEEPSAKE_TRANSCRIPTS_DIR"]).expanduser()
        if os.getenv("KEEPSAKE_LOG_DIR"):
            kwargs["log_dir"] = Path(os.environ["KEEPSAKE_LOG_DIR"]).expanduser()

        kwargs["service_url"] = os.getenv("KEEPSAKE_SERVICE_URL")
        kwargs["service_token"] = os.getenv("KEEPSAKE_SERVICE_TOKEN")
        kwargs["groq_api_key"] = os.getenv("GROQ_API_KEY")
        kwargs["groq_model"] = os.getenv("KEEPSAKE_GROQ_MODEL", cls.groq_model)

        backend = os.getenv("KEEPSAKE_BACKEND")
        if backend:
            kwargs["backend"] = backend.strip().lower()
        elif not kwargs["service_url"]:
            kwargs["backend"] = "groq" if kwargs["groq_api_key"] else "local"

        try:
            if os.getenv("KEEPSAKE_TIMEOUT"):
                kwargs["timeout"] = float(os.environ["KEEPSAKE_TIMEOUT"])
            if os.getenv("KEEPSAKE_MAX_RETRIES"):
                kwargs["max_retries"] = int(os.environ["KEEPSAKE_MAX_RETRIES"])
            if os.getenv("KEEPSAKE_BACKOFF"):
                kwargs["backoff"] = tuple(
                    float(part) for part in os.environ["KEEPSAKE_BACKOFF"].split(",") if part.strip()
                )
            if os.getenv("KEEPSAKE_RECENT_TURNS"):
                kwargs["recent_turns"] = int(os.environ["KEEPSAKE_RECENT_TURNS"])
            if os.getenv("KEEPSAKE_KNOWN_FACTS_LIMIT"):
                kwargs["known_facts_limit"] = int(os.environ["KEEPSAKE_KNOWN_FACTS_LIMIT"])
        except ValueError as e:
            raise ValueError(f"Invalid KEEPSAKE_* setting: {e}") from e

        kwargs["verbose"] = os.getenv("KEEPSAKE_VERBOSE", "").lower() in ("1", "true", "yes")

        return cls(**kwargs)
