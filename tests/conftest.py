"""Shared fixtures for Gatekeeper tests.

All tests use real components wired the way ComponentFactory wires them.
The host is an in-process implementation of the Executor and
HostStateReader contracts. Tests requiring PostgreSQL use a skip marker
when it is unavailable.
"""

from __future__ import annotations

import os
import threading
from pathlib import Path
from typing import Any, Optional

import pytest
from dotenv import load_dotenv

# Load .env from project root so DATABASE_URL is available
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

from gatekeeper.confidence.factors import FactorResult, ScoringFactor
from gatekeeper.core.config import AppConfig, DatabaseConfig, GatekeeperConfig, load_config
from gatekeeper.core.factory import ComponentFactory, GatekeeperContext
from gatekeeper.core.host import Executor, HostStateReader
from gatekeeper.core.models import (
    ConfidenceFactor,
    ExecutionOutcome,
    HostState,
    SheetInfo,
    ThresholdSet,
)
from gatekeeper.db.store import MemoryStore, Store
from gatekeeper.rules.corpus import RuleCorpus, load_rule_corpus


# ---------------------------------------------------------------------------
# Service availability checks
# ---------------------------------------------------------------------------

def _get_db_config() -> DatabaseConfig:
    """Build a DatabaseConfig from environment or defaults."""
    db_url = os.getenv("DATABASE_URL")
    if db_url and db_url.startswith("postgresql://"):
        from urllib.parse import urlparse
        parsed = urlparse(db_url)
        return DatabaseConfig(
            host=parsed.hostname or "localhost",
            port=parsed.port or 5432,
            dbname=(parsed.path[1:] if parsed.path and len(parsed.path) > 1 else "gatekeeper"),
            user=parsed.username or "gatekeeper",
            password=parsed.password or "gatekeeper",
        )
    return DatabaseConfig()


def _postgres_available() -> bool:
    """Check if PostgreSQL is reachable."""
    try:
        import psycopg
        conn = psycopg.connect(_get_db_config().connection_string, connect_timeout=5)
        conn.close()
        return True
    except Exception:
        return False


requires_postgres = pytest.mark.skipif(
    not _postgres_available(),
    reason="PostgreSQL not available",
)


# ---------------------------------------------------------------------------
# In-process host
# ---------------------------------------------------------------------------

class FakeHost(Executor, HostStateReader):
    """Creates elements in memory and records every call it receives.

    ``fail_with`` makes the next calls report failure; ``block`` holds each
    call until the event is set (for timeout tests); ``overrides`` changes
    what the created element reports for a property (for verification tests).
    """

    def __init__(self, state: Optional[HostState] = None):
        self.state = state
        self.elements: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.fail_with: Optional[str] = None
        self.block: Optional[threading.Event] = None
        self.overrides: dict[str, Any] = {}
        self._next_id = 1000
        self._lock = threading.Lock()

    def execute(self, method_name: str, parameters: dict[str, Any]) -> ExecutionOutcome:
        with self._lock:
            self.calls.append((method_name, dict(parameters)))
        if self.block is not None:
            self.block.wait(timeout=5)
        if self.fail_with is not None:
            return ExecutionOutcome(success=False, error_message=self.fail_with)
        with self._lock:
            self._next_id += 1
            element_id = str(self._next_id)
            element = {"category": method_name, **parameters, **self.overrides}
            self.elements[element_id] = element
        return ExecutionOutcome(success=True, result={"elementId": element_id})

    def read_state(self) -> Optional[HostState]:
        return self.state

    def get_element(self, element_id: str) -> Optional[dict[str, Any]]:
        element = self.elements.get(str(element_id))
        return dict(element) if element is not None else None


class FixedScoreFactor(ScoringFactor):
    """Scores every operation the same; pins overall confidence in tests."""

    name = "fixed"

    def __init__(self, score: float, weight: float = 1.0):
        super().__init__(weight)
        self.score = score

    def evaluate(self, method_name, parameters):
        return FactorResult(
            factor=ConfidenceFactor(
                name=self.name, score=self.score, weight=self.weight, reason="fixed for test",
            )
        )


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def config_dir() -> Path:
    return Path(__file__).parent.parent / "config"


@pytest.fixture
def app_config(config_dir: Path) -> AppConfig:
    return load_config(config_dir=config_dir)


@pytest.fixture
def gk_config() -> GatekeeperConfig:
    return GatekeeperConfig(thresholds=ThresholdSet(high=0.9, medium=0.5, low=0.3))


@pytest.fixture
def rule_corpus(config_dir: Path) -> RuleCorpus:
    return load_rule_corpus(config_dir / "rules.yaml")


# ---------------------------------------------------------------------------
# Host fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def multi_family_state() -> HostState:
    return HostState(
        document_title="Harbor View Apartments",
        project_info={"architect": "SOP Architects"},
        levels=["Level 1", "Level 2", "Level 3", "Level 4"],
        sheets=[
            SheetInfo(number="A1.1.1", name="FIRST FLOOR PLAN"),
            SheetInfo(number="A1.1.2", name="SECOND FLOOR PLAN"),
            SheetInfo(number="A4.0.1", name="ELEVATIONS"),
        ],
        rooms=[f"Unit {n}" for n in range(24)],
        element_counts={"doors": 40, "walls": 300},
    )


@pytest.fixture
def host(multi_family_state: HostState) -> FakeHost:
    return FakeHost(state=multi_family_state)


# ---------------------------------------------------------------------------
# Context fixtures
# ---------------------------------------------------------------------------

def build_context(
    host: FakeHost,
    score: Optional[float] = None,
    config: Optional[AppConfig] = None,
    corpus: Optional[RuleCorpus] = None,
    config_dir: Optional[Path] = None,
    store: Optional[Store] = None,
) -> GatekeeperContext:
    """Wire a full context on a memory store.

    With ``score`` set, the calculator's factors are replaced by a single
    FixedScoreFactor so overall confidence equals ``score`` exactly.
    """
    config = config or AppConfig(
        gatekeeper=GatekeeperConfig(thresholds=ThresholdSet(high=0.9, medium=0.5, low=0.3)),
    )
    context = ComponentFactory.create(
        executor=host,
        host_reader=host,
        config=config,
        config_dir=config_dir or Path(__file__).parent.parent / "config",
        store=store or MemoryStore(),
        corpus=corpus,
    )
    if score is not None:
        context.orchestrator.calculator.factors = [FixedScoreFactor(score)]
    return context


@pytest.fixture
def context(host: FakeHost):
    ctx = build_context(host)
    yield ctx
    ctx.close()


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

GATEKEEPER_TABLES = ("envelopes", "review_items", "feedback_records", "learned_patterns")


@pytest.fixture
def db_config() -> DatabaseConfig:
    return _get_db_config()


@pytest.fixture
def db_engine(db_config):
    """Real PostgreSQL engine — creates schema, yields, empties the tables."""
    from gatekeeper.db.engine import DatabaseEngine
    engine = DatabaseEngine(db_config)
    engine.initialize_schema()
    yield engine
    engine.execute(f"TRUNCATE {', '.join(GATEKEEPER_TABLES)}")
    engine.close()


@pytest.fixture
def repository(db_engine):
    from gatekeeper.db.repository import Repository
    return Repository(db_engine)
