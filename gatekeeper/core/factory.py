"""Component factory for Gatekeeper.

Creates and wires every component (store, rule corpus, calculator, review
queue, learner, coordinator, verifier, dispatcher, orchestrator) once at
process start. The resulting GatekeeperContext is passed by reference to
every entry point; there is no global instance.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from gatekeeper.confidence.calculator import ConfidenceCalculator
from gatekeeper.confidence.factors import (
    ArchitecturalValidationFactor,
    HistoricalAccuracyFactor,
    ParameterCompletenessFactor,
    RuleConsistencyFactor,
)
from gatekeeper.confidence.schemas import SchemaRegistry, default_schema_registry
from gatekeeper.confidence.validator import ArchitecturalValidator
from gatekeeper.core.config import AppConfig, default_config_dir, load_config, resolve_rules_path
from gatekeeper.core.exceptions import ConfigError
from gatekeeper.core.host import Executor, HostStateReader
from gatekeeper.core.observability import EventLog
from gatekeeper.db.store import GuardedStore, MemoryStore, Store
from gatekeeper.learning.feedback import FeedbackLearner
from gatekeeper.orchestrator.dispatch import HostDispatcher
from gatekeeper.orchestrator.orchestrator import Orchestrator
from gatekeeper.review.queue import ReviewQueue
from gatekeeper.review.sweeper import ExpirySweeper
from gatekeeper.rules.corpus import RuleCorpus, load_rule_corpus
from gatekeeper.rules.evaluator import RuleEvaluator
from gatekeeper.verification.verifier import PostExecutionVerifier
from gatekeeper.workflow.coordinator import PassCoordinator

logger = logging.getLogger("gatekeeper.factory")


@dataclass
class GatekeeperContext:
    """Everything an entry point needs, built once per process.

    Lifecycle is explicit: ``start()`` launches the expiry sweeper,
    ``close()`` stops it and releases the dispatcher and store.
    """

    config: AppConfig
    store: GuardedStore
    corpus: RuleCorpus
    schemas: SchemaRegistry
    validator: ArchitecturalValidator
    evaluator: RuleEvaluator
    host_reader: HostStateReader
    orchestrator: Orchestrator
    sweeper: ExpirySweeper
    events: EventLog

    @property
    def learner(self) -> FeedbackLearner:
        return self.orchestrator.learner

    @property
    def queue(self) -> ReviewQueue:
        return self.orchestrator.queue

    @property
    def coordinator(self) -> PassCoordinator:
        return self.orchestrator.coordinator

    def start(self) -> None:
        if self.config.gatekeeper.enabled:
            self.sweeper.start()

    def close(self) -> None:
        self.sweeper.stop()
        self.orchestrator.dispatcher.shutdown()
        self.store.close()
        logger.info("Gatekeeper context closed")


def _build_store(config: AppConfig) -> Store:
    if config.store.backend == "memory":
        return MemoryStore()
    if config.store.backend == "postgres":
        from gatekeeper.db.engine import DatabaseEngine
        from gatekeeper.db.repository import Repository

        engine = DatabaseEngine(config.database)
        if config.store.initialize_schema:
            engine.initialize_schema()
            logger.info("Database schema initialized")
        return Repository(engine)
    raise ConfigError(f"Unknown store backend: {config.store.backend}")


class ComponentFactory:
    """Factory for creating and wiring all Gatekeeper components.

    Usage:
        context = ComponentFactory.create(executor=host, host_reader=host)
        context.start()
        ...
        context.close()
    """

    @staticmethod
    def create(
        executor: Executor,
        host_reader: HostStateReader,
        config: Optional[AppConfig] = None,
        config_dir: Optional[Path] = None,
        env: Optional[str] = None,
        store: Optional[Store] = None,
        corpus: Optional[RuleCorpus] = None,
    ) -> GatekeeperContext:
        """Create and wire all components.

        Args:
            executor: Host execution collaborator.
            host_reader: Read-only host state collaborator.
            config: Preloaded config. Default: loaded from config_dir/env.
            config_dir: Path to config/ directory. Default: project root/config.
            env: Environment name for config overlay (e.g., "test").
            store: Storage backend override. Default: per ``store.backend``.
            corpus: Rule corpus override. Default: loaded from ``rules_path``.

        Returns:
            GatekeeperContext with all components ready; call ``start()``.
        """
        logger.info("Initializing components...")
        config_dir = config_dir or default_config_dir()
        if config is None:
            config = load_config(config_dir=config_dir, env=env)
        gk = config.gatekeeper

        guarded = GuardedStore(store or _build_store(config))

        if corpus is None:
            corpus = load_rule_corpus(resolve_rules_path(gk, config_dir))
        evaluator = RuleEvaluator(corpus)

        schemas = default_schema_registry()
        validator = ArchitecturalValidator()
        learner = FeedbackLearner(gk.feedback, store=guarded, thresholds=gk.thresholds_for)
        calculator = ConfidenceCalculator(
            factors=[
                ParameterCompletenessFactor(schemas),
                ArchitecturalValidationFactor(validator),
                RuleConsistencyFactor(evaluator, host_reader),
                HistoricalAccuracyFactor(learner),
            ],
            thresholds=gk.thresholds_for,
        )

        events = EventLog(jsonl_path=Path(gk.events_path) if gk.events_path else None)
        orchestrator = Orchestrator(
            config=gk,
            calculator=calculator,
            queue=ReviewQueue(gk.review_queue, store=guarded),
            learner=learner,
            coordinator=PassCoordinator(),
            verifier=PostExecutionVerifier(
                host_reader, schemas, gk.verification.default_tolerance,
            ),
            dispatcher=HostDispatcher(executor, gk.execution.timeout_seconds),
            schemas=schemas,
            store=guarded,
            events=events,
        )
        orchestrator.load()
        for warning in guarded.drain_errors():
            logger.warning("Startup: %s", warning)

        def sweep() -> list:
            # Runs on the sweeper thread, so its storage failures are drained here.
            try:
                return orchestrator.expire_reviews()
            finally:
                for warning in guarded.drain_errors():
                    logger.warning("Expiry sweep: %s", warning)

        sweeper = ExpirySweeper(sweep, gk.review_queue.sweep_interval_seconds)
        logger.info("All components initialized (store=%s)", config.store.backend)

        return GatekeeperContext(
            config=config,
            store=guarded,
            corpus=corpus,
            schemas=schemas,
            validator=validator,
            evaluator=evaluator,
            host_reader=host_reader,
            orchestrator=orchestrator,
            sweeper=sweeper,
            events=events,
        )
