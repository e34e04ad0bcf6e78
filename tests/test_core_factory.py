"""Tests for gatekeeper/core/factory.py — ComponentFactory.

Uses real component initialization on the memory store; the postgres
backend test is skipped when PostgreSQL is unavailable.
"""

import logging
import threading
import time

import pytest

from gatekeeper.core.config import AppConfig, GatekeeperConfig, ReviewQueueConfig, StoreConfig
from gatekeeper.core.exceptions import ConfigError, DatabaseError
from gatekeeper.core.factory import ComponentFactory, GatekeeperContext
from gatekeeper.db.repository import Repository
from gatekeeper.db.store import MemoryStore

from tests.conftest import FakeHost, build_context, requires_postgres


class FlakyStore(MemoryStore):
    """Memory store whose writes fail once ``failing`` is set."""

    def __init__(self):
        super().__init__()
        self.failing = False

    def save_envelope(self, envelope):
        if self.failing:
            raise DatabaseError("disk full")
        super().save_envelope(envelope)

    def save_review_item(self, item):
        if self.failing:
            raise DatabaseError("disk full")
        super().save_review_item(item)


class TestComponentFactory:
    def test_create_returns_context(self, config_dir, host):
        context = ComponentFactory.create(executor=host, host_reader=host, config_dir=config_dir)
        try:
            assert isinstance(context, GatekeeperContext)
            assert context.config.gatekeeper.thresholds.high == 0.85
            assert context.corpus.loaded
            assert context.learner is context.orchestrator.learner
            assert context.queue is context.orchestrator.queue
            assert len(context.orchestrator.calculator.factors) == 4
        finally:
            context.close()

    def test_env_overlay(self, config_dir, host):
        context = ComponentFactory.create(
            executor=host, host_reader=host, config_dir=config_dir, env="test",
        )
        try:
            assert context.config.gatekeeper.review_queue.max_size == 10
        finally:
            context.close()

    def test_unknown_store_backend(self, config_dir, host):
        config = AppConfig(store=StoreConfig(backend="redis"))
        with pytest.raises(ConfigError, match="Unknown store backend"):
            ComponentFactory.create(executor=host, host_reader=host, config=config,
                                    config_dir=config_dir)

    def test_missing_rules_file_is_not_fatal(self, tmp_path, host):
        config = AppConfig(gatekeeper=GatekeeperConfig(rules_path=str(tmp_path / "none.yaml")))
        context = ComponentFactory.create(executor=host, host_reader=host, config=config)
        try:
            assert not context.corpus.loaded
            assert context.corpus.load_error
        finally:
            context.close()


class TestLifecycle:
    def test_sweeper_expires_reviews(self):
        config = AppConfig(gatekeeper=GatekeeperConfig(
            review_queue=ReviewQueueConfig(expire_hours=0.0, sweep_interval_seconds=0.05),
        ))
        context = build_context(FakeHost(), score=0.7, config=config)
        context.start()
        try:
            result = context.orchestrator.process_operation("createWall", {"length": 10})
            assert result.in_review
            deadline = time.monotonic() + 2.0
            while time.monotonic() < deadline and context.queue.stats().expired_items == 0:
                time.sleep(0.02)
            assert context.queue.stats().expired_items == 1
            envelope = context.orchestrator.get_envelope(result.envelope.operation_id)
            assert envelope.status.value == "Expired"
        finally:
            context.close()

    def test_disabled_gate_does_not_start_sweeper(self):
        context = build_context(FakeHost(), config=AppConfig(gatekeeper=GatekeeperConfig(enabled=False)))
        context.start()
        try:
            assert not context.sweeper.running
        finally:
            context.close()

    def test_sweep_drains_storage_failures_on_its_own_thread(self, caplog):
        store = FlakyStore()
        config = AppConfig(gatekeeper=GatekeeperConfig(
            review_queue=ReviewQueueConfig(expire_hours=0.0),
        ))
        context = build_context(FakeHost(), score=0.7, config=config, store=store)
        try:
            result = context.orchestrator.process_operation("createWall", {"length": 10})
            assert result.in_review
            store.failing = True
            leftover: list[str] = []

            def run_sweep():
                context.sweeper.hook()
                leftover.extend(context.store.drain_errors())

            with caplog.at_level(logging.WARNING, logger="gatekeeper.factory"):
                worker = threading.Thread(target=run_sweep)
                worker.start()
                worker.join(timeout=5)

            assert leftover == []
            assert "Expiry sweep: Storage failure during save_review_item" in caplog.text
            assert context.queue.stats().expired_items == 1
        finally:
            context.close()


@requires_postgres
class TestPostgresBackend:
    def test_create_with_postgres_store(self, config_dir, db_config, host):
        config = AppConfig(database=db_config, store=StoreConfig(backend="postgres"))
        context = ComponentFactory.create(
            executor=host, host_reader=host, config=config, config_dir=config_dir,
        )
        try:
            assert isinstance(context.store.inner, Repository)
            assert context.store.list_envelopes() is not None
        finally:
            context.close()
        # After close, db engine connection should be closed
        engine = context.store.inner.engine
        assert engine._conn is None or engine._conn.closed
