"""Solver process entry point.

Builds the chain provider, the open-order store, one filler per enabled
protocol with its intent source (listener or poller), the refund scanner and
the ops agent, then runs every loop as an asyncio task until stopped or the
ops agent pauses the process.
"""

from __future__ import annotations

import argparse
import asyncio
from typing import Any, Dict, List, Optional

from agents.ops_agent import OpsAgent, default_checks
from core.chain import ChainProvider, Web3ChainProvider
from core.config import ProtocolMetadata, SolverConfig, SolverSettings, load_config, validate_metadata
from core.errors import ConfigurationError
from core.filler import BaseFiller
from core.listener import ChainEventListener
from core.logger import StructuredLogger, log_error
from core.metrics import MetricsServer
from core.refunder import ExpiryScanner
from core.rules import Rule, deadline_not_passed
from core.store import OpenOrderStore
from core.tx_engine.kill_switch import kill_switch_triggered, record_kill_event

LOGGER = StructuredLogger("orchestrator")


class SolverOrchestrator:
    """Wire configured protocols to their intent sources and run them."""

    def __init__(
        self,
        config: SolverConfig,
        *,
        provider: ChainProvider | None = None,
        store: OpenOrderStore | None = None,
    ) -> None:
        self.config = config
        self.provider = provider or Web3ChainProvider(
            {c.chain_id: c.rpc_url for c in config.chains},
            config.private_key(),
            chain_names=config.chain_names(),
            gas_margin=config.gas_margin,
            confirmation_timeout=config.confirmation_timeout,
        )
        self.store = store or OpenOrderStore(config.db_path)
        self.fillers: Dict[str, BaseFiller] = {}
        self.loops: List[Any] = []
        self.scanners: List[ExpiryScanner] = []
        self.ops_agent = OpsAgent(default_checks(self.store), on_pause=self.pause)
        self.metrics_server: Optional[MetricsServer] = None
        self._start_blocks = {c.chain_id: c.start_block for c in config.chains if c.start_block is not None}
        self._configured = {c.chain_id for c in config.chains}
        for name, settings in config.solvers.items():
            if settings.enabled:
                self._setup_solver(name, settings)

    # ---------------------------------------------------------------
    def _metadata(self, name: str, settings: SolverSettings) -> ProtocolMetadata:
        if settings.metadata is None:
            raise ConfigurationError(f"solver {name!r} needs metadata")
        return validate_metadata(settings.metadata, self.config.chain_ids())

    def _rules(self, settings: SolverSettings) -> List[Rule]:
        if settings.deadline_buffer > 0:
            return [deadline_not_passed(settings.deadline_buffer)]
        return []

    def _contracts(self, metadata: ProtocolMetadata) -> List[tuple]:
        contracts = []
        for entry in metadata.intent_sources:
            if entry.chain_id in self._configured:
                contracts.append((entry.chain_id, entry.address))
            else:
                LOGGER.debug("source_skipped", chain_id=entry.chain_id, contract=entry.address)
        return contracts

    def _setup_solver(self, name: str, settings: SolverSettings) -> None:
        cfg = self.config
        if name == "eco":
            from solvers import eco
            from solvers.eco.metadata import INTENT_SOURCE_ABI

            metadata = self._metadata(name, settings)
            filler = eco.create(
                self.provider, metadata, settings.allow_block_lists, self._rules(settings),
                settings.keep_base_rules, confirmation_timeout=cfg.confirmation_timeout,
            )
            self.fillers[name] = filler
            self.loops.append(
                ChainEventListener(
                    self.provider, self._contracts(metadata), INTENT_SOURCE_ABI, "IntentCreated",
                    filler.create(), interval=cfg.listen_interval,
                    start_block=self._start_blocks, name=name,
                )
            )
        elif name == "compact":
            from solvers import compact

            metadata = (
                self._metadata(name, settings)
                if settings.metadata is not None
                else compact.default_metadata(cfg.chain_ids())
            )
            filler = compact.create(
                self.provider, metadata, settings.allow_block_lists, self._rules(settings),
                settings.keep_base_rules, confirmation_timeout=cfg.confirmation_timeout,
            )
            self.fillers[name] = filler
            self.loops.append(
                compact.create_poller(filler.create(), url=settings.source_url, interval=cfg.poll_interval)
            )
        elif name == "hyperlane7683":
            from solvers.hyperlane7683 import Hyperlane7683RefundClient, OpenOrderIndexer
            from solvers.hyperlane7683.metadata import HYPERLANE7683_ABI

            metadata = self._metadata(name, settings)
            self.loops.append(
                ChainEventListener(
                    self.provider, self._contracts(metadata), HYPERLANE7683_ABI, "Open",
                    OpenOrderIndexer(self.store, settings.allow_block_lists, self.provider.chain_name),
                    interval=cfg.listen_interval,
                    start_block=self._start_blocks, name=name,
                )
            )
            scanner = ExpiryScanner(
                self.store,
                self.provider,
                Hyperlane7683RefundClient(self.provider),
                interval=cfg.refund_interval,
                order_timeout=cfg.order_timeout,
                confirmation_timeout=cfg.confirmation_timeout,
                gas_margin=cfg.refund_gas_margin,
            )
            self.scanners.append(scanner)
            self.loops.append(scanner)
        else:
            raise ConfigurationError(f"unknown solver {name!r}")
        LOGGER.info("solver_loaded", solver=name)

    # ---------------------------------------------------------------
    def pause(self, reason: str) -> None:
        LOGGER.error("halt", reason)
        for loop in self.loops:
            loop.stop()

    async def run_once(self) -> bool:
        """Run one cycle of every loop; ``False`` when health checks block."""

        self.ops_agent.run_checks()
        if self.ops_agent.paused:
            if kill_switch_triggered():
                record_kill_event("orchestrator")
            return False
        results = await asyncio.gather(*(loop.run_once() for loop in self.loops), return_exceptions=True)
        for loop, result in zip(self.loops, results):
            if isinstance(result, Exception):
                log_error("orchestrator", repr(result), event="cycle_fail", loop=type(loop).__name__)
        LOGGER.info("iteration_complete", loops=len(self.loops))
        return True

    async def _watch_health(self, interval: float) -> None:
        while not self.ops_agent.paused:
            await asyncio.sleep(interval)
            self.ops_agent.run_checks()

    async def run(self) -> None:
        if self.config.metrics_port is not None:
            self.metrics_server = MetricsServer(port=self.config.metrics_port)
            self.metrics_server.start()
        self.ops_agent.run_checks()
        if self.ops_agent.paused:
            self.close()
            return
        LOGGER.info("orchestrator_started", solvers=list(self.config.solvers), loops=len(self.loops))
        tasks = [asyncio.create_task(loop.run_forever()) for loop in self.loops]
        watcher = asyncio.create_task(self._watch_health(self.config.refund_interval))
        try:
            await asyncio.gather(*tasks)
        finally:
            watcher.cancel()
            for loop in self.loops:
                loop.stop()
            self.close()
            LOGGER.info("orchestrator_stopped")

    def close(self) -> None:
        if self.metrics_server is not None:
            self.metrics_server.stop()
            self.metrics_server = None
        self.store.close()


# ---------------------------------------------------------------------------
def main(argv: Optional[List[str]] = None) -> int:  # pragma: no cover - CLI thin wrapper
    parser = argparse.ArgumentParser(description="Cross-chain intent solver")
    parser.add_argument("--config", default="config.yaml", help="Path to config.yaml")
    parser.add_argument("--once", action="store_true", help="Run a single cycle of every loop")
    args = parser.parse_args(argv)

    try:
        orchestrator = SolverOrchestrator(load_config(args.config))
    except ConfigurationError as exc:
        log_error("orchestrator", str(exc), event="config_fail")
        print(f"configuration error: {exc}")
        return 2
    if args.once:
        try:
            ok = asyncio.run(orchestrator.run_once())
        finally:
            orchestrator.close()
        return 0 if ok else 1
    try:
        asyncio.run(orchestrator.run())
    except KeyboardInterrupt:
        LOGGER.info("interrupted")
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry
    raise SystemExit(main())
