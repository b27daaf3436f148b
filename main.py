"""CLI entry point for the vacancy agent."""

import argparse
import asyncio
import logging
import signal
import sys

from vacancy_agent.core.config import Settings
from vacancy_agent.core.state import AgentStatus, SessionState
from vacancy_agent.pipeline.orchestrator import Orchestrator
from vacancy_agent.ports.storage import ArtifactStore

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Vacancy agent - search a job board, screen vacancies and apply",
    )
    subparsers = parser.add_subparsers(dest="command")

    def add_common(sub: argparse.ArgumentParser) -> None:
        sub.add_argument(
            "--config",
            default="config/settings.yaml",
            help="Path to settings YAML file (default: config/settings.yaml)",
        )
        sub.add_argument(
            "--verbose", "-v",
            action="store_true",
            help="Enable verbose (DEBUG) logging",
        )

    # --- run subcommand (default) ---
    run_parser = subparsers.add_parser("run", help="Run an agent session")
    add_common(run_parser)
    run_parser.add_argument(
        "--resume",
        action="store_true",
        help="Continue the last stored session instead of starting a new one",
    )

    # --- maintenance subcommands ---
    add_common(subparsers.add_parser(
        "reset-profile",
        help="Delete the captured profile and everything derived from it",
    ))
    add_common(subparsers.add_parser(
        "forget-history",
        help="Delete the seen-vacancy index and all search results",
    ))
    add_common(subparsers.add_parser(
        "show-state",
        help="Print the stored session state",
    ))

    args_list = list(sys.argv[1:] if argv is None else argv)
    # Default to run when no subcommand given
    if not args_list or (args_list[0] not in subparsers.choices and args_list[0] not in ("-h", "--help")):
        args_list.insert(0, "run")
    return parser.parse_args(args_list)


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def open_store(settings: Settings) -> ArtifactStore:
    if settings.storage.backend == "memory":
        from vacancy_agent.storage.memory import MemoryArtifactStore

        logger.warning("Using in-memory storage: nothing survives this process")
        return MemoryArtifactStore()

    from vacancy_agent.storage.sqlite import SqliteArtifactStore

    return SqliteArtifactStore.open(settings.storage.path)


def build_orchestrator(settings: Settings, store: ArtifactStore) -> Orchestrator:
    """Wire the hh.ru browser adapter, the LLM advisor and the console presenter."""
    from vacancy_agent.ai.advisor import LLMAdvisor
    from vacancy_agent.browser.session import BrowserSession
    from vacancy_agent.platforms.hh.adapter import HHAutomation
    from vacancy_agent.presentation.console import LoggingPresenter

    return Orchestrator(
        automation=HHAutomation(BrowserSession(settings.browser)),
        ai=LLMAdvisor.from_config(settings.llm),
        store=store,
        presenter=LoggingPresenter(),
        settings=settings,
    )


async def run(settings: Settings, resume: bool) -> AgentStatus:
    """Run one session with a real browser and the configured LLM provider."""
    from vacancy_agent.pipeline.runner import AgentRunner

    store = open_store(settings)
    orchestrator = build_orchestrator(settings, store)

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, orchestrator.request_abort)
    except NotImplementedError:
        logger.debug("Signal handlers unavailable; Ctrl+C will interrupt immediately")

    try:
        runner = AgentRunner(orchestrator, orchestrator.automation, settings)
        final = await runner.run(resume=resume)
    finally:
        store.close()

    ledger = final.token_ledger
    print(f"\nSession {final.id} finished: {final.status.value}")
    if final.failure_reason:
        print(f"  Reason: {final.failure_reason}")
    print(f"  AI calls: {ledger.calls}, tokens in/out: {ledger.input_tokens}/{ledger.output_tokens}")
    queue = final.artifacts.apply_queue
    if queue is not None:
        counts = queue.summary()
        print(f"  Applications: {counts['applied']} applied, {counts['failed']} failed, "
              f"{counts['skipped']} skipped of {counts['total']}")
    return final.status


def cmd_maintenance(settings: Settings, command: str) -> None:
    """Run ``reset-profile`` or ``forget-history`` against the stored session.

    Needs only storage: no browser or LLM provider is set up.
    """
    from vacancy_agent.pipeline import maintenance

    store = open_store(settings)
    try:
        state = store.get_session_state(settings.site_id) or SessionState(
            site_id=settings.site_id, logs=("Session created",),
        )
        if command == "reset-profile":
            store.save_session_state(maintenance.reset_profile(store, state))
            print(f"Profile data for {settings.site_id} deleted. The next run captures it again.")
        else:
            store.save_session_state(maintenance.forget_search_history(store, state))
            print(f"Search history for {settings.site_id} deleted.")
    finally:
        store.close()


def cmd_show_state(settings: Settings) -> None:
    store = open_store(settings)
    try:
        state = store.get_session_state(settings.site_id)
    finally:
        store.close()
    if state is None:
        print(f"No stored session for {settings.site_id}")
        return
    print(f"Session {state.id} [{state.site_id}]: {state.status.value}")
    print(f"  Updated: {state.updated_at:%Y-%m-%d %H:%M:%S}")
    if state.current_url:
        print(f"  URL: {state.current_url}")
    if state.failure_reason:
        print(f"  Failure: {state.failure_reason}")
    present = [name for name, value in state.artifacts if value is not None]
    print(f"  Artifacts: {', '.join(present) or 'none'}")
    print("  Recent log:")
    for line in state.logs[-10:]:
        print(f"    {line}")


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    setup_logging(args.verbose)

    try:
        settings = Settings.from_yaml(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        if args.command in ("reset-profile", "forget-history"):
            cmd_maintenance(settings, args.command)
        elif args.command == "show-state":
            cmd_show_state(settings)
        else:
            status = asyncio.run(run(settings, args.resume))
            if status != AgentStatus.COMPLETED and status != AgentStatus.IDLE:
                sys.exit(1)
    except (FileNotFoundError, ImportError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
