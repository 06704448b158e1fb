"""Command line entry point for tunnel guard."""

import argparse
import os
import sys
from collections.abc import Sequence
from typing import Any

from . import __version__
from .common.exceptions import ConfigurationError, ProcessError, SchedulerError
from .common.logging import get_logger, setup_logging
from .config import TunnelConfig, load_config
from .inspectors import ProcessInspector, SocketInspector
from .scheduler import CrontabScheduler, TaskScheduler
from .status import StatusReporter, render
from .supervisor import Supervisor, find_supervisor_loops, stop_supervisor_loops

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2

# CLI flag -> TunnelConfig field
OVERRIDES = {
    "local_port": "local_port",
    "remote_host": "remote_host",
    "remote_port": "remote_port",
    "forward_host": "forward_host",
    "ssh_binary": "ssh_binary",
    "identity_file": "identity_file",
    "probe_host": "probe_host",
    "probe_port": "probe_port",
    "probe_method": "probe_method",
    "interval": "check_interval",
    "grace_period": "grace_period",
    "timeout": "connect_timeout",
    "log_file": "log_file",
    "log_level": "log_level",
}

MODE_FLAGS = ("--install", "--uninstall", "--status", "--stop", "--once")
PATH_FLAGS = ("-c", "--config", "--log-file", "--identity-file")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tunnel-guard",
        description="Keep an SSH local port forward alive, restarting it when it fails.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--install", action="store_true", help="run the supervisor in the background at boot")
    mode.add_argument("--uninstall", action="store_true", help="stop the tunnel and remove the background task")
    mode.add_argument("--status", action="store_true", help="print tunnel status and exit")
    mode.add_argument("--stop", action="store_true", help="stop the tunnel process and exit")
    mode.add_argument("--once", action="store_true", help="run a single check cycle and exit")

    cfg = parser.add_argument_group("configuration")
    cfg.add_argument("-c", "--config", help="TOML file with a [tunnel] table")
    cfg.add_argument("--local-port", type=int, help="local port to bind")
    cfg.add_argument("--remote-host", help="SSH destination, [user@]host[:port]")
    cfg.add_argument("--remote-port", type=int, help="port to forward to on the remote side")
    cfg.add_argument("--forward-host", help="forward target as seen from the remote host")
    cfg.add_argument("--ssh-binary", help="ssh client to run")
    cfg.add_argument("--identity-file", help="private key for ssh -i")
    cfg.add_argument("--probe-host", help="host used for the connectivity check")
    cfg.add_argument("--probe-port", type=int, help="TCP port used for the connectivity check")
    cfg.add_argument("--probe-method", choices=["tcp", "icmp"], help="connectivity check method")
    cfg.add_argument("--interval", type=float, help="seconds between checks")
    cfg.add_argument("--grace-period", type=float, help="seconds to wait after launch before verifying")
    cfg.add_argument("--timeout", type=float, help="timeout for network checks in seconds")
    cfg.add_argument("--log-file", help="append-only log file")
    cfg.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")
    cfg.add_argument("--json-logs", action="store_true", help="emit JSON log lines")
    return parser


def config_from_args(args: argparse.Namespace) -> TunnelConfig:
    overrides: dict[str, Any] = {
        field: getattr(args, flag) for flag, field in OVERRIDES.items()
    }
    return load_config(args.config, overrides)


def background_command(argv: Sequence[str]) -> list[str]:
    """Command the scheduler runs: this invocation without its mode flag.

    Path arguments are made absolute since cron runs from another directory.
    """
    command = [sys.executable, "-m", "tunnel_guard"]
    expect_path = False
    for arg in argv:
        if arg in MODE_FLAGS:
            continue
        if expect_path:
            command.append(os.path.abspath(os.path.expanduser(arg)))
            expect_path = False
            continue
        flag, sep, value = arg.partition("=")
        if flag in PATH_FLAGS and sep:
            command.append(f"{flag}={os.path.abspath(os.path.expanduser(value))}")
            continue
        expect_path = arg in PATH_FLAGS
        command.append(arg)
    return command


def main(
    argv: Sequence[str] | None = None,
    processes: ProcessInspector | None = None,
    sockets: SocketInspector | None = None,
    scheduler: TaskScheduler | None = None,
) -> int:
    """Run the CLI and return a process exit code."""
    argv = list(sys.argv[1:] if argv is None else argv)
    args = build_parser().parse_args(argv)

    setup_logging(level="INFO", json_format=args.json_logs)
    try:
        config = config_from_args(args)
    except ConfigurationError as e:
        logger.error("Configuration error", error=str(e))
        return EXIT_CONFIG

    # Keep --status output readable; actions still reach the log file
    console_level = "WARNING" if args.status else config.log_level
    try:
        setup_logging(level=console_level, json_format=args.json_logs, log_file=config.log_file)
    except OSError as e:
        if not args.status:
            setup_logging(level="INFO", json_format=args.json_logs)
            logger.error("Cannot open log file", log_file=str(config.log_file), error=str(e))
            return EXIT_CONFIG
        # Status only reads; report without the log file
        setup_logging(level=console_level, json_format=args.json_logs)
        logger.warning(
            "Cannot open log file, logging to console only",
            log_file=str(config.log_file),
            error=str(e),
        )

    supervisor = Supervisor.from_config(config, processes=processes, sockets=sockets)
    scheduler = scheduler or CrontabScheduler()
    inspector = supervisor.controller.processes
    # Under flock the parent process carries the same command line
    own_pids = {os.getpid(), os.getppid()}

    if args.status:
        reporter = StatusReporter.from_supervisor(supervisor, scheduler=scheduler)
        print(render(reporter.report()))
        return EXIT_OK

    if args.stop:
        try:
            supervisor.controller.stop()
        except ProcessError as e:
            logger.warning("Could not stop tunnel", error=str(e))
            return EXIT_FAILURE
        return EXIT_OK

    if args.install:
        try:
            scheduler.install(background_command(argv))
        except SchedulerError as e:
            logger.error("Install failed", error=str(e))
            return EXIT_FAILURE
        return EXIT_OK

    if args.uninstall:
        # Loops before the tunnel, which a live loop would restart
        try:
            stop_supervisor_loops(inspector, exclude_pids=own_pids)
        except ProcessError as e:
            logger.warning("Could not stop background supervisor", error=str(e))
        try:
            supervisor.controller.stop()
        except ProcessError as e:
            logger.warning("Could not stop tunnel", error=str(e))
        try:
            scheduler.uninstall()
        except SchedulerError as e:
            logger.error("Uninstall failed", error=str(e))
            return EXIT_FAILURE
        return EXIT_OK

    if args.once:
        result = supervisor.run_cycle()
        return EXIT_OK if result.succeeded else EXIT_FAILURE

    running = find_supervisor_loops(inspector, exclude_pids=own_pids)
    if running:
        logger.info("Supervisor already running, exiting", pid=running[0].pid)
        return EXIT_OK

    supervisor.install_signal_handlers()
    try:
        supervisor.run_forever()
    except KeyboardInterrupt:
        logger.info("Interrupted")
    return EXIT_OK
