#!/usr/bin/env python3
"""
MQTT Stress - load generation harness for MQTT brokers.
Runs a pool of workers that each publish to, and subscribe to, their own topic and
reports pool-wide throughput once per second for the length of the run.
"""

import sys
import signal
import asyncio
import argparse
import logging
from typing import Any, Dict, List, Optional

from mqtt_stress import __version__
from mqtt_stress.config.config_loader import ConfigLoader
from mqtt_stress.config.stress_config import (
    ConfigError, StressConfig, load_config_from_env, resolve_payload_settings,
)
from mqtt_stress.core.client_pool import ClientPool, broker_connection_factory
from mqtt_stress.core.deadline import RunDeadline
from mqtt_stress.core.reporting import StatsSnapshot
from mqtt_stress.utils.constants import DEFAULT_CONFIG_FILE, DEFAULT_DELAY, DEFAULT_RUN
from mqtt_stress.utils.durations import format_duration, parse_duration

main_logger = logging.getLogger("mqtt_stress")


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None):
    """Configures console and (optionally) file logging."""
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    console_handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
    root_logger.addHandler(console_handler)

    if log_file:
        try:
            file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
        except OSError as e:
            main_logger.error(f"Failed to initialize file logging at {log_file}: {e}")
            return
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(levelname)-8s - %(name)-30s - %(filename)s:%(lineno)d - %(message)s'
        ))
        root_logger.addHandler(file_handler)
        main_logger.info(f"File logging initialized. Log file: {log_file}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mqtt-stress",
        description="Stress test an MQTT broker with concurrent publish/subscribe workers.",
        add_help=False,
        allow_abbrev=False,
    )
    parser.add_argument("-help", "--help", "-h", dest="help", action="store_true", help="print application options")
    parser.add_argument("-url", "--url", dest="url",
                        help="scheme://host:port where scheme is one of tcp, ssl, ws or wss (also mqtt, mqtts, tls), "
                             "host is the ip-address or hostname and port is the port the broker accepts connections on")
    parser.add_argument("-username", "--username", dest="username", help="username to authenticate with the broker")
    parser.add_argument("-password", "--password", dest="password", help="password to authenticate with the broker")
    parser.add_argument("-workers", "--workers", dest="workers", type=int,
                        help="amount of clients to connect to the broker with (default: 10)")
    parser.add_argument("-delay", "--delay", dest="delay",
                        help=f"delay per message per worker, e.g. 500ms or 1s or 1m (default: {DEFAULT_DELAY})")
    parser.add_argument("-run", "--run", dest="run",
                        help=f"length of time to run before exiting (default: {DEFAULT_RUN})")
    parser.add_argument("-increment", "--increment", dest="increment", action="store_true",
                        help="payload is incremented for each message sent, each worker has an independent count "
                             "(overrides fields and payload)")
    parser.add_argument("-payload", "--payload", dest="payload",
                        help="custom payload sent for each message (default: mqtt-stress)")
    parser.add_argument("-fields", "--fields", dest="fields",
                        help="<name>:<type> fields to generate json payloads from, separated by \",\" where type is "
                             "number, string, id, phone or email, e.g. customer:id,customer_email:email "
                             "(overrides payload)")
    parser.add_argument("-client-id", "--client-id", dest="client_id",
                        help="base client id, workers use <client-id>-<index> (default: mqtt-stress-worker)")
    parser.add_argument("-topic-namespace", "--topic-namespace", dest="topic_namespace",
                        help="topic prefix, workers use <namespace>/<client-id>-<index> (default: stress)")
    parser.add_argument("-config", "--config", dest="config",
                        help=f"YAML configuration file (default when a profile is used: {DEFAULT_CONFIG_FILE})")
    parser.add_argument("-profile", "--profile", dest="profile", help="run profile name from the config file")
    parser.add_argument("-list-profiles", "--list-profiles", dest="list_profiles", action="store_true",
                        help="list the profiles of the config file and exit, or describe the one given with -profile")
    parser.add_argument("-log-level", "--log-level", dest="log_level", default="INFO",
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'], help="console logging level")
    parser.add_argument("-log-file", "--log-file", dest="log_file", help="also write DEBUG logs to this file")
    parser.add_argument("-version", "--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def _duration_setting(value: Any, name: str) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if value < 0:
            raise ConfigError(f"invalid {name} duration: {value}")
        return float(value)
    try:
        return parse_duration(str(value))
    except ValueError as e:
        raise ConfigError(f"invalid {name} duration: {e}") from e


def _pick(cli_value: Any, settings: Dict[str, Any], key: str, default: Any) -> Any:
    """CLI flag if given, else config file setting, else default."""
    if cli_value is not None:
        return cli_value
    value = settings.get(key)
    return default if value is None else value


def apply_broker_settings(config: StressConfig, broker: Dict[str, Any]):
    """Copy the `broker` section of a config file onto the run configuration."""
    config.url = str(broker.get('url') or config.url)
    config.username = str(broker.get('username') or config.username)
    config.password = str(broker.get('password') or config.password)
    if broker.get('connect_timeout') is not None:
        config.connect_timeout = _duration_setting(broker['connect_timeout'], 'connect_timeout')
    if broker.get('publish_timeout') is not None:
        config.publish_timeout = _duration_setting(broker['publish_timeout'], 'publish_timeout')
    if broker.get('disconnect_grace') is not None:
        config.disconnect_grace_ms = int(_duration_setting(broker['disconnect_grace'], 'disconnect_grace') * 1000)
    if broker.get('keepalive') is not None:
        try:
            config.keepalive = int(broker['keepalive'])
        except (TypeError, ValueError) as e:
            raise ConfigError(f"invalid keepalive: {broker['keepalive']!r}") from e
    config.ca_file_path = broker.get('ca_file') or config.ca_file_path
    config.insecure_tls = bool(broker.get('insecure_tls', config.insecure_tls))


def build_config(args: argparse.Namespace) -> StressConfig:
    """
    Merge defaults, config file, environment and CLI flags into a validated StressConfig.

    Raises:
        ConfigError: On any invalid or missing setting
    """
    config = StressConfig()
    settings: Dict[str, Any] = {}

    if args.config or args.profile:
        try:
            loader = ConfigLoader(args.config or DEFAULT_CONFIG_FILE)
            apply_broker_settings(config, loader.get_broker_config())
            settings = loader.get_profile(args.profile) if args.profile else loader.get_test_defaults()
        except (FileNotFoundError, ValueError) as e:
            raise ConfigError(str(e)) from e

    load_config_from_env(config)

    if args.url is not None:
        config.url = args.url
    if args.username is not None:
        config.username = args.username
    if args.password is not None:
        config.password = args.password

    config.run_for = _duration_setting(_pick(args.run, settings, 'run', DEFAULT_RUN), 'run')
    config.message_delay = _duration_setting(_pick(args.delay, settings, 'delay', DEFAULT_DELAY), 'message delay')

    workers = _pick(args.workers, settings, 'workers', config.workers)
    try:
        config.workers = int(workers)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid worker count: {workers!r}") from e

    config.client_id = str(_pick(args.client_id, settings, 'client_id', config.client_id))
    config.topic_namespace = str(_pick(args.topic_namespace, settings, 'topic_namespace', config.topic_namespace))

    increment = args.increment or bool(settings.get('increment', False))
    fields = str(_pick(args.fields, settings, 'fields', ''))
    payload = str(_pick(args.payload, settings, 'payload', ''))
    config.payload, config.payload_mode = resolve_payload_settings(increment, fields, payload)

    config.validate()
    return config


def print_startup_info(config: StressConfig):
    main_logger.info(f"running for {format_duration(config.run_for)}")
    main_logger.info(
        f"Broker: {config.url}, Workers: {config.workers}, "
        f"Delay: {format_duration(config.message_delay)}, Payload mode: {config.payload_mode.value}"
    )
    main_logger.debug(f"Client id: {config.client_id}, Topic namespace: {config.topic_namespace}")


def _install_signal_handlers(deadline: RunDeadline):
    loop = asyncio.get_running_loop()
    for sig_name in ("SIGINT", "SIGTERM"):
        sig = getattr(signal, sig_name, None)
        if sig is None:
            continue
        try:
            loop.add_signal_handler(sig, deadline.fire, f"received {sig_name}")
        except (NotImplementedError, RuntimeError, ValueError) as e:
            main_logger.debug(f"Could not register {sig_name} handler: {e}")


async def run_test(config: StressConfig) -> StatsSnapshot:
    """Run one stress test to completion."""
    deadline = RunDeadline(config.run_for)
    _install_signal_handlers(deadline)

    pool = ClientPool(
        config.worker_template(),
        config.workers,
        deadline,
        broker_connection_factory(config),
        namespace=config.topic_namespace,
        disconnect_grace_ms=config.disconnect_grace_ms,
        report_interval=config.report_interval,
    )
    return await pool.run()


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for MQTT Stress."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.help:
        parser.print_help()
        return 0

    setup_logging(args.log_level, args.log_file)

    if args.list_profiles:
        try:
            loader = ConfigLoader(args.config or DEFAULT_CONFIG_FILE)
            if args.profile:
                print(loader.get_profile_info(args.profile))
            else:
                loader.print_summary()
        except (FileNotFoundError, ValueError) as e:
            main_logger.error(f"Error loading config: {e}")
            return 1
        return 0

    try:
        config = build_config(args)
    except ConfigError as e:
        parser.print_usage()
        main_logger.error(f"error setting up config: {e}")
        return 1

    print_startup_info(config)

    try:
        asyncio.run(run_test(config))
    except KeyboardInterrupt:
        main_logger.info("Interrupted. Exiting.")
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
