# jarvis_link/__main__.py
"""
Entry point: python -m jarvis_link
"""

import argparse
import asyncio
import logging
import os
import signal
import sys

from .assistant import JarvisAssistant
from .config import Config, setup_logging
from .state import SessionStatus
from .utils import signal_handler

logger = logging.getLogger("jarvis_link")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="JARVIS voice link")
    parser.add_argument("--console", action="store_true", help="Short log format for interactive use")
    parser.add_argument("--no-wake", action="store_true", help="Disable the wake word monitor")
    parser.add_argument("--provider", choices=["gemini", "openai"], help="Override LIVE_PROVIDER")
    return parser.parse_args(argv)


STATUS_LABELS = {
    SessionStatus.IDLE: "💤 STANDBY",
    SessionStatus.LISTENING: "🎤 LISTENING",
    SessionStatus.THINKING: "🤔 PROCESSING",
    SessionStatus.SPEAKING: "🔊 SPEAKING",
    SessionStatus.EXECUTING: "⚙️  EXECUTING",
}


async def run(config: Config, console: bool = False):
    assistant = JarvisAssistant(config)
    loop = asyncio.get_running_loop()

    # Register signal handlers
    signal.signal(signal.SIGINT, lambda s, f: signal_handler(s, f, assistant, loop))
    signal.signal(signal.SIGTERM, lambda s, f: signal_handler(s, f, assistant, loop))

    if console:
        assistant.state.subscribe(lambda old, new: print(STATUS_LABELS[new], flush=True))

    if not config.wake_word_enabled:
        logger.info("Wake word disabled; opening a session now")
        assistant.session.request_start()

    await assistant.run()


def main(argv=None):
    args = parse_args(argv)
    if args.console:
        os.environ["JARVIS_CONSOLE_OUTPUT"] = "1"

    config = Config.from_env()
    if args.provider:
        config.live_provider = args.provider
    if args.no_wake:
        config.wake_word_enabled = False

    setup_logging(config, force_console=args.console)
    logger.info(f"🎤 Starting JARVIS link (provider: {config.live_provider})")

    try:
        asyncio.run(run(config, console=args.console))
    except KeyboardInterrupt:
        logger.info("\nShutdown complete")
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        sys.exit(1)

    logger.info("JARVIS link shutdown complete")


if __name__ == "__main__":
    main()
