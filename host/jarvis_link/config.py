# jarvis_link/config.py
"""
Configuration management for the voice session orchestrator
"""

import os
import sys
import logging
from dataclasses import dataclass
from typing import Optional
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ["true", "1", "yes", "on"]


@dataclass
class Config:
    """Configuration settings for the voice session orchestrator"""
    # === REMOTE MODEL ===
    live_provider: str
    gemini_api_key: str
    openai_api_key: str
    live_model: Optional[str]
    voice_name: Optional[str]

    # === AUDIO CONFIGURATION ===
    input_sample_rate: int
    input_frame_size: int

    # === WAKE WORD ===
    wake_word_enabled: bool
    vosk_model_path: str
    recognition_max_session: float
    wake_restart_delay: float
    wake_network_retry_delay: float

    # === TIMING ===
    executing_beat: float
    protocol_step_interval: float
    notice_seconds: float
    startup_delay: float
    timer_tick_interval: float

    # === STORAGE ===
    config_store_path: str

    # === LOGGING CONFIGURATION ===
    log_level: str
    log_file: str

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables"""
        return cls(
            # === REMOTE MODEL ===
            live_provider=os.getenv("LIVE_PROVIDER", "gemini").lower(),
            gemini_api_key=os.getenv("GEMINI_API_KEY", os.getenv("GOOGLE_API_KEY", "")),
            openai_api_key=os.getenv("OPENAI_API_KEY", ""),
            # None lets each provider pick its own default model / voice
            live_model=os.getenv("LIVE_MODEL") or None,
            voice_name=os.getenv("VOICE_NAME") or None,

            # === AUDIO CONFIGURATION ===
            input_sample_rate=int(os.getenv("INPUT_SAMPLE_RATE", "16000")),
            input_frame_size=int(os.getenv("INPUT_FRAME_SIZE", "4096")),

            # === WAKE WORD ===
            wake_word_enabled=_env_flag("WAKE_WORD_ENABLED", "true"),
            vosk_model_path=os.getenv("VOSK_MODEL_PATH", "models/vosk-model-small-en-us-0.15"),
            recognition_max_session=float(os.getenv("RECOGNITION_MAX_SESSION", "60")),
            wake_restart_delay=float(os.getenv("WAKE_RESTART_DELAY", "0.1")),
            wake_network_retry_delay=float(os.getenv("WAKE_NETWORK_RETRY_DELAY", "2.0")),

            # === TIMING ===
            executing_beat=float(os.getenv("EXECUTING_BEAT", "1.0")),
            protocol_step_interval=float(os.getenv("PROTOCOL_STEP_INTERVAL", "0.8")),
            notice_seconds=float(os.getenv("NOTICE_SECONDS", "5.0")),
            startup_delay=float(os.getenv("STARTUP_DELAY", "2.0")),
            timer_tick_interval=float(os.getenv("TIMER_TICK_INTERVAL", "1.0")),

            # === STORAGE ===
            config_store_path=os.getenv("CONFIG_STORE_PATH", "jarvis_config.json"),

            # === LOGGING CONFIGURATION ===
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_file=os.getenv("LOG_FILE", "jarvis_link.log"),
        )

    def provider_api_key(self) -> str:
        """Credential for the selected live provider ('' when absent)"""
        if self.live_provider == "openai":
            return self.openai_api_key
        return self.gemini_api_key


def setup_logging(config: Config, force_console: bool = False):
    """Configure logging with a file handler and console output"""
    # Check if we should use the short console format (when launched with --console)
    force_console = force_console or os.getenv("JARVIS_CONSOLE_OUTPUT") == "1"

    # Create handlers with UTF-8 encoding
    file_handler = logging.FileHandler(config.log_file, encoding='utf-8')

    handlers = [file_handler]

    console_handler = logging.StreamHandler(sys.stdout)
    if sys.platform == "win32" and sys.stdout.encoding != 'utf-8':
        # Set console to UTF-8 mode on Windows
        try:
            sys.stdout.reconfigure(encoding='utf-8')
        except AttributeError:
            pass  # Already wrapped or not available

    handlers.append(console_handler)

    # Configure logging
    log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    if force_console:
        # Simpler format for interactive console output
        log_format = '%(name)s - %(levelname)s - %(message)s'

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper()),
        format=log_format,
        handlers=handlers,
        force=True  # Reconfigure even if already configured
    )

    # Reduce noise from third-party libraries
    logging.getLogger("websockets").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("google_genai").setLevel(logging.WARNING)
