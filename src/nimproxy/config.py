"""Configuration handling for the NIM proxy."""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent / "config.yaml"

DEFAULT_MODEL_MAPPING = {
    "gpt-3.5-turbo": "nvidia/llama-3.1-nemotron-ultra-253b-v1",
    "gpt-4": "qwen/qwen3-coder-480b-a35b-instruct",
    "gpt-4-turbo": "moonshotai/kimi-k2-instruct-0905",
    "gpt-4o": "deepseek-ai/deepseek-v3.2",
    "claude-3-opus": "openai/gpt-oss-120b",
    "claude-3-sonnet": "openai/gpt-oss-20b",
    "gemini-pro": "qwen/qwen3-next-80b-a3b-thinking",
}


class FallbackModels(BaseModel):
    """Default backend models per heuristic tier."""

    model_config = ConfigDict(frozen=True)

    large: str = "meta/llama-3.1-405b-instruct"
    medium: str = "meta/llama-3.1-70b-instruct"
    small: str = "meta/llama-3.1-8b-instruct"


class Settings(BaseModel):
    """
    Immutable process configuration.

    Built once by load_config() and handed to every component, so tests can
    construct their own instances for either toggle state.
    """

    model_config = ConfigDict(frozen=True)

    api_base: str = "https://integrate.api.nvidia.com/v1"
    api_key: Optional[str] = None
    timeout: Optional[float] = None

    show_reasoning: bool = False
    enable_thinking_mode: bool = False

    model_mapping: Dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_MODEL_MAPPING)
    )
    fallback_models: FallbackModels = Field(default_factory=FallbackModels)

    default_temperature: float = 0.6
    default_max_tokens: int = 9024

    service_name: str = "OpenAI to NVIDIA NIM Proxy"
    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @property
    def chat_completions_url(self) -> str:
        return f"{self.api_base.rstrip('/')}/chat/completions"


def _bool_env(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text()) or {}
        logger.info(f"Successfully loaded configuration from {path}")
        return data
    except Exception as e:
        logger.error(f"Error loading {path}: {str(e)}")
        return {}


def load_config(path: Optional[Path] = None) -> Settings:
    """
    Load settings from the YAML config file, then apply environment overrides.

    The file defaults to config.yaml at the project root, or the path given in
    NIMPROXY_CONFIG. A .env file is read into the environment first; variables
    already set in the process environment win.
    """
    load_dotenv()

    if path is None:
        env_path = os.getenv("NIMPROXY_CONFIG")
        path = Path(env_path) if env_path else DEFAULT_CONFIG_PATH

    config = _read_yaml(Path(path))

    backend = config.get("backend") or {}
    reasoning = config.get("reasoning") or {}
    defaults = config.get("defaults") or {}
    settings = config.get("settings") or {}

    values: Dict[str, Any] = {}
    if backend.get("url"):
        values["api_base"] = backend["url"]
    if backend.get("api_key"):
        values["api_key"] = backend["api_key"]
    if "timeout" in backend:
        values["timeout"] = backend["timeout"]

    if "show_reasoning" in reasoning:
        values["show_reasoning"] = bool(reasoning["show_reasoning"])
    if "enable_thinking_mode" in reasoning:
        values["enable_thinking_mode"] = bool(reasoning["enable_thinking_mode"])

    if config.get("model_mapping"):
        values["model_mapping"] = {
            str(k): str(v) for k, v in config["model_mapping"].items()
        }
    if config.get("fallback_models"):
        values["fallback_models"] = FallbackModels(**config["fallback_models"])

    if "temperature" in defaults:
        values["default_temperature"] = defaults["temperature"]
    if "max_tokens" in defaults:
        values["default_max_tokens"] = defaults["max_tokens"]

    for key in ("service_name", "host", "port", "log_level", "log_file"):
        if settings.get(key) is not None:
            values[key] = settings[key]

    api_base = os.getenv("NIM_API_BASE")
    if api_base:
        values["api_base"] = api_base
    api_key = os.getenv("NIM_API_KEY")
    if api_key:
        values["api_key"] = api_key
    values["show_reasoning"] = _bool_env(
        "SHOW_REASONING", values.get("show_reasoning", False)
    )
    values["enable_thinking_mode"] = _bool_env(
        "ENABLE_THINKING_MODE", values.get("enable_thinking_mode", False)
    )
    port = os.getenv("PORT")
    if port:
        values["port"] = int(port)

    if not values.get("api_key"):
        logger.warning("NIM_API_KEY not set, the inbound Authorization header will be forwarded")

    return Settings(**values)


def configure_logging(settings: Settings) -> None:
    """Apply the configured log level and optional log file to the package logger."""
    package_logger = logging.getLogger("nimproxy")
    package_logger.setLevel(settings.log_level.upper())

    if not settings.log_file:
        return

    log_path = Path(settings.log_file)
    for handler in package_logger.handlers:
        if isinstance(handler, logging.FileHandler) and Path(
            handler.baseFilename
        ) == log_path.resolve():
            return

    os.makedirs(log_path.parent, exist_ok=True)
    file_handler = logging.FileHandler(str(log_path), mode="a")
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")
    )
    package_logger.addHandler(file_handler)
    package_logger.propagate = True
