# orechat/config_utils.py
import logging
import os
from pathlib import Path
from typing import Dict, Any, Optional
import toml
from dotenv import load_dotenv

# --- Ultimate Fallback Defaults ---
# Used when config.toml is missing or a key is not found,
# and no environment variable or runtime override is set.
ULTIMATE_DEFAULTS: Dict[str, Any] = {
    "model": "openai/gpt-5-mini",
    "api_base": None,
    "max_tokens": 8192,
    "temperature": None,
    "reasoning_effort": "low",
    "max_tool_rounds": 10,
    "char_limit": 280,
    "log_file": None, # Resolved by default_log_path()
    "log_level": "INFO",
}

# Holds the flattened values loaded from config.toml
_CONFIG_FROM_TOML: Dict[str, Any] = {}

INT_PARAMS = {"max_tokens", "max_tool_rounds", "char_limit"}

SUPPORTED_SET_PARAMS = {
    "model": {
        "env_var": "LITELLM_MODEL",
        "description": "The language model the agent talks to (any litellm model name, e.g. 'openai/gpt-5-mini', 'ollama_chat/qwen3:8b')."
    },
    "api_base": {
        "env_var": "LITELLM_API_BASE",
        "description": "API base URL for the model provider. Leave unset to use the provider default."
    },
    "max_tokens": {
        "env_var": "LITELLM_MAX_TOKENS",
        "description": "Maximum number of tokens for each model response (e.g., 4096)."
    },
    "temperature": {
        "env_var": "LITELLM_TEMPERATURE",
        "description": "Randomness of the response (0.0 to 2.0). Unset means the provider default; reasoning models usually reject it."
    },
    "reasoning_effort": {
        "env_var": "REASONING_EFFORT",
        "allowed_values": ["low", "medium", "high"],
        "description": "How much internal reasoning the model does before replying."
    },
    "max_tool_rounds": {
        "env_var": "ORECHAT_MAX_TOOL_ROUNDS",
        "description": "Maximum number of model calls per question when the model keeps requesting tools."
    },
    "char_limit": {
        "env_var": "ORECHAT_CHAR_LIMIT",
        "description": "Maximum number of characters accepted by the input box."
    },
    "log_file": {
        "env_var": "ORECHAT_LOG_FILE",
        "description": "File receiving the application log (the terminal belongs to the UI)."
    },
    "log_level": {
        "env_var": "ORECHAT_LOG_LEVEL",
        "allowed_values": ["debug", "info", "warning", "error"],
        "description": "Minimum level written to the log file."
    },
}

# config.toml layout: section -> {toml key: parameter name}
TOML_SECTIONS = {
    "model": {
        "default": "model",
        "api_base": "api_base",
        "max_tokens": "max_tokens",
        "temperature": "temperature",
        "reasoning_effort": "reasoning_effort",
        "max_tool_rounds": "max_tool_rounds",
    },
    "ui": {
        "char_limit": "char_limit",
    },
    "logging": {
        "file": "log_file",
        "level": "log_level",
    },
}


def _coerce(param_name: str, value: Any) -> Any:
    """Converts a raw value to the parameter's type. Raises ValueError when it does not fit."""
    if value is None:
        return None
    if param_name in INT_PARAMS:
        value = int(value)
        if value <= 0:
            raise ValueError(f"{param_name} must be a positive integer.")
        return value
    if param_name == "temperature":
        value = float(value)
        if not (0.0 <= value <= 2.0):
            raise ValueError("Temperature must be between 0.0 and 2.0.")
        return value
    allowed_values = SUPPORTED_SET_PARAMS[param_name].get("allowed_values")
    if allowed_values:
        value = str(value).lower()
        if value not in allowed_values:
            raise ValueError(f"Allowed values: {', '.join(allowed_values)}")
    return value


def update_runtime_override(param_name: str, value: Any, runtime_overrides: Dict[str, Any], console_obj=None) -> bool:
    """
    Updates a runtime override for a given parameter.
    Validates against SUPPORTED_SET_PARAMS. Returns True when the override was stored.
    """
    param_name_lower = param_name.lower()
    if param_name_lower not in SUPPORTED_SET_PARAMS:
        if console_obj:
            console_obj.print(f"[red]Error: Unknown parameter '{param_name}'. Cannot set override.[/red]")
        return False

    try:
        value = _coerce(param_name_lower, value)
    except ValueError as e:
        if console_obj:
            console_obj.print(f"[red]Error: Invalid value '{value}' for {param_name_lower}. {e}[/red]")
        return False

    runtime_overrides[param_name_lower] = value
    return True


def load_configuration(console_obj):
    """
    Loads .env file into environment variables and config.toml into _CONFIG_FROM_TOML.
    """
    load_dotenv()
    _CONFIG_FROM_TOML.clear()

    toml_config_path = Path("config.toml")
    if not toml_config_path.exists():
        return
    try:
        loaded_toml = toml.load(toml_config_path)
    except (toml.TomlDecodeError, OSError) as e:
        if console_obj:
            console_obj.print(f"[yellow]Warning: Could not load or parse config.toml: {e}. Using internal defaults.[/yellow]")
        return

    # Flatten TOML structure, e.g. [model] default -> "model", [logging] level -> "log_level"
    for section, keys in TOML_SECTIONS.items():
        table = loaded_toml.get(section)
        if not isinstance(table, dict):
            continue
        for toml_key, param_name in keys.items():
            if toml_key not in table:
                continue
            try:
                _CONFIG_FROM_TOML[param_name] = _coerce(param_name, table[toml_key])
            except (ValueError, TypeError) as e:
                if console_obj:
                    console_obj.print(f"[yellow]Warning: Ignoring [{section}] {toml_key} in config.toml: {e}[/yellow]")


def get_config_value(param_name: str, runtime_overrides: Dict[str, Any], console_obj=None) -> Any:
    """
    Retrieves a configuration value based on precedence:
    1. Runtime overrides
    2. Environment variables
    3. Values from config.toml (_CONFIG_FROM_TOML)
    4. Ultimate hardcoded defaults (ULTIMATE_DEFAULTS)
    """
    if param_name not in SUPPORTED_SET_PARAMS:
        if console_obj:
            console_obj.print(f"[yellow]Warning: Attempted to get unknown config param '{param_name}'. Using default.[/yellow]")
        return ULTIMATE_DEFAULTS.get(param_name)

    if runtime_overrides.get(param_name) is not None:
        return runtime_overrides[param_name]

    fallback = _CONFIG_FROM_TOML.get(param_name, ULTIMATE_DEFAULTS.get(param_name))

    env_var_name = SUPPORTED_SET_PARAMS[param_name].get("env_var")
    env_val = os.getenv(env_var_name) if env_var_name else None
    if env_val:
        try:
            return _coerce(param_name, env_val)
        except ValueError:
            if console_obj:
                console_obj.print(f"[yellow]Warning: Invalid value '{env_val}' in {env_var_name}. Using {fallback!r}.[/yellow]")
            return fallback

    return fallback


def default_log_path() -> Path:
    """XDG cache location for the log file."""
    xdg_cache = os.getenv("XDG_CACHE_HOME", os.path.expanduser("~/.cache"))
    return Path(xdg_cache) / "orechat" / "orechat.log"


def configure_logging(runtime_overrides: Dict[str, Any], console_obj=None, debug: bool = False) -> Optional[Path]:
    """
    Sends all log records to a file; the terminal belongs to the full-screen UI.
    Returns the log path, or None when the file could not be opened.
    """
    log_path = Path(get_config_value("log_file", runtime_overrides, console_obj) or default_log_path())
    level_name = "DEBUG" if debug else str(get_config_value("log_level", runtime_overrides, console_obj)).upper()

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level_name, logging.INFO))

    # Suppress litellm's own chatter below warnings
    logging.getLogger("litellm").setLevel(logging.WARNING)
    logging.getLogger("LiteLLM").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_path, encoding="utf-8")
    except OSError as e:
        root_logger.addHandler(logging.NullHandler())
        if console_obj:
            console_obj.print(f"[yellow]Warning: Could not open log file {log_path}: {e}. Logging disabled.[/yellow]")
        return None

    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root_logger.addHandler(handler)
    return log_path
