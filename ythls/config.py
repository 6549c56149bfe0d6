"""
配置加载模块

读取 JSON 配置文件并合并默认值，环境变量优先于配置文件。
"""

import copy
import json
import logging
import os

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "config/config.json"

DEFAULT_CONFIG = {
    "host": "0.0.0.0",
    "port": 3000,
    "log_dir": "logs",
    "resolver": {
        "api_url": "https://api.vidfly.ai/api/media/youtube/download",
        "timeout": 15,
        "max_attempts": 3,
        "retry_delay": 1.0,
        "cache_ttl_seconds": 18000,
        "url_expiry_margin": 300,
    },
    "stream": {
        "segment_duration": 10,
        "ffmpeg_path": "ffmpeg",
        "loglevel": "error",
        "video_encoder": "libx264",
        "x264_preset": "veryfast",
        "audio_encoder": "aac",
        "audio_bitrate": None,
        "chunk_size": 65536,
        "kill_timeout": 5,
    },
    "preconvert": {
        "enabled": True,
        "work_dir": "data/hls",
        "segment_duration": 6,
        "max_concurrent_jobs": 2,
        "job_timeout": 3600,
    },
}

# 环境变量 -> (配置节, 键)
ENV_OVERRIDES = {
    "RESOLVER_API_URL": ("resolver", "api_url"),
    "FFMPEG_PATH": ("stream", "ffmpeg_path"),
    "HLS_WORK_DIR": ("preconvert", "work_dir"),
    "PORT": (None, "port"),
}


def _merge(base: dict, loaded: dict) -> dict:
    """按节合并配置，嵌套字典逐键覆盖"""
    for key, value in loaded.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key].update(value)
        else:
            base[key] = value
    return base


def load_config(config_file: str = None, *, write_default: bool = True) -> dict:
    """加载配置文件

    Args:
        config_file: 配置文件路径，默认取 YTHLS_CONFIG 环境变量或 config/config.json
        write_default: 配置文件不存在时是否写出默认配置

    Returns:
        合并后的配置字典
    """
    config_file = config_file or os.environ.get("YTHLS_CONFIG") or DEFAULT_CONFIG_FILE
    config = copy.deepcopy(DEFAULT_CONFIG)

    try:
        if os.path.exists(config_file):
            with open(config_file, "r", encoding="utf-8") as f:
                loaded_config = json.load(f) or {}
            _merge(config, loaded_config)
            logger.info(f"Loaded configuration file: {config_file}")
        elif write_default:
            directory = os.path.dirname(config_file)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(config_file, "w", encoding="utf-8") as f:
                json.dump(config, f, ensure_ascii=False, indent=2)
            logger.info(f"Created default configuration file: {config_file}")
    except (OSError, ValueError) as e:
        logger.error(f"Failed to load configuration file: {e}")

    for env_name, (section, key) in ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if not value:
            continue
        target = config.setdefault(section, {}) if section else config
        target[key] = value
        logger.info(f"Using {env_name} from environment")

    return config
