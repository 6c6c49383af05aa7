# utils/__init__.py

from utils.logger import logger
from utils.config import load_cfg, service_settings, ServiceSettings

__all__ = ["logger", "load_cfg", "service_settings", "ServiceSettings"]
