import logging
import logging.config
import os

import yaml

_DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(default_path=None, default_level=logging.INFO, env_key="SHAREMUX_LOG_CFG"):
    """
    Configure logging for the sharemux host process.

    Looks for a YAML file (``default_path`` or the file named by ``env_key``)
    holding a ``logging:`` dictConfig section; falls back to basicConfig.
    """
    path = os.getenv(env_key, None) or default_path
    if not path or not os.path.exists(path):
        if path:
            logging.basicConfig(level=default_level, format=_DEFAULT_FORMAT)
            logging.getLogger("sharemux").warning("Logging config not found: %s. Using defaults", path)
            return
        logging.basicConfig(level=default_level, format=_DEFAULT_FORMAT)
        return

    with open(path, "rt", encoding="utf-8") as f:
        try:
            config = yaml.safe_load(f.read()) or {}
        except yaml.YAMLError as e:
            logging.basicConfig(level=default_level, format=_DEFAULT_FORMAT)
            logging.getLogger("sharemux").warning("Error in logging configuration %s: %s", path, e)
            return

    if isinstance(config, dict) and "logging" in config:
        try:
            logging.config.dictConfig(config["logging"])
            return
        except (ValueError, TypeError, AttributeError, ImportError) as e:
            logging.basicConfig(level=default_level, format=_DEFAULT_FORMAT)
            logging.getLogger("sharemux").warning("Invalid logging section in %s: %s", path, e)
            return
    logging.basicConfig(level=default_level, format=_DEFAULT_FORMAT)


logger = logging.getLogger("sharemux")
