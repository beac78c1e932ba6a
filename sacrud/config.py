# Configuration settings should be set in app.config
# Class attributes of sacrud.SACRUD and environment variables are used as fallback
import os
import logging
from flask import current_app
import sacrud
from typing import Optional, Union

BOOLEAN_OPTIONS = ("MULTITENANT_ENABLED",)
TRUE_STRINGS = ("true", "1", "yes", "on")


def get_config(option: str) -> Optional[Union[bool, int, str]]:
    """Retrieve a configuration parameter
    :param option: configuration parameter
    :return: configuration value, looked up in app.config, then SACRUD, then the environment
    """
    try:
        result = current_app.config[option]
    except (KeyError, RuntimeError):
        result = os.environ.get(option, getattr(sacrud.SACRUD, option, None))

    if option in BOOLEAN_OPTIONS:
        return to_boolean(result)
    return result


def to_boolean(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in TRUE_STRINGS
    return bool(value)


def is_multitenant() -> bool:
    return get_config("MULTITENANT_ENABLED")


def is_debug() -> bool:
    """
    We use the loglevel to check whether we're running in debug mode
    :return: whether the app is in debug mode
    :rtype: Boolean
    """
    return sacrud.log.getEffectiveLevel() < logging.INFO
