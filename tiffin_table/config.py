"""Runtime configuration for the app (toggleable during tests/runtime)."""
import logging
import os
from decimal import Decimal
from typing import NamedTuple


class ConfigState(NamedTuple):
    delivery_fee: Decimal
    free_delivery_threshold: Decimal
    recent_orders_limit: int
    search_debounce_seconds: float
    added_lock_seconds: float
    notification_title: str
    log_level: str


def load_from_env() -> ConfigState:
    return ConfigState(
        delivery_fee=Decimal(os.getenv("DELIVERY_FEE", "30")),
        free_delivery_threshold=Decimal(os.getenv("FREE_DELIVERY_THRESHOLD", "300")),
        recent_orders_limit=int(os.getenv("RECENT_ORDERS_LIMIT", "10")),
        search_debounce_seconds=float(os.getenv("SEARCH_DEBOUNCE_SECONDS", "0.3")),
        added_lock_seconds=float(os.getenv("ADDED_LOCK_SECONDS", "1.5")),
        notification_title=os.getenv("NOTIFICATION_TITLE", "Tiffin Table"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )


state = load_from_env()


def get_config() -> ConfigState:
    return state


def set_config(**overrides) -> ConfigState:
    global state
    state = state._replace(**overrides)
    return state


def reset_config() -> ConfigState:
    global state
    state = load_from_env()
    return state


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or state.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
