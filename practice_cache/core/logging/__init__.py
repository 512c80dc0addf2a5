from .logger import (
    clear_request_id,
    get_logger,
    get_request_id,
    log_stage,
    set_request_id,
    setup_logging,
    truncate_key,
)

__all__ = [
    "clear_request_id",
    "get_logger",
    "get_request_id",
    "log_stage",
    "set_request_id",
    "setup_logging",
    "truncate_key",
]
