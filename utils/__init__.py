# Utility modules for PodcastPi
from .dependencies import check_tool, check_all_dependencies, TOOL_DEPENDENCIES
from .logging import (
    get_logger,
    app_logger,
    bluetooth_logger,
    events_logger,
    database_logger,
)
from .validation import (
    validate_mac_address,
    validate_state,
    validate_command,
)
from .sse import format_sse, clear_queue
