# scanner_feedback.py (v1.1)
from inventory_error_handler import CAMERA, NETWORK, PERMISSION, PROCESSING
from scan_pipeline import Found, NotFound, Failed, LOOKUP, UPDATE

SUCCESS = "success"
INFO = "info"
ERROR = "error"

SCAN_HAPTIC = [50]
SUCCESS_HAPTIC = [100, 50, 100]
ERROR_HAPTIC = [200, 100, 200]

ERROR_TITLES = {
    CAMERA: "Camera error",
    PERMISSION: "Permission required",
    NETWORK: "No connection",
    PROCESSING: "Processing error",
}


class Notice:
    def __init__(self, level, title, message, haptic=None, error_kind=None, display_seconds=1.0, rearm=True):
        self.level = level
        self.title = title
        self.message = message
        self.haptic = haptic
        self.error_kind = error_kind
        self.display_seconds = display_seconds
        self.rearm = rearm

    def __repr__(self):
        return f"Notice({self.level}, {self.message!r})"


def _failure_message(outcome):
    if outcome.error_kind == NETWORK:
        if outcome.stage == LOOKUP:
            return "Could not look up the product. Check your connection and try again."
        return "No internet connection. The stock was not updated, scan again."
    if outcome.error_kind == PERMISSION:
        return "Your session does not allow this action. Please sign in again."
    if outcome.stage == UPDATE and outcome.product_name:
        return f'Could not update the stock of "{outcome.product_name}". Scan again.'
    return "Unexpected error while processing the code. Try again."


def notice_for(outcome, display_seconds=1.0, handoff_seconds=0.8):
    """Maps a pipeline outcome to what the user sees."""
    if isinstance(outcome, Found):
        name = outcome.product.get("name")
        return Notice(
            SUCCESS, "Stock updated",
            f"+1 {name} (stock {outcome.stock_before} → {outcome.stock_after})",
            haptic=SUCCESS_HAPTIC, display_seconds=display_seconds,
        )
    if isinstance(outcome, NotFound):
        return Notice(
            INFO, "New product",
            f"No product with code {outcome.code}. Opening the new product form...",
            display_seconds=handoff_seconds, rearm=False,
        )
    if isinstance(outcome, Failed):
        return Notice(
            ERROR, ERROR_TITLES.get(outcome.error_kind, ERROR_TITLES[PROCESSING]),
            _failure_message(outcome), haptic=ERROR_HAPTIC,
            error_kind=outcome.error_kind, display_seconds=display_seconds,
        )
    raise TypeError(f"Unknown scan outcome: {outcome!r}")


def notice_for_camera_error(error, display_seconds=1.0):
    return Notice(
        ERROR, ERROR_TITLES[error.error_kind], str(error), haptic=ERROR_HAPTIC,
        error_kind=error.error_kind, display_seconds=display_seconds, rearm=False,
    )
