# camera_session.py (v1.2)
import logging
import threading

from inventory_error_handler import CAMERA, PERMISSION

NO_CAMERA = "no_camera"
PERMISSION_DENIED = "permission_denied"
CAMERA_IN_USE = "camera_in_use"
INSECURE_CONTEXT = "insecure_context"
UNKNOWN = "unknown"

REAR_CAMERA_HINTS = ("back", "rear", "trasera", "environment", "facing back")

REMEDIATION = {
    NO_CAMERA: "No camera was found on this device.",
    PERMISSION_DENIED: "Camera permission is required to scan codes. Allow camera access in your browser settings.",
    CAMERA_IN_USE: "The camera is being used by another application. Close other apps using the camera.",
    INSECURE_CONTEXT: "The camera requires a secure connection (HTTPS). Open the app over HTTPS.",
    UNKNOWN: "Could not start the camera. Try reloading the page or using another browser.",
}


class CameraError(Exception):
    def __init__(self, kind, detail=None):
        self.kind = kind
        self.detail = detail
        super().__init__(REMEDIATION.get(kind, REMEDIATION[UNKNOWN]))

    @property
    def error_kind(self):
        return PERMISSION if self.kind == PERMISSION_DENIED else CAMERA


def classify_camera_error(e):
    """Maps a media/driver exception onto a CameraError kind."""
    if isinstance(e, CameraError):
        return e
    name = getattr(e, "name", None) or type(e).__name__
    message = str(e)
    if isinstance(e, PermissionError) or name in ("NotAllowedError", "PermissionDeniedError") or "Permission" in message:
        kind = PERMISSION_DENIED
    elif name in ("NotFoundError", "DevicesNotFoundError", "OverconstrainedError") or "NotFoundError" in message:
        kind = NO_CAMERA
    elif name in ("NotReadableError", "TrackStartError") or "NotReadableError" in message or "in use" in message.lower():
        kind = CAMERA_IN_USE
    elif name == "SecurityError" or "SSL" in message or "secure" in message.lower():
        kind = INSECURE_CONTEXT
    else:
        kind = UNKNOWN
    return CameraError(kind, detail=message)


def select_best_camera(devices):
    """
    Prefers a device whose label says it faces the rear, then the last listed
    device (usually the main camera on phones), then the first.
    """
    if not devices:
        return None
    for device in devices:
        label = (device.get("label") or "").lower()
        if any(hint in label for hint in REAR_CAMERA_HINTS):
            logging.info(f"Using rear camera: {device.get('label')}")
            return device
    if len(devices) > 1:
        logging.info(f"Using last camera: {devices[-1].get('label')}")
        return devices[-1]
    logging.info(f"Using first camera: {devices[0].get('label')}")
    return devices[0]


def media_constraints_for(device):
    if device and device.get("deviceId"):
        video = {"deviceId": {"exact": device["deviceId"]}}
    else:
        video = {"facingMode": "environment", "width": {"ideal": 1280}, "height": {"ideal": 720}}
    return {"video": video, "audio": False}


def is_secure_origin(headers):
    """getUserMedia only works over HTTPS or on localhost."""
    headers = {str(k).lower(): str(v) for k, v in (headers or {}).items()}
    if headers.get("x-forwarded-proto", "").lower() == "https":
        return True
    if headers.get("origin", "").lower().startswith("https://"):
        return True
    host = headers.get("host", "").split(":")[0].lower()
    return host in ("localhost", "127.0.0.1", "[::1]")


class CameraSession:
    """
    Owns one camera stream and the decoder bound to it.

    backend.open(device, on_code) acquires the stream and returns a handle;
    backend.release(handle) gives the hardware back. Decoded codes that
    arrive after stop() are ignored.
    """
    def __init__(self, backend, on_code, devices=None, secure_context=True):
        self.backend = backend
        self.on_code = on_code
        self.devices = devices
        self.secure_context = secure_context
        self.device = None
        self._handle = None
        self._lock = threading.Lock()

    @property
    def active(self):
        return self._handle is not None

    def _dispatch(self, code):
        if self._handle is None:
            return
        self.on_code(code)

    def start(self):
        with self._lock:
            if self._handle is not None:
                return self._handle
            if not self.secure_context:
                raise CameraError(INSECURE_CONTEXT)
            device = None
            if self.devices is not None:
                device = select_best_camera(self.devices)
                if device is None:
                    raise CameraError(NO_CAMERA)
            try:
                handle = self.backend.open(device, self._dispatch)
            except Exception as e:
                error = classify_camera_error(e)
                logging.error(f"Error starting camera ({error.kind}): {e}")
                raise error from e
            self.device = device
            self._handle = handle
            logging.info("Camera session started")
            return handle

    def stop(self):
        """Releases the stream. Safe to call any number of times."""
        with self._lock:
            handle, self._handle = self._handle, None
        if handle is None:
            return False
        try:
            self.backend.release(handle)
        except Exception as e:
            logging.error(f"Error releasing camera: {e}", exc_info=True)
        logging.info("Camera session stopped")
        return True
