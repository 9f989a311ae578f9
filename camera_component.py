# camera_component.py (v2.21)
import json
import threading

import av
import streamlit as st
import streamlit.components.v1 as components
from pyzbar.pyzbar import decode
from streamlit_webrtc import webrtc_streamer, WebRtcMode

from camera_session import media_constraints_for
from parsers import normalize_scanned_code


class WebRtcCameraBackend:
    """
    Browser camera via streamlit-webrtc. Streamlit reruns the script on every
    interaction, so render() has to be called on each run; open() and
    release() only flip the desired playing state and the decoder binding.
    """
    def __init__(self, key):
        self.key = key
        self.device = None
        self.playing = False
        self._on_code = None

    def open(self, device, on_code):
        self.device = device
        self._on_code = on_code
        self.playing = True
        return self.key

    def release(self, handle):
        self._on_code = None
        self.playing = False

    def video_frame_callback(self, frame: av.VideoFrame):
        on_code = self._on_code
        if on_code is None:
            return frame
        img = frame.to_ndarray(format="bgr24")
        for decoded in decode(img):
            on_code(decoded.data)
        return frame

    def render(self):
        return webrtc_streamer(
            key=self.key,
            mode=WebRtcMode.SENDRECV,
            video_frame_callback=self.video_frame_callback,
            media_stream_constraints=media_constraints_for(self.device),
            desired_playing_state=self.playing,
            async_processing=True,
        )


def vibrate(pattern):
    """Haptic pulse on devices whose browser supports navigator.vibrate."""
    if not pattern:
        return
    components.html(
        f"<script>const n = window.parent.navigator; if (n && n.vibrate) {{ n.vibrate({json.dumps(pattern)}); }}</script>",
        height=0,
    )


def barcode_scanner_component(key: str):
    """
    One-shot scanner for filling a text field. Returns the scanned value on
    the first rerun after a code is seen, then forgets it.
    """
    holder_key = f"scanned_value_{key}"
    if holder_key not in st.session_state:
        st.session_state[holder_key] = {"value": None, "lock": threading.Lock()}
    holder = st.session_state[holder_key]

    def video_frame_callback(frame: av.VideoFrame):
        img = frame.to_ndarray(format="bgr24")
        decoded_objects = decode(img)
        if decoded_objects:
            with holder["lock"]:
                holder["value"] = normalize_scanned_code(decoded_objects[0].data)
        return frame

    webrtc_streamer(
        key=key,
        mode=WebRtcMode.SENDRECV,
        video_frame_callback=video_frame_callback,
        media_stream_constraints=media_constraints_for(None),
        async_processing=True,
    )

    with holder["lock"]:
        result, holder["value"] = holder["value"], None
    return result or None
