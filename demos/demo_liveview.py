#!/usr/bin/env python3
"""
Camera Remote - Demonstration Script

Connects to the camera described by the configuration file, lists the
available APIs, waits for the camera to become idle and saves a few
seconds of liveview frames with their frame information.
"""

import os
import sys

# Add src directory to path for imports
sys.path.append(os.path.join(os.path.dirname(__file__), '..', 'src'))

from camremote import CameraRemote, CameraRemoteError, EventTimeout
from camremote.utils import configure_logging, load_config
from camremote.utils.frames import save_liveview_frame

OUTPUT_DIR = os.path.join(os.path.dirname(__file__), '..', 'liveview')


def reconnect_wifi():
    """Placeholder for restoring the Wi-Fi link to the camera."""
    print("Link lost: waiting for the camera network to come back...")


def demo_camera_remote(config_file=None):
    """Demonstrate API discovery, event waiting and liveview streaming."""

    print("=" * 60)
    print("CAMERA REMOTE - DEMONSTRATION")
    print("=" * 60)

    config = load_config(config_file)
    logging_config = config.get('logging', {})
    configure_logging(logging_config.get('level', 'INFO'), logging_config.get('file'))

    with CameraRemote.from_config(config_file, reconnect=reconnect_wifi) as cam:
        print("\n1. Available APIs...")
        try:
            available = cam.get_available_api_list()[0]
        except CameraRemoteError as e:
            print(f"✗ Camera not responding: {e}")
            return
        print(f"✓ {len(available)} APIs available now, {len(cam.apis)} advertised")

        print("\n2. Waiting for the camera to become idle...")
        try:
            cam.wait_event(lambda r: r[1]['cameraStatus'] == 'IDLE', timeout=10)
            print("✓ Camera is idle")
        except EventTimeout:
            print("✗ Camera did not become idle")

        print("\n3. Streaming liveview for 5 seconds...")
        with cam.liveview(duration=5) as liveview:
            for image, frame_info in liveview.frames():
                path = save_liveview_frame(image, frame_info, OUTPUT_DIR)
                frames = len(frame_info.frames) if frame_info else 0
                print(f"  wrote {path} ({frames} frames)")
        print(f"✓ {liveview.frame_count} images, {liveview.resync_count} resyncs")


if __name__ == "__main__":
    demo_camera_remote(sys.argv[1] if len(sys.argv) > 1 else None)
