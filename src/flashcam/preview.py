"""
FlashCam Desktop Preview
========================

Runs the frame pipeline against a local camera and shows the result in an
OpenCV window.

Usage:  flashcam-preview [--device 1] [--list-devices] [--config config.yaml]
Controls: q/ESC quit
"""

import argparse
import asyncio
import sys
from typing import List, Optional

from flashcam.capture import DeviceRegistry
from flashcam.config import Settings, load_config, setup_logging
from flashcam.errors import CaptureError
from flashcam.factory import create_capture_source, create_scheduler
from flashcam.pipeline import RefreshClock, WindowPresenter


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="flashcam-preview",
        description="Live camera preview with segmentation, landmark and flash effects",
    )
    parser.add_argument("--config", help="Path to config.yaml")
    parser.add_argument("--device", help="Device id to open (default: first enumerated)")
    parser.add_argument(
        "--list-devices",
        action="store_true",
        help="Print enumerated devices and exit",
    )
    parser.add_argument(
        "--no-flash",
        action="store_true",
        help="Disable the adaptive flash stage",
    )
    return parser.parse_args(argv)


async def run_preview(settings: Settings, device_id: Optional[str] = None) -> None:
    """Run one preview session until the window is closed or capture fails."""
    quit_event = asyncio.Event()
    presenter = WindowPresenter(
        window_name=settings.presenter.window_name,
        clock=RefreshClock(settings.presenter.refresh_hz),
        on_quit=quit_event.set,
    )
    scheduler = create_scheduler(settings, presenter=presenter)

    try:
        await scheduler.refresh_devices()
        await scheduler.gateway.load()
        await scheduler.start(device_id)
        print(f"[preview] Running on {scheduler.device_id!r}. Press q or ESC to quit.")

        quit_task = asyncio.create_task(quit_event.wait())
        join_task = asyncio.create_task(scheduler.join())
        done, pending = await asyncio.wait(
            {quit_task, join_task},
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in pending:
            task.cancel()
        # Surfaces a capture failure that ended the session
        for task in done:
            task.result()

    finally:
        await scheduler.stop()
        scheduler.gateway.close()
        presenter.close()

    metrics = scheduler.get_metrics()
    print(
        f"[preview] Stopped after {metrics['cycles_completed']} cycles "
        f"({metrics['flash_frames']} with flash)"
    )


async def list_devices(settings: Settings) -> None:
    registry = DeviceRegistry(preferred_id=settings.capture.default_device)
    await registry.refresh(create_capture_source(settings))
    for device in registry.devices:
        marker = "*" if device.device_id == registry.selected_id else " "
        print(f"{marker} {device.device_id}\t{device.label}")


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    settings = load_config(args.config)
    setup_logging(settings)
    if args.no_flash:
        settings.flash.enabled = False

    try:
        if args.list_devices:
            asyncio.run(list_devices(settings))
        else:
            asyncio.run(run_preview(settings, args.device))
    except CaptureError as e:
        print(f"[preview] Capture failed: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
