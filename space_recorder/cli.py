"""Command-line interface for space-recorder."""

from __future__ import annotations

import argparse
import logging
import queue
import sys
from typing import Any, Optional, Sequence

from pydantic import ValidationError

from .compositor.planner import plan as plan_layers
from .config import (
    ConfigFile,
    PipelineConfig,
    WindowBounds,
    dump_config_file,
    load_config_file,
    merge_overrides,
    write_default_config,
)
from .control.hotkeys import HotkeyListener, OpacityChannel
from .control.prompt import PromptListener
from .control.supervisor import PipelineSupervisor
from .errors import ConfigurationError, ProcessRuntimeError, SpaceRecorderError
from .executor.arguments import ArgumentBuilder
from .executor.preview import PreviewPlayer
from .executor.process_manager import ProcessManager
from .generation.cache import VideoCache
from .generation.client import DEFAULT_MODEL
from .generation.generator import VideoGenerator
from .sanitize import (
    parse_window_bounds,
    validate_device_name,
    validate_overlay_path,
    validate_recording_path,
)

logger = logging.getLogger("space_recorder")

# Engine stderr lines echoed when the engine fails
STDERR_TAIL = 20


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


# ------------------------------------------------------------------ #
#   Configuration from flags                                           #
# ------------------------------------------------------------------ #

def _flag_overrides(args: argparse.Namespace) -> dict[str, Any]:
    """Map ``run`` flags onto config file sections. Unset flags are None."""
    webcam: dict[str, Any] = {
        "mirror": args.mirror,
        "effect": args.effect,
        "opacity": args.opacity,
    }
    if args.webcam is not None:
        webcam.update(enabled=True, device=validate_device_name(args.webcam))
    if args.no_webcam:
        webcam["enabled"] = False

    audio: dict[str, Any] = {
        "volume": args.volume,
        "noise_gate": args.noise_gate,
        "compressor": args.compressor,
    }
    if args.audio is not None:
        audio.update(enabled=True, device=validate_device_name(args.audio))

    screen_device = args.screen_device
    if screen_device is not None:
        screen_device = validate_device_name(screen_device)

    return {
        "capture": {
            "device": screen_device,
            "window": args.window,
            "framerate": args.framerate,
            "retina": args.retina,
        },
        "webcam": webcam,
        "audio": audio,
        "effects": {
            "vignette": args.vignette,
            "grain": args.grain,
            "live_badge": args.live_badge,
            "timestamp": args.timestamp,
        },
        "output": {
            "resolution": args.resolution,
            "framerate": args.framerate,
            "record": args.output,
            "preview": False if args.no_preview else None,
        },
        "overlay": {
            "opacity": args.ai_opacity,
        },
    }


def build_config(args: argparse.Namespace) -> tuple[PipelineConfig, ConfigFile]:
    """Merge the config file with command-line flags.

    Returns:
        Tuple of (validated pipeline config, merged config file).

    Raises:
        ConfigurationError: If any value is invalid.
    """
    file_config = load_config_file(args.config)
    try:
        overrides = _flag_overrides(args)
        if args.output is not None:
            overrides["output"]["record"] = validate_recording_path(args.output)
    except ValueError as e:
        raise ConfigurationError(str(e)) from e

    merged = merge_overrides(file_config.model_dump(), overrides)
    try:
        file_config = ConfigFile.model_validate(merged)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid options:\n{e}") from e

    if not file_config.output.preview and not file_config.output.record:
        raise ConfigurationError("--no-preview requires --output (nothing to do)")

    config = file_config.to_pipeline_config()

    try:
        if args.window_bounds:
            config.screen.bounds = WindowBounds(*parse_window_bounds(args.window_bounds))
        if args.ai_video:
            config.set_ai_video(validate_overlay_path(args.ai_video))
    except ValueError as e:
        raise ConfigurationError(str(e)) from e

    if config.screen.window_app and config.screen.bounds is None:
        logger.warning(
            "No bounds for window '%s'; pass --window-bounds x,y,w,h to crop. "
            "Capturing the full screen.",
            config.screen.window_app,
        )

    return config.validate(), file_config


# ------------------------------------------------------------------ #
#   Commands                                                           #
# ------------------------------------------------------------------ #

def cmd_run(args: argparse.Namespace) -> int:
    config, file_config = build_config(args)

    if args.dry_run:
        plan = plan_layers(config, config.webcam_opacity)
        print(ArgumentBuilder().build_command(plan, config).to_string())
        return 0

    manager = ProcessManager()
    player = None
    if config.output.mode.wants_preview:
        player = PreviewPlayer(config.preview_player)

    opacity = OpacityChannel(config.webcam_opacity)
    commands: queue.Queue = queue.Queue()

    generator = None
    hotkeys = None
    if args.prompt:
        overlay = file_config.overlay
        generator = VideoGenerator(
            cache=VideoCache(overlay.cache_dir),
            max_cache_mb=overlay.cache_max_mb,
            model=overlay.model or DEFAULT_MODEL,
        )
        PromptListener(commands).start()
    elif args.hotkeys:
        hotkeys = HotkeyListener(opacity)
        hotkeys.start()

    supervisor = PipelineSupervisor(
        config,
        manager=manager,
        player=player,
        opacity=opacity,
        commands=commands,
        generator=generator,
    )
    try:
        report = supervisor.run()
    finally:
        if hotkeys is not None:
            hotkeys.stop()
        if generator is not None:
            generator.close()

    logger.info("Stopped: %s (restarts: %d)", report.reason.value, supervisor.restarts)
    return 0


def cmd_config(args: argparse.Namespace) -> int:
    if args.action == "init":
        path = write_default_config(args.config, overwrite=args.force)
        print(path)
        return 0
    print(dump_config_file(load_config_file(args.config)), end="")
    return 0


def cmd_cache(args: argparse.Namespace) -> int:
    overlay = load_config_file(args.config).overlay
    cache = VideoCache(overlay.cache_dir)

    if args.action == "clear":
        removed = cache.clear_all()
        print(f"Removed {removed} cached clip(s) from {cache.cache_dir}")
        return 0

    entries = cache.list_entries()
    if not entries:
        print(f"Cache is empty ({cache.cache_dir})")
        return 0
    for entry in entries:
        prompt = entry.prompt or "<unknown prompt>"
        print(f"{entry.hash}  {entry.size_bytes / (1024 * 1024):6.1f} MB  {prompt}")
    total_mb = cache.total_size_bytes() / (1024 * 1024)
    print(f"{len(entries)} clip(s), {total_mb:.1f} MB of {overlay.cache_max_mb} MB")
    return 0


# ------------------------------------------------------------------ #
#   Parser                                                             #
# ------------------------------------------------------------------ #

def build_arg_parser() -> argparse.ArgumentParser:
    """Build argument parser for CLI."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", default=None,
                        help="Config file (default: ~/.config/space-recorder/config.yaml)")
    common.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    p = argparse.ArgumentParser(
        prog="space-recorder",
        description="Composite screen, webcam ghost and AI overlays into a live stream",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    run = sub.add_parser("run", parents=[common], help="Start the live pipeline")
    run.set_defaults(func=cmd_run)

    capture = run.add_argument_group("capture")
    capture.add_argument("--screen-device", default=None, help="Screen capture device (default: 1:none)")
    capture.add_argument("--window", default=None, metavar="APP", help="Application window to crop to")
    capture.add_argument("--window-bounds", default=None, metavar="X,Y,W,H",
                         help="Window rectangle in points")
    capture.add_argument("--retina", action=argparse.BooleanOptionalAction, default=None,
                         help="Treat window bounds as points on a 2x display")
    capture.add_argument("--framerate", type=int, default=None, help="Capture and output framerate")

    webcam = run.add_argument_group("webcam")
    webcam.add_argument("--webcam", default=None, metavar="NAME", help="Webcam device name or index")
    webcam.add_argument("--no-webcam", action="store_true", help="Disable the webcam ghost layer")
    webcam.add_argument("--mirror", action="store_true", default=None, help="Mirror the webcam")
    webcam.add_argument("--effect", default=None, help="Webcam grading: none, cyberpunk, dark_mode")
    webcam.add_argument("--opacity", type=float, default=None, help="Webcam ghost opacity (0.0-1.0)")

    audio = run.add_argument_group("audio")
    audio.add_argument("--audio", default=None, metavar="NAME", help="Microphone device name or index")
    audio.add_argument("--volume", type=float, default=None, help="Microphone volume (0.0-2.0)")
    audio.add_argument("--noise-gate", action="store_true", default=None, help="Enable the noise gate")
    audio.add_argument("--compressor", action="store_true", default=None, help="Enable the compressor")

    effects = run.add_argument_group("effects")
    effects.add_argument("--vignette", action="store_true", default=None)
    effects.add_argument("--grain", action="store_true", default=None)
    effects.add_argument("--live-badge", action="store_true", default=None)
    effects.add_argument("--timestamp", action="store_true", default=None)

    output = run.add_argument_group("output")
    output.add_argument("--resolution", default=None, metavar="WxH", help="Output size (default: 1280x720)")
    output.add_argument("--output", default=None, metavar="PATH", help="Record to this file")
    output.add_argument("--no-preview", action="store_true", help="Record without a preview window")
    output.add_argument("--dry-run", action="store_true", help="Print the ffmpeg command and exit")

    overlay = run.add_argument_group("AI overlay")
    overlay.add_argument("--ai-video", default=None, metavar="PATH", help="Looping overlay clip")
    overlay.add_argument("--ai-opacity", type=float, default=None, help="Overlay opacity (0.0-1.0)")

    controls = run.add_mutually_exclusive_group()
    controls.add_argument("--hotkeys", action="store_true", help="Adjust webcam opacity with +/-")
    controls.add_argument("--prompt", action="store_true", help="Type prompts to generate overlays")

    config = sub.add_parser("config", parents=[common], help="Show or create the config file")
    config.add_argument("action", choices=["show", "init"])
    config.add_argument("--force", action="store_true", help="Overwrite an existing file")
    config.set_defaults(func=cmd_config)

    cache = sub.add_parser("cache", parents=[common], help="Inspect the overlay clip cache")
    cache.add_argument("action", choices=["list", "clear"])
    cache.set_defaults(func=cmd_cache)

    return p


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI entry point."""
    args = build_arg_parser().parse_args(argv)
    configure_logging(args.verbose)

    try:
        return args.func(args)
    except ProcessRuntimeError as e:
        logger.error("%s", e)
        for line in e.stderr.splitlines()[-STDERR_TAIL:]:
            print(line, file=sys.stderr)
        return 1
    except SpaceRecorderError as e:
        logger.error("%s", e)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
