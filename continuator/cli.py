"""
CLI: create, continue, list, download, stitch, flow, resume and show clips.
Usage:
  continuator create --id intro --prompt "A lighthouse at dusk"
  continuator continue --from intro --id intro-2 --prompt "The camera drifts out to sea"
  continuator flow --id storm --prompt "Clouds gather" --prompt "Rain falls" --prompt "Sun breaks through"
  continuator --provider veo --gcp-project my-proj --gcp-location us-central1 create --id v1 --prompt "..."
  continuator download --id intro --variant thumbnail --output intro.webp
  continuator stitch --id reel intro intro-2
  DEBUG=1 continuator ...      # print full tracebacks on errors
"""
import argparse
import logging
import os
import sys
from pathlib import Path

from .config import apply_overrides, load_config
from .errors import ContinuatorError
from .manager import VideoManager
from .models import ClipRecord, VideoVariant
from .providers import GenerationRequest
from .workflow_utils import setup_logging

logger = logging.getLogger(__name__)


def _bool_arg(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise argparse.ArgumentTypeError(f"expected true or false, got {value!r}")


def _add_generation_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--model", type=str, default=None, help="Override the model for this clip.")
    parser.add_argument("--size", type=str, default=None, help="Override the size (e.g. 1280x720).")
    parser.add_argument("--seconds", type=int, default=None, help="Override the duration in seconds.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="continuator",
        description="Generate AI video clips, continue them from their last frame, and stitch chains.",
    )
    parser.add_argument("--config", type=Path, default=None, help="Path to config YAML (default: ./continuator.yaml).")
    parser.add_argument("--provider", choices=["sora", "veo"], default=None, help="Video generation backend.")
    parser.add_argument("--api-key", type=str, default=None, help="OpenAI API key (default: $OPENAI_API_KEY).")
    parser.add_argument("--model", dest="default_model", type=str, default=None, help="Default model.")
    parser.add_argument("--size", dest="default_size", type=str, default=None, help="Default size (e.g. 1280x720).")
    parser.add_argument("--seconds", dest="default_seconds", type=int, default=None, help="Default clip length.")
    parser.add_argument("--data-dir", type=Path, default=None, help="Directory for videos and the registry (default: ./videos).")
    parser.add_argument("--poll-interval", type=float, default=None, help="Seconds between status checks.")
    parser.add_argument("--timeout", type=float, default=None, help="Give up waiting for a render after this many seconds.")
    parser.add_argument("--gcp-project", type=str, default=None, help="Google Cloud project id for Veo.")
    parser.add_argument("--gcp-location", type=str, default=None, help="Google Cloud location for Veo (e.g. us-central1).")
    parser.add_argument("--gcp-access-token", type=str, default=None, help="Pre-fetched Google Cloud access token.")
    parser.add_argument("--gcp-storage-uri", type=str, default=None, help="gs:// prefix for Veo outputs.")
    parser.add_argument("--gcp-generate-audio", type=_bool_arg, default=None, help="Whether Veo generates audio (default: true).")
    parser.add_argument("--gcp-resolution", choices=["720p", "1080p"], default=None, help="Preferred Veo resolution.")
    parser.add_argument("--gcp-enhance-prompt", type=_bool_arg, default=None, help="Whether Veo enhances prompts (default: true).")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging.")

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("create", help="Create a brand-new clip.")
    p.add_argument("--id", required=True, help="Local identifier used for filenames (e.g. intro-001).")
    p.add_argument("--prompt", required=True, help="Prompt describing the clip.")
    _add_generation_args(p)

    p = sub.add_parser("continue", help="Continue a clip from its last frame.")
    p.add_argument("--from", dest="parent_id", required=True, help="Clip to extend.")
    p.add_argument("--id", required=True, help="Identifier for the new clip.")
    p.add_argument("--prompt", required=True, help="Prompt for the next beat of the scene.")
    _add_generation_args(p)

    sub.add_parser("list", help="List registered clips.")

    p = sub.add_parser("show", help="Show one clip's record.")
    p.add_argument("--id", required=True)

    p = sub.add_parser("download", help="Download a clip asset (video, thumbnail, spritesheet).")
    p.add_argument("--id", required=True)
    p.add_argument("--variant", choices=[v.value for v in VideoVariant], default=VideoVariant.VIDEO.value)
    p.add_argument("--output", type=Path, required=True, help="Output path (overwritten).")

    p = sub.add_parser("stitch", help="Concatenate clips into <data-dir>/<id>.mp4.")
    p.add_argument("--id", required=True, help="Name of the stitched output.")
    p.add_argument("clips", nargs="+", help="Clip ids in playback order.")

    p = sub.add_parser("flow", help="Create a whole chain from prompts, then stitch it.")
    p.add_argument("--id", required=True, help="Flow name; clips become <id>-01, <id>-02, ...")
    p.add_argument("--prompt", dest="prompts", action="append", required=True, help="Repeat once per clip.")
    p.add_argument("--from", dest="start_from", default=None, help="Continue an existing chain instead of starting fresh.")
    p.add_argument("--output-id", default=None, help="Name of the stitched output (default: --id).")
    _add_generation_args(p)

    p = sub.add_parser("resume", help="Resume waiting for a pending clip's remote job.")
    p.add_argument("--id", required=True)
    return parser


def print_record(record: ClipRecord) -> None:
    print(f"id: {record.id}")
    print(f"status: {record.status.value}")
    print(f"remote_id: {record.remote_job_id}")
    print(f"backend: {record.provider.value}")
    print(f"model: {record.model}")
    print(f"seconds: {record.seconds}")
    print(f"size: {record.size}")
    if record.parent_id:
        print(f"parent: {record.parent_id}")
    print(f"created_at: {record.created_at}")
    if record.file_path:
        print(f"file: {record.file_path}")
    if record.error:
        print(f"error: {record.error}")
    print(f"prompt: {record.prompt}")
    print()


def _request(args: argparse.Namespace) -> GenerationRequest:
    return GenerationRequest(
        local_id=args.id,
        prompt=args.prompt,
        model=args.model,
        size=args.size,
        seconds=args.seconds,
    )


def run(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    config = apply_overrides(
        config,
        provider=args.provider,
        api_key=args.api_key,
        model=args.default_model,
        size=args.default_size,
        seconds=args.default_seconds,
        data_dir=str(args.data_dir) if args.data_dir else None,
        poll_interval=args.poll_interval,
        timeout=args.timeout,
        gcp_project=args.gcp_project,
        gcp_location=args.gcp_location,
        gcp_access_token=args.gcp_access_token,
        gcp_storage_uri=args.gcp_storage_uri,
        gcp_generate_audio=args.gcp_generate_audio,
        gcp_resolution=args.gcp_resolution,
        gcp_enhance_prompt=args.gcp_enhance_prompt,
    )
    manager = VideoManager(config)

    if args.command == "create":
        print_record(manager.create(_request(args)))
    elif args.command == "continue":
        print_record(manager.continue_clip(args.parent_id, _request(args)))
    elif args.command == "list":
        records = manager.list()
        if not records:
            print("(no clips recorded)")
        for record in records:
            print_record(record)
    elif args.command == "show":
        print_record(manager.get(args.id))
    elif args.command == "download":
        path = manager.download(args.id, args.variant, args.output)
        print(f"downloaded {args.id} {args.variant} -> {path}")
    elif args.command == "stitch":
        path = manager.stitch(args.id, args.clips)
        print(f"stitched {args.id} -> {path}")
    elif args.command == "flow":
        result = manager.flow(
            args.prompts,
            name=args.id,
            start_from=args.start_from,
            output_id=args.output_id,
            model=args.model,
            size=args.size,
            seconds=args.seconds,
        )
        for record in result.clips:
            print_record(record)
        print(f"stitched {' + '.join(result.chain_ids)} -> {result.output_path}")
    elif args.command == "resume":
        print_record(manager.resume(args.id))
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)
    try:
        return run(args)
    except ContinuatorError as e:
        if os.environ.get("DEBUG"):
            logger.exception("%s failed", args.command)
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("Interrupted; pending clips can be picked up again with `continuator resume --id <id>`.", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
