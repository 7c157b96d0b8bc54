"""PAK CLI entrypoints."""

from __future__ import annotations

import argparse
from pathlib import Path

from .aspect_ratios import STUDIO_RATIOS, SUPPORTED_RATIOS
from .chat.loop import ChatLoop, load_image
from .engine import PakEngine
from .errors import PakError, user_message
from .prompts.synthesis import CONSISTENCY_ATTRIBUTES, ConsistencySettings
from .studio.smart_resize import RESIZE_MODES, SmartResizeRequest
from .turns import GenerationResult, ImageBlob
from .utils import image_suffix, load_dotenv, write_bytes


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pak", description="PAK AI multimodal chat engine")
    sub = parser.add_subparsers(dest="command")

    chat = sub.add_parser("chat", help="Interactive chat loop")
    chat.add_argument("--out", required=True, help="Output directory for images and audio")
    chat.add_argument("--events", help="Path to events.jsonl")
    chat.add_argument("--dry-run", dest="dry_run", action="store_true", help="Use the offline gateway")

    generate = sub.add_parser("generate", help="Generate one image")
    generate.add_argument("--prompt", required=True)
    generate.add_argument("--ratio", default="1:1", choices=SUPPORTED_RATIOS)
    generate.add_argument("--out", required=True)
    generate.add_argument("--events")
    generate.add_argument("--dry-run", dest="dry_run", action="store_true")

    resize = sub.add_parser("resize", help="Resize an image to a new aspect ratio")
    resize.add_argument("--image", required=True, help="Path to the source image")
    resize.add_argument("--ratio", required=True, choices=STUDIO_RATIOS)
    resize.add_argument("--out", required=True)
    resize.add_argument("--prompt", help="Original prompt of the image, if known")
    resize.add_argument("--mode", choices=RESIZE_MODES, help="Use studio smart resize with this mode")
    resize.add_argument("--events")
    resize.add_argument("--dry-run", dest="dry_run", action="store_true")

    studio = sub.add_parser("studio", help="Generate with per-attribute consistency control")
    studio.add_argument("--prompt", required=True)
    studio.add_argument("--ratio", default="1:1", choices=STUDIO_RATIOS)
    studio.add_argument("--out", required=True)
    studio.add_argument(
        "--ref",
        action="append",
        default=[],
        metavar="ATTRIBUTE=PATH",
        help="Reference image for face, dress, background or environment (repeatable)",
    )
    studio.add_argument(
        "--change",
        default="",
        help="Comma-separated attributes to create anew instead of keeping",
    )
    studio.add_argument("--events")
    studio.add_argument("--dry-run", dest="dry_run", action="store_true")
    return parser


def _build_engine(args: argparse.Namespace) -> PakEngine:
    out_dir = Path(args.out)
    events_path = Path(args.events) if args.events else out_dir / "events.jsonl"
    return PakEngine(events_path=events_path, dry_run=True if args.dry_run else None)


def _save_result(result: GenerationResult, out_dir: Path, stem: str) -> Path | None:
    blob = result.image_blob()
    if blob is None:
        return None
    return _write_blob(blob, out_dir, stem)


def _handle_chat(args: argparse.Namespace) -> int:
    engine = _build_engine(args)
    ChatLoop(engine, Path(args.out)).run()
    return 0


def _handle_generate(args: argparse.Namespace) -> int:
    engine = _build_engine(args)
    result = engine.dispatcher.resume(args.prompt, args.ratio)
    print(result.text)
    if result.is_error:
        return 1
    path = _save_result(result, Path(args.out), "generated")
    print(f"Image saved to {path}")
    return 0


def _handle_resize(args: argparse.Namespace) -> int:
    source_path = Path(args.image)
    if not source_path.exists():
        print(f"Resize failed: file not found ({source_path})")
        return 1
    engine = _build_engine(args)
    source = load_image(source_path)
    out_dir = Path(args.out)
    if args.mode:
        try:
            resized = engine.smart_resize(SmartResizeRequest(image=source, target_ratio=args.ratio, mode=args.mode))
        except PakError as exc:
            print(user_message(exc, "resize the image"))
            return 1
        path = _write_blob(resized.image, out_dir, "resized")
        print(f"Resized {resized.original_ratio} -> {resized.new_ratio} ({resized.method}). Image saved to {path}")
        return 0
    result = engine.resize(source, args.ratio, args.prompt)
    print(result.text)
    if result.is_error:
        return 1
    print(f"Image saved to {_save_result(result, out_dir, 'resized')}")
    return 0


def _handle_studio(args: argparse.Namespace) -> int:
    engine = _build_engine(args)
    for item in args.ref:
        attribute, _, raw_path = str(item).partition("=")
        attribute = attribute.strip().lower()
        if attribute not in CONSISTENCY_ATTRIBUTES or not raw_path:
            print(f"--ref expects ATTRIBUTE=PATH with ATTRIBUTE in {', '.join(CONSISTENCY_ATTRIBUTES)}")
            return 2
        path = Path(raw_path)
        if not path.exists():
            print(f"Reference not found: {path}")
            return 1
        engine.set_reference(attribute, load_image(path))
    changed = {part.strip().lower() for part in args.change.split(",") if part.strip()}
    unknown = changed - set(CONSISTENCY_ATTRIBUTES)
    if unknown:
        print(f"--change accepts only {', '.join(CONSISTENCY_ATTRIBUTES)}")
        return 2
    settings = ConsistencySettings.from_mapping(
        {attribute: "change" if attribute in changed else "consistent" for attribute in CONSISTENCY_ATTRIBUTES}
    )
    try:
        generation = engine.generate_with_control(args.prompt, settings, args.ratio)
    except PakError as exc:
        print(user_message(exc, "generate the image"))
        return 1
    path = _write_blob(generation.image, Path(args.out), "studio")
    kept = ", ".join(generation.references_used()) or "none"
    print(f"Kept: {kept}. Image saved to {path}")
    return 0


def _write_blob(blob: ImageBlob, out_dir: Path, stem: str) -> Path:
    return write_bytes(out_dir / f"{stem}{image_suffix(blob.mime_type)}", blob.data)


def main() -> None:
    load_dotenv()
    parser = _build_parser()
    args = parser.parse_args()
    if args.command == "chat":
        raise SystemExit(_handle_chat(args))
    if args.command == "generate":
        raise SystemExit(_handle_generate(args))
    if args.command == "resize":
        raise SystemExit(_handle_resize(args))
    if args.command == "studio":
        raise SystemExit(_handle_studio(args))
    parser.print_help()
    raise SystemExit(1)


if __name__ == "__main__":
    main()
