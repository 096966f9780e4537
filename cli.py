import argparse
import logging
import sys
from typing import List, Optional

from codec import compress_config
from import_export import (
    build_chat_command,
    build_share_url,
    export_json_text,
    load_json,
    resolve_import_text,
)
from models import CHILD, PARENT, EditorError
from store import ConfigStore, load_settings

logger = logging.getLogger(__name__)


def _load_store(path: str) -> ConfigStore:
    return ConfigStore(load_json(path))


def cmd_encode(args: argparse.Namespace) -> int:
    settings = load_settings()
    config = _load_store(args.json_file).snapshot()
    if args.url:
        print(build_share_url(config, args.base_url or settings.share_base_url, settings.query_param))
    elif args.command:
        print(build_chat_command(config, settings.command_prefix))
    else:
        print(compress_config(config))
    return 0


def cmd_decode(args: argparse.Namespace) -> int:
    settings = load_settings()
    config = resolve_import_text(args.text, [settings.command_prefix], settings.query_param)
    store = ConfigStore(config)
    text = export_json_text(store.snapshot())
    if args.out:
        with open(args.out, "w", encoding="utf-8") as fh:
            fh.write(text)
        print(f"Wrote {len(config.servers)} servers to {args.out}")
    else:
        print(text)
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    store = _load_store(args.json_file)
    counts = store.type_counts()
    print(
        f"OK: {sum(counts.values())} servers, {counts[PARENT]} parents, {counts[CHILD]} children"
    )
    for node in store.tree:
        print(f"{node.ip}")
        for child in node.children:
            print(f"  {child.ip}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="mcs-editor", description="Edit and share server hierarchy configs.")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    sub = p.add_subparsers(dest="command_name", required=True)

    sp = sub.add_parser("encode", help="Compress an exported JSON config into a share payload")
    sp.add_argument("json_file", help="Path to an exported config JSON file")
    g = sp.add_mutually_exclusive_group()
    g.add_argument("--url", action="store_true", help="Print a share URL instead of the bare payload")
    g.add_argument("--command", action="store_true", help="Print a chat-bot import command")
    sp.add_argument("--base-url", default="", help="Base URL for --url (defaults to the settings file)")
    sp.set_defaults(func=cmd_encode)

    sp = sub.add_parser("decode", help="Expand a payload, share URL, chat command or JSON text")
    sp.add_argument("text", help="Payload text to decode")
    sp.add_argument("--out", help="Write the nested JSON to this path")
    sp.set_defaults(func=cmd_decode)

    sp = sub.add_parser("validate", help="Check a config JSON file and print its hierarchy")
    sp.add_argument("json_file", help="Path to a config JSON file (flat or nested)")
    sp.set_defaults(func=cmd_validate)

    return p


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    logger.debug("Running %s", args.command_name)
    try:
        return args.func(args)
    except (OSError, EditorError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
