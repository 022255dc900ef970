"""
genbridge - Command line entry point.

Usage:
    genbridge configure
    genbridge inspect workflow.json
    genbridge bind workflow.json 6 text prompt
    genbridge generate --prompt "A sunset" --backend Workflow --mapping workflow.json
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from genbridge.config import (
    DEFAULT_CONFIG_PATH,
    ProviderConfig,
    StudioConfig,
    load_config,
    save_config,
)
from genbridge.core.bindings import CANONICAL_TARGETS, resolve_by_keywords
from genbridge.core.generation import GenerationConfig, LoraSelection
from genbridge.core.images import decode_data_url, is_data_url, load_image_file, mime_to_extension
from genbridge.core.mapping import export_mapping, import_mapping
from genbridge.errors import GenBridgeError, describe_error
from genbridge.services.orchestrator import ROUTE_ALIASES, GenerationOrchestrator


logger = logging.getLogger(__name__)


# ============================================================================
# Commands
# ============================================================================

def cmd_configure(args: argparse.Namespace) -> int:
    """Interactive configuration of API keys."""
    path = Path(args.config) if args.config else DEFAULT_CONFIG_PATH
    config = load_config(path)

    print("=== genbridge - Provider Configuration ===\n")

    families = [
        ("doubao", "Doubao (Volcengine Ark)"),
        ("deepseek", "DeepSeek"),
        ("google", "Google Gemini"),
    ]
    for family, name in families:
        current = config.provider(family)
        has_key = "✓" if current.api_key else "✗"
        print(f"{name}: [{has_key}]")
        answer = input(f"  Configure {name}? (y/n): ").strip().lower()
        if answer == "y":
            api_key = input("  Enter API key: ").strip()
            if api_key:
                config.set_provider(family, ProviderConfig(
                    api_key=api_key,
                    base_url=current.base_url,
                    model_id=current.model_id,
                    extra=current.extra,
                ))
                print("  ✓ Saved")

    signed = config.provider("bytedance")
    has_secret = "✓" if signed.extra.get("app_secret") else "✗"
    print(f"Hosted algorithms: [{has_secret}]")
    if input("  Configure hosted algorithms? (y/n): ").strip().lower() == "y":
        extra = dict(signed.extra)
        for key in ("aid", "app_key", "app_secret"):
            value = input(f"  Enter {key}: ").strip()
            if value:
                extra[key] = value
        config.set_provider("bytedance", ProviderConfig(extra=extra))

    url = input(f"Execution endpoint [{config.execution_url}]: ").strip()
    if url:
        config.execution_url = url

    save_config(config, path)
    print(f"\nConfiguration saved to {path}")
    return 0


def cmd_inspect(args: argparse.Namespace) -> int:
    """List nodes, literal inputs and bindings of a graph or mapping file."""
    mapping = import_mapping(args.file)
    graph = mapping.graph
    store = mapping.binding_store()

    print(f"{mapping.title}: {len(graph)} nodes, {len(mapping.bindings)} bindings\n")
    for node_id in graph.node_ids():
        node = graph.get_node(node_id)
        mapped = store.mapped_input_count(node_id)
        print(f"[{node_id}] {node.display_title} ({node.class_type}) - {mapped} mapped")
        for key, value in node.inputs.items():
            index = store.find_binding(node_id, key)
            marker = f"  <- binding #{index}" if index >= 0 else ""
            print(f"    {key} = {value!r}{marker}")

    for path, source in graph.dangling_connections():
        print(f"\nWarning: {path} references missing node {source}")

    if not mapping.bindings:
        guesses = resolve_by_keywords(graph, GenerationConfig(prompt="<prompt>"))
        if guesses:
            print("\nNo bindings; keyword fallback would set:")
            for path, value in guesses:
                print(f"    {path} = {value!r}")
    return 0


def cmd_bind(args: argparse.Namespace) -> int:
    """Quick-bind one input to a canonical target and save the mapping."""
    mapping = import_mapping(args.file)
    store = mapping.binding_store()
    value = mapping.graph.get_input(args.node, args.key)
    binding = store.quick_bind(args.node, args.key, value, args.target)
    mapping.touch()

    output = Path(args.output) if args.output else Path(args.file)
    export_mapping(mapping, output)
    print(f"Bound {binding.graph_path} -> {binding.canonical_target.value} ({output})")
    return 0


async def _generate(args: argparse.Namespace, config: StudioConfig) -> int:
    mapping = import_mapping(args.mapping) if args.mapping else None
    references = tuple(load_image_file(p) for p in args.image or [])
    request = GenerationConfig(
        prompt=args.prompt,
        width=args.width,
        height=args.height,
        batch_size=args.batch,
        aspect_ratio=args.aspect_ratio,
        image_size=args.image_size,
        base_model=args.base_model,
        lora_selections=tuple(_parse_lora(item) for item in args.lora or []),
        reference_images=references,
    )

    orchestrator = GenerationOrchestrator.from_config(config)
    print(f"Generating with {args.backend or 'default'}...")
    print(f"Prompt: {args.prompt}\n")

    task = await orchestrator.generate(request, args.backend, mapping)
    print("✓ Generation successful!")
    print(f"  Task: {task.id}")
    if task.saved_path:
        print(f"  Stored at: {task.saved_path}")

    image = task.image_url
    if image and is_data_url(image):
        mime_type, data = decode_data_url(image)
        output = Path(args.output or f"output{mime_to_extension(mime_type)}")
        output.write_bytes(data)
        print(f"  Saved to: {output.absolute()}")
    elif image:
        print(f"  Image URL: {image}")
    return 0


def _parse_lora(text: str) -> LoraSelection:
    name, _, strength = text.partition(":")
    return LoraSelection(model_name=name, strength=float(strength) if strength else 1.0)


def cmd_generate(args: argparse.Namespace) -> int:
    config = StudioConfig.from_env(base=load_config(Path(args.config) if args.config else None))
    return asyncio.run(_generate(args, config))


# ============================================================================
# Entry point
# ============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="genbridge", description="Graph-to-UI generation bridge")
    parser.add_argument("--config", help=f"Config file (default {DEFAULT_CONFIG_PATH})")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("configure", help="Configure API keys and endpoints")
    p.set_defaults(func=cmd_configure)

    p = sub.add_parser("inspect", help="Show a graph's inputs and bindings")
    p.add_argument("file", help="Graph or mapping JSON")
    p.set_defaults(func=cmd_inspect)

    p = sub.add_parser("bind", help="Quick-bind an input to a canonical target")
    p.add_argument("file", help="Graph or mapping JSON")
    p.add_argument("node", help="Node id")
    p.add_argument("key", help="Input key")
    p.add_argument("target", choices=[t.value for t in CANONICAL_TARGETS], help="Canonical target")
    p.add_argument("-o", "--output", help="Write the mapping here instead of in place")
    p.set_defaults(func=cmd_bind)

    p = sub.add_parser("generate", help="Run one generation")
    p.add_argument("--prompt", required=True)
    p.add_argument("--backend", choices=sorted(ROUTE_ALIASES), help="Backend (default algorithm if omitted)")
    p.add_argument("--mapping", help="Mapping JSON for the Workflow backend")
    p.add_argument("--width", type=int, default=1024)
    p.add_argument("--height", type=int, default=1024)
    p.add_argument("--batch", type=int, default=1)
    p.add_argument("--aspect-ratio")
    p.add_argument("--image-size")
    p.add_argument("--base-model")
    p.add_argument("--lora", action="append", help="name[:strength], up to three")
    p.add_argument("--image", action="append", help="Reference image; the first one is edited")
    p.add_argument("-o", "--output", help="Where to write a returned image")
    p.set_defaults(func=cmd_generate)

    return parser


def main(argv: list[str] | None = None) -> int:
    """
    Main entry point for genbridge.

    Returns:
        Exit code (0 for success, non-zero for errors)
    """
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        return args.func(args)
    except GenBridgeError as e:
        title, description = describe_error(e)
        print(f"✗ {title}: {description}", file=sys.stderr)
        return 1
    except (OSError, ValueError) as e:
        print(f"✗ Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
