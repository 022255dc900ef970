#!/usr/bin/env python3
"""
Quick test script to verify a provider answers.

Usage:
    # Keys come from ~/.config/genbridge/config.json and the environment
    python scripts/test_generation.py --list-models

    # Image generation against one model
    python scripts/test_generation.py --model seed4_lemo1230 --prompt "A cute cat"

    # Text generation through the optimization profile
    python scripts/test_generation.py --model deepseek-chat --text --prompt "cat on a roof"
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


def load():
    from genbridge.config import StudioConfig, load_config

    return StudioConfig.from_env(base=load_config())


def list_models():
    from genbridge.errors import GenBridgeError
    from genbridge.providers import ProviderRegistry

    registry = ProviderRegistry(load())
    print("Available models:")
    for descriptor in registry.list_descriptors():
        try:
            registry.resolve(descriptor.id)
            status = "✓"
        except GenBridgeError as e:
            status = f"✗ ({e})"
        caps = ", ".join(sorted(c.value for c in descriptor.capabilities))
        print(f"  {descriptor.id}: {descriptor.label} [{caps}] {status}")


async def generate(prompt: str, model_id: str, text: bool):
    from genbridge.core.images import decode_data_url, is_data_url, mime_to_extension
    from genbridge.errors import GenBridgeError, describe_error
    from genbridge.providers import ImageGenerationInput, ProviderRegistry
    from genbridge.services import AIService

    config = load()
    registry = ProviderRegistry(config)

    print(f"Generating with {model_id}...")
    print(f"Prompt: {prompt}")
    print()

    try:
        if text:
            result = await AIService(registry, config).generate_text(
                prompt, model=model_id, profile_id="optimization"
            )
            print("✓ Generation successful!")
            print(f"  Text: {result.text}")
            return

        result = await AIService(registry, config).generate_image(
            model_id, ImageGenerationInput(prompt=prompt, width=1024, height=1024)
        )
        print("✓ Generation successful!")
        print(f"  Images: {len(result.images)}")

        # Save first image
        image = result.first
        if image and is_data_url(image):
            mime_type, data = decode_data_url(image)
            output_path = Path(f"output{mime_to_extension(mime_type)}")
            output_path.write_bytes(data)
            print(f"  Saved to: {output_path.absolute()}")
        elif image:
            print(f"  URL: {image}")

    except GenBridgeError as e:
        title, description = describe_error(e)
        print(f"✗ {title}: {description}")


def main():
    parser = argparse.ArgumentParser(description="Test provider generation")
    parser.add_argument("--prompt", type=str, default="A beautiful sunset over mountains", help="Prompt for generation")
    parser.add_argument("--model", type=str, default="seed4_lemo1230", help="Model ID to use")
    parser.add_argument("--text", action="store_true", help="Generate text instead of an image")
    parser.add_argument("--list-models", action="store_true", help="List available models")

    args = parser.parse_args()

    if args.list_models:
        list_models()
    else:
        asyncio.run(generate(args.prompt, args.model, args.text))


if __name__ == "__main__":
    main()
