import asyncio
import json

import click

from . import __version__
from .config import get_settings
from .exceptions import GatewayError
from .providers import ProviderRegistry
from .schemas import GenerationRequest, ModelConfig
from .services import EmbeddingGateway, GenerationGateway
from .telemetry import setup_logging


def get_version():
    return __version__


def build_registry() -> ProviderRegistry:
    return ProviderRegistry(get_settings())


def _check_override(provider, model):
    if model is not None and provider is None:
        raise click.UsageError("--model requires --provider")


def _model_override(registry, provider, model, kind="chat"):
    """Build the model override; a bare --provider uses that provider's default model."""
    if provider is None:
        return None
    if model is None:
        model = registry.get_provider(provider).default_model(kind)
        if model is None:
            raise click.UsageError(f"Provider '{provider}' has no default model, pass --model")
    return ModelConfig(provider, model)


def _run(coro_factory):
    """Run a gateway coroutine against a fresh registry and close it afterwards."""
    registry = build_registry()

    async def _main():
        try:
            return await coro_factory(registry)
        finally:
            await registry.aclose()

    try:
        return asyncio.run(_main())
    except GatewayError as exc:
        raise click.ClickException(exc.message) from exc


@click.group()
@click.option("--log-level", default="WARNING", show_default=True)
def cli(log_level):
    setup_logging(level=log_level, format="console")


@cli.command()
@click.option("--format", default="text", type=click.Choice(["text", "json"]))
def version(format):
    if format == "json":
        click.echo(json.dumps({"version": get_version()}))
    else:
        click.echo(f"v{get_version()}")


@cli.command()
def providers():
    """List configured providers and default models."""
    registry = build_registry()
    available = registry.available_providers()
    defaults = registry.default_models.as_dict()

    click.echo("LLM providers:")
    for provider in available["llm"]:
        status = "configured" if registry.is_configured(provider) else "not configured"
        click.echo(f"  {provider} ({status})")
    click.echo("Embedding providers:")
    for provider in available["embedding"]:
        click.echo(f"  {provider}")
    click.echo("Default models:")
    for kind, stages in defaults.items():
        for stage, entry in stages.items():
            click.echo(f"  {kind}.{stage}: {entry['provider']}:{entry['model_id']}")

    asyncio.run(registry.aclose())


@cli.command()
@click.argument("prompt")
@click.option("--provider", default=None)
@click.option("--model", default=None)
@click.option("--system", default=None, help="System prompt")
@click.option("--no-fallback", is_flag=True)
def generate(prompt, provider, model, system, no_fallback):
    """Generate text for PROMPT."""
    _check_override(provider, model)
    request = GenerationRequest.from_prompt(prompt, system=system)

    async def _generate(registry):
        override = _model_override(registry, provider, model)
        gateway = GenerationGateway(registry)
        return await gateway.generate(
            request, model=override, enable_fallback=False if no_fallback else None
        )

    result = _run(_generate)
    click.echo(result.text)
    click.echo(
        f"[{result.provider}:{result.model}, {result.usage.total_tokens} tokens]", err=True
    )


@cli.command()
@click.argument("texts", nargs=-1, required=True)
@click.option("--provider", default=None)
@click.option("--model", default=None)
@click.option("--no-fallback", is_flag=True)
def embed(texts, provider, model, no_fallback):
    """Embed one or more TEXTS and print the vectors as JSON."""
    _check_override(provider, model)

    async def _embed(registry):
        override = _model_override(registry, provider, model, kind="embedding")
        gateway = EmbeddingGateway(registry)
        return await gateway.embed_many(
            list(texts), model=override, enable_fallback=False if no_fallback else None
        )

    result = _run(_embed)
    click.echo(
        json.dumps(
            {
                "provider": result.provider,
                "model": result.model,
                "tokens": result.usage.tokens,
                "embeddings": result.embeddings,
            }
        )
    )


if __name__ == "__main__":
    cli()
