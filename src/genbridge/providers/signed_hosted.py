"""
Signed Hosted Provider - Proprietary image algorithms behind a signed endpoint.

Requests carry no bearer token. Each call is authenticated with query
parameters ``aid, app_key, timestamp, nonce, sign`` where ``sign`` is the
SHA-1 of the sorted, concatenated ``(nonce, timestamp, app_secret)``.
The body is form-urlencoded with a JSON ``conf`` field; the model id is
sent as the algorithm name.
"""

from __future__ import annotations

import hashlib
import json
import logging
import random
import time
from typing import Any

import aiohttp

from genbridge.core.execution import CancellationToken, guarded
from genbridge.core.graph import MAX_SEED
from genbridge.errors import BackendExecutionFailed, EmptyResult, MissingCredential
from genbridge.providers.base import (
    Capability,
    ImageGenerationInput,
    ImageResult,
    Provider,
    ProviderType,
    error_message,
    read_json,
)


logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://effect.bytedance.net/media/api/pic/afr"
USER_AGENT = "ByteArtist-Client/1.0"


def sha1(message: str) -> str:
    return hashlib.sha1(message.encode("utf-8")).hexdigest()


def generate_sign(nonce: str, timestamp: str, secret: str) -> str:
    """SHA-1 over the lexically sorted nonce, timestamp and secret."""
    return sha1("".join(sorted([nonce, timestamp, secret])))


def generate_nonce() -> str:
    return str(random.randint(0, MAX_SEED - 1))


def generate_timestamp() -> str:
    return str(int(time.time()))


def is_success(data: dict[str, Any]) -> bool:
    inner = data.get("data") if isinstance(data.get("data"), dict) else {}
    return bool(
        data.get("success")
        or data.get("message") == "success"
        or inner.get("algo_status_code") == 0
    )


def parse_response(data: dict[str, Any]) -> ImageResult:
    """
    Extract result images from an algorithm response.

    Raises:
        BackendExecutionFailed: The response reports failure
        EmptyResult: Success was reported but no images came back
    """
    if not is_success(data):
        inner = data.get("data") if isinstance(data.get("data"), dict) else {}
        message = data.get("message") or inner.get("algo_status_message") or error_message(data)
        raise BackendExecutionFailed(f"Hosted generation failed: {message}")

    inner = data.get("data") or {}
    nested = inner.get("data") if isinstance(inner.get("data"), dict) else {}
    afr_data = nested.get("afr_data")
    if afr_data is None:
        afr_data = inner.get("afr_data") or []

    images = []
    for item in afr_data:
        pic = (item or {}).get("pic")
        if not pic:
            continue
        images.append(pic if pic.startswith("http") else f"data:image/png;base64,{pic}")

    if not images:
        raise EmptyResult("Hosted generation returned no images")
    return ImageResult(images=images, metadata=data)


class SignedHostedProvider(Provider):
    """Image generation against a signed, hosted algorithm endpoint."""

    provider_type = ProviderType.SIGNED_HOSTED
    capabilities = frozenset({Capability.IMAGE})
    name = "Hosted algorithm"
    base_url = DEFAULT_ENDPOINT

    def _credentials(self) -> tuple[str, str, str]:
        extra = self.config.extra
        aid = str(extra.get("aid") or "")
        app_key = str(extra.get("app_key") or "")
        app_secret = str(extra.get("app_secret") or "")
        if not (aid and app_key and app_secret):
            raise MissingCredential(
                f"{self.model_id} needs aid, app_key and app_secret to sign requests"
            )
        return aid, app_key, app_secret

    def signed_query(self) -> dict[str, str]:
        aid, app_key, app_secret = self._credentials()
        nonce = generate_nonce()
        timestamp = generate_timestamp()
        return {
            "aid": aid,
            "app_key": app_key,
            "timestamp": timestamp,
            "nonce": nonce,
            "sign": generate_sign(nonce, timestamp, app_secret),
        }

    def build_form(self, params: ImageGenerationInput) -> dict[str, str]:
        seed = params.options.seed
        conf = {
            "width": params.width or 1024,
            "height": params.height or 1024,
            "batch_size": params.batch_size or 1,
            "seed": seed if seed is not None else random.randint(0, MAX_SEED - 1),
            "prompt": params.prompt,
        }
        return {
            "conf": json.dumps(conf, ensure_ascii=False),
            "algorithms": self.model_id,
            "img_return_format": "png",
        }

    def get_headers(self) -> dict[str, str]:
        return {
            "get-svc": "1",
            "Content-Type": "application/x-www-form-urlencoded",
            "User-Agent": USER_AGENT,
        }

    async def generate_image(
        self,
        params: ImageGenerationInput,
        token: CancellationToken | None = None,
    ) -> ImageResult:
        query = self.signed_query()
        form = self.build_form(params)
        logger.debug("Hosted generation %s (%sx%s)", self.model_id, params.width, params.height)
        data = await guarded(token, self._post_form(self.base_url, query, form))
        return parse_response(data)

    async def _post_form(
        self,
        url: str,
        query: dict[str, str],
        form: dict[str, str],
    ) -> dict[str, Any]:
        async with aiohttp.ClientSession() as session:
            async with session.post(
                url,
                params=query,
                data=form,
                headers=self.get_headers(),
            ) as resp:
                data = await read_json(resp)
                self._check_error(resp.status, data)
                return data
