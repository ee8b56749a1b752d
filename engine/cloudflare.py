"""Cloudflare Workers AI client — runs hosted models over the REST API."""

import logging

import httpx

from .errors import BackendUnavailable

log = logging.getLogger("workers-ai")

DEFAULT_API_BASE = "https://api.cloudflare.com/client/v4"


class WorkersAIClient:
    """Thin wrapper around ``POST /accounts/{id}/ai/run/{model}``.

    The httpx client is owned by the caller so connections are pooled across
    requests and closed once at shutdown.
    """

    def __init__(self, account_id: str, api_token: str, http: httpx.AsyncClient,
                 base_url: str = DEFAULT_API_BASE):
        self.account_id = account_id
        self.api_token = api_token
        self.base_url = base_url.rstrip("/")
        self._http = http

    def model_url(self, model: str) -> str:
        return f"{self.base_url}/accounts/{self.account_id}/ai/run/{model}"

    async def run(self, model: str, *, json: dict | None = None, content: bytes | None = None) -> dict:
        """Run ``model`` and return the ``result`` object of the reply envelope.

        Pass ``json`` for structured inputs or ``content`` for a raw binary body.
        """
        headers = {"Authorization": f"Bearer {self.api_token}"}
        if content is not None:
            headers["Content-Type"] = "application/octet-stream"

        try:
            resp = await self._http.post(self.model_url(model), headers=headers, json=json, content=content)
        except httpx.HTTPError as e:
            log.error("Workers AI request to %s failed: %s", model, e)
            raise BackendUnavailable(f"{model} request failed: {e}") from e

        if resp.status_code >= 400:
            log.error("Workers AI %s returned %d: %s", model, resp.status_code, resp.text[:200])
            raise BackendUnavailable(f"{model} returned status code {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as e:
            raise BackendUnavailable(f"{model} returned invalid JSON") from e

        if not isinstance(data, dict) or not data.get("success", False):
            errors = data.get("errors") if isinstance(data, dict) else None
            raise BackendUnavailable(f"{model} reported failure: {errors or 'unknown error'}")

        result = data.get("result")
        if not isinstance(result, dict):
            raise BackendUnavailable(f"{model} returned no result")
        log.debug("Workers AI %s ok", model)
        return result
