"""External content collaborators: generation and translation.

Both are black boxes behind small protocols. The HTTP implementations talk
JSON to a content service; the wire format of any particular AI provider
lives behind that service.
"""

import asyncio
import json
import logging
import re
from typing import Any, Dict, List, Optional, Protocol

import aiohttp
from pydantic import BaseModel, ConfigDict, Field

from recipe_engine.core.cancellation import CancelToken
from recipe_engine.core.config import settings
from recipe_engine.core.errors import CollaboratorError, CollaboratorUnavailable

logger = logging.getLogger(__name__)


class ImageShot(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    key: str = ""
    prompt: Optional[str] = None
    image_url: Optional[str] = Field(default=None, alias="imageUrl")


class GeneratedRecipe(BaseModel):
    """Structured recipe content returned by the generation collaborator."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    title: str
    description: Optional[str] = None
    summary: Optional[Dict[str, Any]] = None
    story: Optional[Dict[str, Any]] = None
    ingredients: List[Any] = Field(default_factory=list)
    steps: List[Dict[str, Any]] = Field(default_factory=list)
    tips: Optional[List[Any]] = None
    faq: Optional[List[Any]] = None
    nutrition: Optional[Dict[str, Any]] = None
    seo: Optional[Dict[str, Any]] = None
    image_shots: List[ImageShot] = Field(default_factory=list, alias="imageShots")
    # Suggested tags per dimension: {"scene": ["breakfast"], "method": [...]}
    tags: Dict[str, List[str]] = Field(default_factory=dict)
    cook_time: Optional[int] = Field(default=None, alias="cookTime")
    prep_time: Optional[int] = Field(default=None, alias="prepTime")
    difficulty: Optional[int] = None
    servings: Optional[int] = None


class GenerationCollaborator(Protocol):
    """Produces recipe content and images."""

    async def generate(self, dish_name: str, constraints: Dict[str, Any], token: CancelToken) -> GeneratedRecipe:
        ...

    async def generate_image(self, prompt: str, dish_name: str, token: CancelToken) -> str:
        """Return the URL of one generated image."""
        ...


class TranslationCollaborator(Protocol):
    """Translates structured content between languages."""

    async def translate(
        self,
        source: Dict[str, Any],
        source_lang: str,
        target_lang: str,
        prompt_template: str,
        token: CancelToken,
    ) -> Dict[str, Any]:
        ...


_JSON_BLOCK = re.compile(r"\{[\s\S]*\}")


def parse_json_payload(content: str) -> Optional[Dict[str, Any]]:
    """Pull the first JSON object out of free text, tolerating trailing commas."""
    match = _JSON_BLOCK.search(content or "")
    if not match:
        return None
    text = match.group(0)
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        fixed = re.sub(r",\s*}", "}", text)
        fixed = re.sub(r",\s*]", "]", fixed)
        try:
            return json.loads(fixed)
        except json.JSONDecodeError:
            return None


class _HTTPCollaborator:
    """Shared aiohttp plumbing."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout or settings.COLLABORATOR_TIMEOUT
        self._headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        # Created lazily so it binds to the running event loop
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers=self._headers)
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    def _timeout_for(self, token: CancelToken) -> aiohttp.ClientTimeout:
        remaining = token.remaining()
        budget = self.timeout if remaining is None else max(0.1, min(self.timeout, remaining))
        return aiohttp.ClientTimeout(total=budget, connect=min(10.0, budget))

    async def _post(self, path: str, payload: Dict[str, Any], token: CancelToken) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            async with self._get_session().post(url, json=payload, timeout=self._timeout_for(token)) as resp:
                if resp.status >= 400:
                    raise CollaboratorError(f"HTTP {resp.status} from {path}")
                text = await resp.text()
        except asyncio.TimeoutError as e:
            raise CollaboratorError(f"Timed out calling {path}") from e
        except aiohttp.ClientConnectionError as e:
            logger.warning("Collaborator unreachable at %s: %s", url, e)
            raise CollaboratorUnavailable(f"Cannot reach {url}: {e}") from e
        except aiohttp.ClientError as e:
            raise CollaboratorError(f"Request to {path} failed: {e}") from e

        try:
            body = json.loads(text)
        except ValueError:
            body = parse_json_payload(text)
        if not isinstance(body, dict):
            raise CollaboratorError(f"Unparseable response from {path}")

        if body.get("success") is False:
            error = body.get("error")
            message = error.get("message") if isinstance(error, dict) else error
            raise CollaboratorError(str(message or "Collaborator reported a failure"))

        data = body.get("data", body)
        if isinstance(data, str):
            data = parse_json_payload(data)
        if not isinstance(data, dict):
            raise CollaboratorError(f"Unparseable response from {path}")
        return data


class HTTPGenerationCollaborator(_HTTPCollaborator):
    """Generation collaborator over HTTP/JSON."""

    def __init__(self, base_url: Optional[str] = None, **kwargs):
        super().__init__(
            base_url or settings.GENERATION_API_URL,
            api_key=kwargs.pop("api_key", settings.COLLABORATOR_API_KEY),
            **kwargs,
        )

    async def generate(self, dish_name: str, constraints: Dict[str, Any], token: CancelToken) -> GeneratedRecipe:
        data = await self._post("/generate", {"dishName": dish_name, "constraints": constraints}, token)
        try:
            return GeneratedRecipe.model_validate(data)
        except ValueError as e:
            raise CollaboratorError(f"Generated content for '{dish_name}' is invalid: {e}") from e

    async def generate_image(self, prompt: str, dish_name: str, token: CancelToken) -> str:
        data = await self._post("/images", {"prompt": prompt, "dishName": dish_name}, token)
        url = data.get("imageUrl") or data.get("url")
        if not url:
            raise CollaboratorError("Image response has no URL")
        return url


class HTTPTranslationCollaborator(_HTTPCollaborator):
    """Translation collaborator over HTTP/JSON."""

    def __init__(self, base_url: Optional[str] = None, **kwargs):
        super().__init__(
            base_url or settings.TRANSLATION_API_URL,
            api_key=kwargs.pop("api_key", settings.COLLABORATOR_API_KEY),
            **kwargs,
        )

    async def translate(
        self,
        source: Dict[str, Any],
        source_lang: str,
        target_lang: str,
        prompt_template: str,
        token: CancelToken,
    ) -> Dict[str, Any]:
        payload = {
            "source": source,
            "sourceLang": source_lang,
            "targetLang": target_lang,
            "prompt": prompt_template,
        }
        return await self._post("/translate", payload, token)
