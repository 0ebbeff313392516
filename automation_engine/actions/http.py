"""
HTTP_REQUEST action.

Performs an outbound HTTP call with httpx. URL, header values, query
values and body are templates resolved against the event context
({{ field }}) and the env whitelist ({{ env.NAME }}).
"""

import base64
import json
import logging
from typing import Any, ClassVar, Literal, Optional

import httpx
from pydantic import BaseModel, Field, field_validator, model_validator

from automation_engine.actions.base import ActionSignal, RetryPolicy, SchemaActionHandler
from automation_engine.config.settings import HttpActionSettings
from automation_engine.core.errors import ActionError
from automation_engine.core.models import CamelModel
from automation_engine.template.resolver import TemplateResolver, validate_template

logger = logging.getLogger(__name__)

# Response bodies beyond this are truncated in the recorded output
MAX_RECORDED_BODY = 64 * 1024


class KeyValue(CamelModel):
    key: str
    value: str = ""
    enabled: bool = True


class HttpAuth(CamelModel):
    """Auth descriptor. Only the fields of the chosen type are used."""

    type: Literal["NONE", "BEARER_TOKEN", "BASIC_AUTH", "API_KEY", "OAUTH2", "CUSTOM_HEADER"] = "NONE"
    token: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    api_key_location: Literal["HEADER", "QUERY"] = "HEADER"
    api_key_name: Optional[str] = None
    api_key_value: Optional[str] = None
    access_token: Optional[str] = None
    custom_header_name: Optional[str] = None
    custom_header_value: Optional[str] = None

    @model_validator(mode="after")
    def require_fields_for_type(self) -> "HttpAuth":
        required = {
            "BEARER_TOKEN": ("token",),
            "BASIC_AUTH": ("username", "password"),
            "API_KEY": ("api_key_name", "api_key_value"),
            "OAUTH2": ("access_token",),
            "CUSTOM_HEADER": ("custom_header_name", "custom_header_value"),
        }.get(self.type, ())
        missing = [name for name in required if not getattr(self, name)]
        if missing:
            raise ValueError(f"auth type {self.type} requires {', '.join(missing)}")
        return self


class HttpRequestConfig(CamelModel):
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"] = "GET"
    url: str = Field(..., min_length=1)
    headers: list[KeyValue] = Field(default_factory=list)
    query_params: list[KeyValue] = Field(default_factory=list)
    body_type: Literal["NONE", "JSON", "FORM", "RAW"] = "NONE"
    body: Optional[str] = None
    auth: HttpAuth = Field(default_factory=HttpAuth)
    timeout: int = Field(default=30_000, ge=1, le=300_000, description="Milliseconds")
    retry_on_failure: bool = False
    retry_attempts: int = Field(default=0, ge=0, le=5)
    retry_delay: int = Field(default=1000, ge=0, description="Milliseconds")
    success_status_codes: list[int] = Field(default_factory=lambda: [200, 201, 204])
    context_key: Optional[str] = Field(default=None, description="Place the response body into contextUpdates")

    @field_validator("method", mode="before")
    @classmethod
    def upper_method(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v

    @field_validator("url")
    @classmethod
    def check_url(cls, v: str) -> str:
        validate_template(v)
        if not v.lstrip().startswith(("http://", "https://", "{{")):
            raise ValueError("url must use http:// or https://")
        return v

    @model_validator(mode="after")
    def check_templates(self) -> "HttpRequestConfig":
        for item in [*self.headers, *self.query_params]:
            validate_template(item.value)
        if self.body:
            validate_template(self.body)
        return self


class HttpRequestAction(SchemaActionHandler):
    """Generic outbound HTTP call."""

    action_type: ClassVar[str] = "HTTP_REQUEST"
    description: ClassVar[str] = "Call an external HTTP endpoint"
    config_model: ClassVar[type[BaseModel]] = HttpRequestConfig

    def __init__(
        self,
        settings: Optional[HttpActionSettings] = None,
        client: Optional[httpx.AsyncClient] = None,
        **kwargs: Any,
    ):
        self.settings = settings or HttpActionSettings()
        kwargs.setdefault("timeout_ms", self.settings.default_timeout_ms)
        super().__init__(**kwargs)
        self._client = client

    def validate_config(self, config: dict[str, Any]) -> list[str]:
        problems = super().validate_config(config)
        if problems:
            return problems
        parsed = HttpRequestConfig.model_validate(config)
        if parsed.timeout > self.settings.max_timeout_ms:
            problems.append(f"timeout: exceeds maximum of {self.settings.max_timeout_ms} ms")
        if parsed.retry_attempts > self.settings.max_retry_attempts:
            problems.append(f"retryAttempts: exceeds maximum of {self.settings.max_retry_attempts}")
        return problems

    def retry_policy_for(self, config: dict[str, Any]) -> RetryPolicy:
        """Retries are opt-in per node: retryOnFailure, retryAttempts, retryDelay."""
        parsed = HttpRequestConfig.model_validate(config)
        if not parsed.retry_on_failure or parsed.retry_attempts == 0:
            return RetryPolicy(max_attempts=1)
        delay = parsed.retry_delay / 1000
        return RetryPolicy(
            max_attempts=parsed.retry_attempts + 1,
            initial_delay=delay,
            max_delay=max(delay, self.retry_policy.max_delay),
            backoff_factor=self.retry_policy.backoff_factor,
            jitter=self.retry_policy.jitter,
        )

    def timeout_for(self, config: dict[str, Any]) -> float:
        timeout = config.get("timeout", self.timeout_ms)
        if not isinstance(timeout, int) or isinstance(timeout, bool) or timeout <= 0:
            timeout = self.timeout_ms
        return min(timeout, self.settings.max_timeout_ms) / 1000

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.settings.default_timeout_ms / 1000),
                follow_redirects=True,
                limits=httpx.Limits(max_keepalive_connections=20, max_connections=100),
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def build_request(self, config: HttpRequestConfig, context: dict[str, Any]) -> dict[str, Any]:
        """Resolve templates and auth into httpx.request() keyword arguments."""
        resolver = TemplateResolver(context=context, env_vars=self.settings.env_whitelist)

        headers = {h.key: resolver.resolve_text(h.value) for h in config.headers if h.enabled and h.key}
        params = {p.key: resolver.resolve_text(p.value) for p in config.query_params if p.enabled and p.key}
        self._apply_auth(config.auth, headers, params, resolver)

        request: dict[str, Any] = {
            "method": config.method,
            "url": resolver.resolve_text(config.url),
            "headers": headers,
            "params": params,
        }

        if config.body_type == "NONE" or not config.body or config.method in ("GET", "HEAD"):
            return request

        body = resolver.resolve_text(config.body)
        if config.body_type == "JSON":
            try:
                request["json"] = json.loads(body)
            except json.JSONDecodeError as e:
                raise ActionError(f"Request body is not valid JSON: {e}", retryable=False) from e
        elif config.body_type == "FORM":
            try:
                form = json.loads(body)
            except json.JSONDecodeError:
                form = None
            if isinstance(form, dict):
                request["data"] = {k: "" if v is None else str(v) for k, v in form.items()}
            else:
                request["content"] = body.encode("utf-8")
                headers.setdefault("Content-Type", "application/x-www-form-urlencoded")
        else:
            request["content"] = body.encode("utf-8")

        return request

    def _apply_auth(
        self,
        auth: HttpAuth,
        headers: dict[str, str],
        params: dict[str, str],
        resolver: TemplateResolver,
    ) -> None:
        if auth.type == "BEARER_TOKEN":
            headers["Authorization"] = f"Bearer {resolver.resolve_text(auth.token or '')}"
        elif auth.type == "OAUTH2":
            headers["Authorization"] = f"Bearer {resolver.resolve_text(auth.access_token or '')}"
        elif auth.type == "BASIC_AUTH":
            raw = f"{resolver.resolve_text(auth.username or '')}:{resolver.resolve_text(auth.password or '')}"
            headers["Authorization"] = "Basic " + base64.b64encode(raw.encode("utf-8")).decode("ascii")
        elif auth.type == "API_KEY":
            value = resolver.resolve_text(auth.api_key_value or "")
            if auth.api_key_location == "QUERY":
                params[auth.api_key_name] = value
            else:
                headers[auth.api_key_name] = value
        elif auth.type == "CUSTOM_HEADER":
            headers[auth.custom_header_name] = resolver.resolve_text(auth.custom_header_value or "")

    async def execute(
        self,
        config: dict[str, Any],
        context: dict[str, Any],
        signal: ActionSignal,
    ) -> dict[str, Any]:
        parsed = HttpRequestConfig.model_validate(config)
        request = self.build_request(parsed, context)

        if signal.dry_run:
            return {
                "dryRun": True,
                "request": {
                    "method": request["method"],
                    "url": request["url"],
                    "params": request["params"],
                    "headers": sorted(request["headers"]),
                },
            }

        client = await self._get_client()
        try:
            response = await client.request(**request, timeout=signal.timeout)
        except httpx.TimeoutException as e:
            raise ActionError(f"HTTP request timed out: {e}", retryable=True) from e
        except httpx.HTTPError as e:
            raise ActionError(f"HTTP request failed: {type(e).__name__}: {e}", retryable=True) from e

        body = self._parse_body(response)
        output: dict[str, Any] = {
            "statusCode": response.status_code,
            "headers": dict(response.headers),
            "body": body,
            "url": str(response.url),
        }

        if response.status_code not in parsed.success_status_codes:
            logger.warning(f"HTTP_REQUEST {request['method']} {request['url']} returned {response.status_code}")
            raise ActionError(
                f"HTTP {response.status_code} not in success codes {parsed.success_status_codes}",
                retryable=response.status_code >= 500 or response.status_code == 429,
                details={"statusCode": response.status_code, "body": body},
            )

        if parsed.context_key:
            output["contextUpdates"] = {parsed.context_key: body}
        return output

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        if not response.content:
            return None
        content_type = response.headers.get("content-type", "")
        if "json" in content_type:
            try:
                return response.json()
            except ValueError:
                pass
        return response.text[:MAX_RECORDED_BODY]
