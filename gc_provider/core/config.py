"""
Configuration loader for gc_provider.

This module resolves provider settings and parses the desired-state YAML.

Key rules:
  * `.env` / environment provide the GENESYSCLOUD_* provider settings
  * the desired document's `provider:` block overrides the environment
  * the desired document must have a top-level `resources` mapping
    (`data` is optional): `{type: {label: attributes}}`
  * settings are validated here, once; handlers only see typed objects
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from dotenv import find_dotenv, load_dotenv

from .errors import ConfigError
from .logging_utils import get_logger

log = get_logger(__name__)

REGION_DOMAINS: Dict[str, str] = {
    "dca": "inindca.com",
    "tca": "inintca.com",
    "us-east-1": "mypurecloud.com",
    "us-east-2": "use2.us-gov-pure.cloud",
    "us-west-2": "usw2.pure.cloud",
    "eu-west-1": "mypurecloud.ie",
    "eu-west-2": "euw2.pure.cloud",
    "ap-southeast-2": "mypurecloud.com.au",
    "ap-northeast-1": "mypurecloud.jp",
    "eu-central-1": "mypurecloud.de",
    "ca-central-1": "cac1.pure.cloud",
    "ap-northeast-2": "apne2.pure.cloud",
    "ap-south-1": "aps1.pure.cloud",
    "sa-east-1": "sae1.pure.cloud",
    "ap-northeast-3": "apne3.pure.cloud",
    "eu-central-2": "euc2.pure.cloud",
    "me-central-1": "mec1.pure.cloud",
}

DEFAULT_REGION = "us-east-1"
SDK_DEBUG_FORMATS = ("Text", "Json")
TOKEN_POOL_MIN, TOKEN_POOL_MAX = 1, 20

_TRUE = {"1", "true", "yes", "y", "on"}


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE


def region_domain(region: str) -> str:
    """Return the platform domain for *region* (case-insensitive)."""
    domain = REGION_DOMAINS.get((region or "").strip().lower())
    if not domain:
        raise ConfigError(
            f"Unknown region '{region}'. Allowed: {', '.join(sorted(REGION_DOMAINS))}"
        )
    return domain


@dataclass
class AuthSettings:
    username: str = ""
    password: str = ""


@dataclass
class ProxySettings:
    """Outbound HTTP proxy (one per provider)."""
    host: str = ""
    port: str = ""
    protocol: str = "http"
    auth: Optional[AuthSettings] = None

    def as_requests_proxies(self) -> Dict[str, str]:
        """Build the ``proxies`` mapping understood by :mod:`requests`."""
        if not self.host:
            return {}
        creds = ""
        if self.auth and self.auth.username:
            creds = f"{self.auth.username}:{self.auth.password}@"
        netloc = f"{self.host}:{self.port}" if self.port else self.host
        url = f"{self.protocol or 'http'}://{creds}{netloc}"
        return {"http": url, "https": url}


@dataclass
class GatewaySettings:
    """API gateway fronting the platform; path params map service -> prefix."""
    host: str = ""
    port: str = ""
    protocol: str = "https"
    path_params: Dict[str, str] = field(default_factory=dict)

    def base_url(self, service: str) -> str:
        netloc = f"{self.host}:{self.port}" if self.port else self.host
        prefix = self.path_params.get(service, "")
        if prefix and not prefix.startswith("/"):
            prefix = "/" + prefix
        return f"{self.protocol or 'https'}://{netloc}{prefix}".rstrip("/")


@dataclass
class ProviderSettings:
    """Typed provider settings (the provider block of the desired document)."""
    access_token: str = ""
    oauthclient_id: str = ""
    oauthclient_secret: str = ""
    aws_region: str = DEFAULT_REGION
    sdk_debug: bool = False
    sdk_debug_format: str = "Text"
    sdk_debug_file_path: str = "sdk_debug.log"
    token_pool_size: int = 10
    log_stack_traces: bool = False
    log_stack_traces_file_path: str = "genesyscloud_stack_traces.log"
    proxy: Optional[ProxySettings] = None
    gateway: Optional[GatewaySettings] = None
    operation_timeout_sec: float = 1200.0
    consistency_checks: int = 5
    consistency_checker_enabled: bool = True

    # ---------------- derived ----------------
    @property
    def domain(self) -> str:
        return region_domain(self.aws_region)

    @property
    def api_base_url(self) -> str:
        if self.gateway and self.gateway.host:
            return self.gateway.base_url("api")
        return f"https://api.{self.domain}"

    @property
    def login_base_url(self) -> str:
        if self.gateway and self.gateway.host:
            return self.gateway.base_url("login")
        return f"https://login.{self.domain}"

    # ---------------- builders ----------------
    @classmethod
    def from_env(cls, overrides: Optional[Mapping[str, Any]] = None) -> "ProviderSettings":
        """Load `.env`, read GENESYSCLOUD_* variables and apply *overrides*.

        Raises:
            ConfigError: If a value is out of range or credentials are missing.
        """
        env_path = find_dotenv(usecwd=True) or ""
        if env_path:
            load_dotenv(env_path, override=False)

        raw: Dict[str, Any] = {
            "access_token": os.getenv("GENESYSCLOUD_ACCESS_TOKEN", ""),
            "oauthclient_id": os.getenv("GENESYSCLOUD_OAUTHCLIENT_ID", ""),
            "oauthclient_secret": os.getenv("GENESYSCLOUD_OAUTHCLIENT_SECRET", ""),
            "aws_region": os.getenv("GENESYSCLOUD_REGION", DEFAULT_REGION),
            "sdk_debug": os.getenv("GENESYSCLOUD_SDK_DEBUG", "false"),
            "sdk_debug_format": os.getenv("GENESYSCLOUD_SDK_DEBUG_FORMAT", "Text"),
            "sdk_debug_file_path": os.getenv("GENESYSCLOUD_SDK_DEBUG_FILE_PATH", "sdk_debug.log"),
            "token_pool_size": os.getenv("GENESYSCLOUD_TOKEN_POOL_SIZE", "10"),
            "log_stack_traces": os.getenv("GENESYSCLOUD_LOG_STACK_TRACES", "false"),
            "log_stack_traces_file_path": os.getenv(
                "GENESYSCLOUD_LOG_STACK_TRACES_FILE_PATH", "genesyscloud_stack_traces.log"
            ),
            "operation_timeout_sec": os.getenv("GC_OPERATION_TIMEOUT_SEC", "1200"),
            "consistency_checks": os.getenv("GENESYSCLOUD_CONSISTENCY_CHECKS", "5"),
            "consistency_checker_enabled": not _to_bool(
                os.getenv("GENESYSCLOUD_DISABLE_CONSISTENCY_CHECKER", "false")
            ),
        }

        proxy_env = {
            "host": os.getenv("GENESYSCLOUD_PROXY_HOST", ""),
            "port": os.getenv("GENESYSCLOUD_PROXY_PORT", ""),
            "protocol": os.getenv("GENESYSCLOUD_PROXY_PROTOCOL", ""),
            "auth": {
                "username": os.getenv("GENESYSCLOUD_PROXY_AUTH_USERNAME", ""),
                "password": os.getenv("GENESYSCLOUD_PROXY_AUTH_PASSWORD", ""),
            },
        }
        if proxy_env["host"]:
            raw["proxy"] = proxy_env

        gateway_env = {
            "host": os.getenv("GENESYSCLOUD_GATEWAY_HOST", ""),
            "port": os.getenv("GENESYSCLOUD_GATEWAY_PORT", ""),
            "protocol": os.getenv("GENESYSCLOUD_GATEWAY_PROTOCOL", ""),
        }
        path_name = os.getenv("GENESYSCLOUD_GATEWAY_PATH_NAME")
        path_value = os.getenv("GENESYSCLOUD_GATEWAY_PATH_VALUE")
        if path_name and path_value:
            gateway_env["path_params"] = [{"path_name": path_name, "path_value": path_value}]
        if gateway_env["host"]:
            raw["gateway"] = gateway_env

        for key, value in (overrides or {}).items():
            if value is not None:
                raw[key] = value

        return cls.from_mapping(raw)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "ProviderSettings":
        """Build and validate settings from a loosely-typed mapping."""
        known = set(cls.__dataclass_fields__)
        unknown = [k for k in raw if k not in known]
        if unknown:
            raise ConfigError(f"Unknown provider setting(s): {', '.join(sorted(unknown))}")

        try:
            pool_size = int(raw.get("token_pool_size", 10))
            op_timeout = float(raw.get("operation_timeout_sec", 1200))
            checks = int(raw.get("consistency_checks", 5))
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid numeric provider setting: {exc}") from exc

        settings = cls(
            access_token=str(raw.get("access_token") or ""),
            oauthclient_id=str(raw.get("oauthclient_id") or ""),
            oauthclient_secret=str(raw.get("oauthclient_secret") or ""),
            aws_region=str(raw.get("aws_region") or DEFAULT_REGION),
            sdk_debug=_to_bool(raw.get("sdk_debug", False)),
            sdk_debug_format=str(raw.get("sdk_debug_format") or "Text"),
            sdk_debug_file_path=str(raw.get("sdk_debug_file_path") or "sdk_debug.log"),
            token_pool_size=pool_size,
            log_stack_traces=_to_bool(raw.get("log_stack_traces", False)),
            log_stack_traces_file_path=str(
                raw.get("log_stack_traces_file_path") or "genesyscloud_stack_traces.log"
            ),
            proxy=_parse_proxy(raw.get("proxy")),
            gateway=_parse_gateway(raw.get("gateway")),
            operation_timeout_sec=op_timeout,
            consistency_checks=checks,
            consistency_checker_enabled=_to_bool(raw.get("consistency_checker_enabled", True)),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        """Range and consistency checks.

        Raises:
            ConfigError: On the first invalid value.
        """
        region_domain(self.aws_region)
        if not TOKEN_POOL_MIN <= self.token_pool_size <= TOKEN_POOL_MAX:
            raise ConfigError(
                f"token_pool_size must be between {TOKEN_POOL_MIN} and {TOKEN_POOL_MAX}, "
                f"got {self.token_pool_size}"
            )
        if self.sdk_debug_format not in SDK_DEBUG_FORMATS:
            raise ConfigError(f"sdk_debug_format must be one of {SDK_DEBUG_FORMATS}")
        if not self.sdk_debug_file_path.strip():
            raise ConfigError("Invalid File path for sdk_debug_file_path")
        if not self.log_stack_traces_file_path.strip():
            raise ConfigError("Invalid File path for log_stack_traces_file_path")
        if self.operation_timeout_sec <= 0:
            raise ConfigError("operation_timeout_sec must be positive")
        if self.consistency_checks < 1:
            raise ConfigError("consistency_checks must be >= 1")

    def require_credentials(self) -> None:
        """Ensure an access token or a client-credentials pair is present."""
        if self.access_token:
            return
        missing = [k for k, v in {
            "GENESYSCLOUD_OAUTHCLIENT_ID": self.oauthclient_id,
            "GENESYSCLOUD_OAUTHCLIENT_SECRET": self.oauthclient_secret,
        }.items() if not v]
        if missing:
            hint = (
                "Create a .env at the repo root or export them in your shell. "
                "Example:\n"
                "  GENESYSCLOUD_REGION=us-east-1\n"
                "  GENESYSCLOUD_OAUTHCLIENT_ID=***\n"
                "  GENESYSCLOUD_OAUTHCLIENT_SECRET=***\n"
            )
            raise ConfigError(
                "Missing credentials (no access token and missing: "
                + ", ".join(missing)
                + "). " + hint
            )


def _parse_auth(raw: Any) -> Optional[AuthSettings]:
    # Terraform set blocks come through as single-element lists
    if isinstance(raw, list):
        raw = raw[0] if raw else None
    if not raw:
        return None
    if not isinstance(raw, Mapping):
        raise ConfigError("auth block must be a mapping")
    if not raw.get("username"):
        return None
    return AuthSettings(username=str(raw.get("username") or ""), password=str(raw.get("password") or ""))


def _parse_proxy(raw: Any) -> Optional[ProxySettings]:
    if isinstance(raw, list):
        if len(raw) > 1:
            raise ConfigError("Only one proxy block is allowed")
        raw = raw[0] if raw else None
    if not raw:
        return None
    if not isinstance(raw, Mapping):
        raise ConfigError("proxy block must be a mapping")
    return ProxySettings(
        host=str(raw.get("host") or ""),
        port=str(raw.get("port") or ""),
        protocol=str(raw.get("protocol") or "http"),
        auth=_parse_auth(raw.get("auth")),
    )


def _parse_gateway(raw: Any) -> Optional[GatewaySettings]:
    if isinstance(raw, list):
        raw = raw[0] if raw else None
    if not raw:
        return None
    if not isinstance(raw, Mapping):
        raise ConfigError("gateway block must be a mapping")

    params: Dict[str, str] = {}
    for item in raw.get("path_params") or []:
        name, value = item.get("path_name"), item.get("path_value")
        if not name or value is None:
            raise ConfigError("Every gateway path_params entry needs 'path_name' and 'path_value'")
        params[str(name)] = str(value)

    return GatewaySettings(
        host=str(raw.get("host") or ""),
        port=str(raw.get("port") or ""),
        protocol=str(raw.get("protocol") or "https"),
        path_params=params,
    )


@dataclass
class DesiredDocument:
    """Parsed desired-state document.

    Attributes:
        path: Source file.
        provider: Raw `provider:` block (overrides for :class:`ProviderSettings`).
        resources: ``{type: {label: attributes}}``.
        data: ``{type: {label: attributes}}`` for data sources.
    """
    path: Path
    provider: Dict[str, Any]
    resources: Dict[str, Dict[str, Dict[str, Any]]]
    data: Dict[str, Dict[str, Dict[str, Any]]]

    @property
    def workspace(self) -> str:
        return self.path.stem

    def iter_resources(self) -> List[tuple]:
        """Return ``(type, label, attributes)`` triples in document order."""
        return [(rtype, label, attrs) for rtype, block in self.resources.items() for label, attrs in block.items()]

    def iter_data(self) -> List[tuple]:
        return [(dtype, label, attrs) for dtype, block in self.data.items() for label, attrs in block.items()]


def _typed_blocks(section: str, raw: Any) -> Dict[str, Dict[str, Dict[str, Any]]]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(f"'{section}' must be a mapping of type -> label -> attributes")
    out: Dict[str, Dict[str, Dict[str, Any]]] = {}
    for rtype, block in raw.items():
        if not isinstance(block, dict):
            raise ConfigError(f"'{section}.{rtype}' must be a mapping of label -> attributes")
        out[str(rtype)] = {}
        for label, attrs in block.items():
            if not isinstance(attrs, dict):
                raise ConfigError(f"'{section}.{rtype}.{label}' must be a mapping")
            out[str(rtype)][str(label)] = dict(attrs)
    return out


def load_document(path: str | Path) -> DesiredDocument:
    """Read and parse the desired-state YAML.

    Raises:
        ConfigError: If the file is missing or mandatory top-level keys are absent.
    """
    p = Path(path)
    if not p.is_file():
        raise ConfigError(f"Desired-state file not found: {p}")
    with open(p, "r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Top-level YAML must be a mapping: {p}")
    if "resources" not in data:
        raise ConfigError(f"{p} must contain a top-level 'resources' key")

    provider = data.get("provider") or {}
    if not isinstance(provider, dict):
        raise ConfigError("'provider' must be a mapping")

    return DesiredDocument(
        path=p,
        provider=dict(provider),
        resources=_typed_blocks("resources", data.get("resources")),
        data=_typed_blocks("data", data.get("data")),
    )
