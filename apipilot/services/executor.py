# === apipilot/services/executor.py ===
"""Executes discovered endpoints against their real APIs.

Three modes share one request builder:

* ``execute``       one endpoint, explicit parameters
* ``batch``         a list of endpoints, strictly in order
* ``auto_execute``  every endpoint of an API in catalog order, inferring
                    parameters and chaining the token returned by auth
                    endpoints into the calls that follow

HTTP failures, network errors and unparseable bodies are returned as data.
Every call leaves exactly one ExecutionRecord behind.
"""
import base64
import enum
import json
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional
from urllib.parse import urlencode

import httpx
from sqlalchemy.ext.asyncio import async_sessionmaker

from apipilot.db import crud
from apipilot.models.discovered_api import DiscoveredAPI
from apipilot.models.endpoint import Endpoint
from apipilot.models.execution_record import ExecutionRecord

logger = logging.getLogger(__name__)

TOKEN_HEADER = "X-Auth-Token"
TOKEN_FIELDS = ("token", "access_token", "accessToken")


class ExecutionNotAllowed(ValueError):
    pass


class AuthType(str, enum.Enum):
    NONE = "none"
    BASIC = "basic"
    BEARER = "bearer"
    API_KEY = "api_key"
    TOKEN = "token"
    TICKET = "ticket"
    OAUTH = "oauth"
    CUSTOM = "custom"

    @classmethod
    def parse(cls, value: Optional[str]) -> "AuthType":
        try:
            return cls(str(value or "none").strip().lower())
        except ValueError:
            logger.warning(f"Unknown auth type '{value}', sending request without auth headers")
            return cls.NONE


def _first(credentials: Mapping[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = credentials.get(key)
        if value not in (None, ""):
            return str(value)
    return None


def _header_name(details: Any, default: str) -> str:
    if isinstance(details, dict) and details.get("header_name"):
        return str(details["header_name"])
    return default


def _no_headers(credentials, details) -> Dict[str, str]:
    return {}


def _basic_headers(credentials, details) -> Dict[str, str]:
    username = _first(credentials, "username", "userName", "user")
    password = _first(credentials, "password")
    if username is None or password is None:
        return {}
    encoded = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
    return {"Authorization": f"Basic {encoded}"}


def _bearer_headers(credentials, details) -> Dict[str, str]:
    token = _first(credentials, "api_key", "token", "access_token")
    return {"Authorization": f"Bearer {token}"} if token else {}


def _api_key_headers(credentials, details) -> Dict[str, str]:
    key = _first(credentials, "api_key", "apiKey", "key")
    return {_header_name(details, "X-API-Key"): key} if key else {}


def _token_headers(credentials, details) -> Dict[str, str]:
    token = _first(credentials, "token", "api_key")
    return {"Authorization": f"Token {token}"} if token else {}


def _oauth_headers(credentials, details) -> Dict[str, str]:
    token = _first(credentials, "access_token", "token", "api_key")
    return {"Authorization": f"Bearer {token}"} if token else {}


def _custom_headers(credentials, details) -> Dict[str, str]:
    value = _first(credentials, "token", "api_key", "value")
    return {_header_name(details, "Authorization"): value} if value else {}


# ticket credentials travel in the query string, see auth_query_params
AUTH_HEADER_BUILDERS: Dict[AuthType, Callable[[Mapping, Any], Dict[str, str]]] = {
    AuthType.NONE: _no_headers,
    AuthType.BASIC: _basic_headers,
    AuthType.BEARER: _bearer_headers,
    AuthType.API_KEY: _api_key_headers,
    AuthType.TOKEN: _token_headers,
    AuthType.TICKET: _no_headers,
    AuthType.OAUTH: _oauth_headers,
    AuthType.CUSTOM: _custom_headers,
}


def build_auth_headers(auth_type: AuthType, credentials: Optional[Mapping[str, Any]], auth_details: Any = None) -> Dict[str, str]:
    return AUTH_HEADER_BUILDERS[auth_type](credentials or {}, auth_details)


def auth_query_params(auth_type: AuthType, credentials: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    if auth_type is AuthType.TICKET:
        ticket = _first(credentials or {}, "ticket")
        if ticket:
            return {"ticket": ticket}
    return {}


@dataclass
class PreparedRequest:
    method: str
    url: str
    headers: Dict[str, str]
    json_body: Optional[Dict[str, Any]] = None
    verify: bool = True


def join_url(base_url: str, path: str) -> str:
    if not path:
        return base_url
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"


def build_request(
    base_url: str,
    path: str,
    method: str,
    auth_type: Any,
    credentials: Optional[Mapping[str, Any]] = None,
    parameters: Optional[Mapping[str, Any]] = None,
    auth_details: Any = None,
    auth_token: Optional[str] = None,
    verify_tls: bool = True,
) -> PreparedRequest:
    auth = auth_type if isinstance(auth_type, AuthType) else AuthType.parse(auth_type)
    method = (method or "GET").upper()
    headers = {"Content-Type": "application/json"}
    query: Dict[str, Any] = {}

    if auth_token:
        # a token captured earlier in the run replaces every other mechanism
        headers[TOKEN_HEADER] = auth_token
    else:
        headers.update(build_auth_headers(auth, credentials, auth_details))
        query.update(auth_query_params(auth, credentials))

    params = {k: v for k, v in (parameters or {}).items() if v is not None}
    body = None
    if method == "GET":
        query = {**params, **query}
    else:
        body = params

    url = join_url(base_url, path)
    if query:
        url = f"{url}{'&' if '?' in url else '?'}{urlencode(query, doseq=True)}"

    return PreparedRequest(method=method, url=url, headers=headers, json_body=body, verify=verify_tls)


def _present(value: Any) -> bool:
    return value is not None and value != ""


def infer_parameter_values(declared: Optional[List[Dict[str, Any]]], credentials: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """First match wins: auto_value, example, then credential name heuristics."""
    credentials = credentials or {}
    values = {}
    for param in declared or []:
        name = param.get("name")
        if not name:
            continue

        if _present(param.get("auto_value")):
            value = param["auto_value"]
        elif _present(param.get("example")):
            value = param["example"]
        elif name in ("username", "userName"):
            value = credentials.get("username")
        elif name in ("password", "value"):
            value = credentials.get("password")
        elif name == "grantType":
            value = "password"
        elif name == "ticket":
            value = credentials.get("ticket")
        else:
            value = None

        if _present(value):
            values[name] = value
    return values


def find_token(body: Any) -> Optional[str]:
    if not isinstance(body, dict):
        return None
    for name in TOKEN_FIELDS:
        if _present(body.get(name)):
            return str(body[name])
    return None


def parse_body(response: httpx.Response) -> Any:
    """JSON when the body parses, otherwise the raw text ("" for an empty body)."""
    text = response.text
    try:
        return json.loads(text)
    except ValueError:
        return text


def count_records(body: Any) -> int:
    if isinstance(body, list):
        return len(body)
    return 0 if body == "" else 1


@dataclass
class ExecutionResult:
    endpoint_id: Optional[int]
    endpoint_path: str
    method: str
    success: bool
    duration_ms: int
    status_code: Optional[int] = None
    data: Any = None
    error: Optional[str] = None
    response_body: Any = None
    record_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class AutoExecutionReport:
    results: List[ExecutionResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def message(self) -> str:
        return f"Auto-execution completed: {self.success_count}/{self.total} successful"


class ExecutionEngine:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        timeout: float = 30.0,
        connection_test_timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.session_factory = session_factory
        self.timeout = timeout
        self.connection_test_timeout = connection_test_timeout
        self._transport = transport

    async def send(self, request: PreparedRequest, timeout: Optional[float] = None) -> httpx.Response:
        async with httpx.AsyncClient(
            follow_redirects=True,
            timeout=httpx.Timeout(timeout or self.timeout, connect=10.0),
            verify=request.verify,
            transport=self._transport,
        ) as client:
            return await client.request(
                request.method,
                request.url,
                headers=request.headers,
                json=request.json_body,
            )

    def _failed(self, endpoint: Endpoint, request: PreparedRequest, started: float, e: Exception) -> ExecutionResult:
        return ExecutionResult(
            endpoint_id=endpoint.id,
            endpoint_path=endpoint.path,
            method=request.method,
            success=False,
            duration_ms=int((time.perf_counter() - started) * 1000),
            error=f"{e.__class__.__name__}: {e}",
        )

    async def _call(self, endpoint: Endpoint, request: PreparedRequest) -> ExecutionResult:
        logger.info(f"Executing {request.method} {request.url.split('?')[0]}")
        started = time.perf_counter()
        try:
            response = await self.send(request)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error(f"{endpoint.method} {endpoint.path} failed: {e.__class__.__name__}: {e}")
            return self._failed(endpoint, request, started, e)
        except Exception as e:
            # e.g. UnicodeEncodeError for a credential that is not valid in a header
            logger.exception(f"{endpoint.method} {endpoint.path} could not be sent")
            return self._failed(endpoint, request, started, e)

        duration = int((time.perf_counter() - started) * 1000)
        body = parse_body(response)
        logger.info(f"{request.method} {endpoint.path} - {response.status_code} ({duration}ms)")

        if response.is_success:
            return ExecutionResult(
                endpoint_id=endpoint.id,
                endpoint_path=endpoint.path,
                method=request.method,
                success=True,
                duration_ms=duration,
                status_code=response.status_code,
                data=body,
                record_count=count_records(body),
            )
        return ExecutionResult(
            endpoint_id=endpoint.id,
            endpoint_path=endpoint.path,
            method=request.method,
            success=False,
            duration_ms=duration,
            status_code=response.status_code,
            error=f"HTTP {response.status_code} {response.reason_phrase}".strip(),
            response_body=body,
        )

    async def _record(self, api: DiscoveredAPI, result: ExecutionResult) -> None:
        async with self.session_factory() as session:
            session.add(ExecutionRecord(
                project_id=api.project_id,
                api_id=api.id,
                endpoint_id=result.endpoint_id,
                status="success" if result.success else "error",
                status_code=result.status_code,
                data=result.data if result.success else result.response_body,
                error=result.error,
                record_count=result.record_count,
                execution_duration=result.duration_ms,
            ))
            await session.commit()

    async def execute(
        self,
        api: DiscoveredAPI,
        endpoint: Endpoint,
        credentials: Optional[Mapping[str, Any]] = None,
        parameters: Optional[Mapping[str, Any]] = None,
        verify_tls: bool = True,
        auth_token: Optional[str] = None,
    ) -> ExecutionResult:
        if endpoint.api_id != api.id:
            raise ExecutionNotAllowed(f"Endpoint {endpoint.id} does not belong to API {api.id}")

        request = build_request(
            api.base_url,
            endpoint.path,
            endpoint.method,
            api.auth_type,
            credentials,
            parameters,
            auth_details=api.auth_details,
            auth_token=auth_token,
            verify_tls=verify_tls,
        )
        result = await self._call(endpoint, request)
        await self._record(api, result)
        return result

    async def batch(
        self,
        api: DiscoveredAPI,
        endpoints: List[Endpoint],
        credentials: Optional[Mapping[str, Any]] = None,
        parameters: Optional[Mapping[str, Any]] = None,
        verify_tls: bool = True,
    ) -> List[ExecutionResult]:
        logger.info(f"Batch executing {len(endpoints)} endpoints for API {api.id}")
        results = []
        for endpoint in endpoints:
            results.append(await self.execute(api, endpoint, credentials, parameters, verify_tls))
        return results

    async def auto_execute(self, api: DiscoveredAPI, verify_tls: bool = True) -> AutoExecutionReport:
        if not api.auto_executable:
            raise ExecutionNotAllowed("API is not auto-executable. Manual configuration required.")
        credentials = api.extracted_credentials
        if not credentials:
            raise ExecutionNotAllowed("No credentials found in document")

        async with self.session_factory() as session:
            await crud.upsert_configuration(
                session, api.id, credentials, auto_configured=True, verify_tls=verify_tls
            )
            await session.commit()
            endpoints = await crud.list_endpoints(session, api.id)

        if not endpoints:
            raise ExecutionNotAllowed("No endpoints found")

        logger.info(f"Auto-executing {len(endpoints)} endpoints of API {api.id}")
        report = AutoExecutionReport()
        auth_token = None
        for endpoint in endpoints:
            parameters = infer_parameter_values(endpoint.parameters, credentials)
            result = await self.execute(api, endpoint, credentials, parameters, verify_tls, auth_token=auth_token)
            report.results.append(result)

            if endpoint.category == "auth" and result.success:
                token = find_token(result.data)
                if token:
                    auth_token = token
                    logger.info(f"Captured session token from {endpoint.method} {endpoint.path}")

        logger.info(f"API {api.id}: {report.message}")
        return report

    async def test_connection(
        self,
        api: DiscoveredAPI,
        credentials: Optional[Mapping[str, Any]] = None,
        verify_tls: bool = True,
    ) -> Dict[str, Any]:
        request = build_request(
            api.base_url, "", "GET", api.auth_type, credentials,
            auth_details=api.auth_details, verify_tls=verify_tls,
        )
        logger.info(f"Testing connection to {api.base_url}")
        try:
            response = await self.send(request, timeout=self.connection_test_timeout)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error(f"Connection test to {api.base_url} failed: {e}")
            return {"success": False, "status_code": None, "error": str(e) or e.__class__.__name__}
        except Exception as e:
            logger.exception(f"Connection test to {api.base_url} could not be sent")
            return {"success": False, "status_code": None, "error": f"{e.__class__.__name__}: {e}"}
        return {
            "success": response.is_success,
            "status_code": response.status_code,
            "error": None if response.is_success else f"HTTP {response.status_code}",
        }
