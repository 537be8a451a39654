from typing import Optional, Any, Dict
import httpx
from loguru import logger
from pydantic import BaseModel


SESSION_EXPIRED_MESSAGE = "Session expired. Please sign in again."


class ApiResponse(BaseModel):
    """Uniform envelope returned by every resource API call.

    ``success=False`` is the expected failure signal; transport problems are
    folded into the same shape with ``transport_error`` set.
    """
    success: bool
    data: Optional[Any] = None
    message: Optional[str] = None
    error: Optional[str] = None
    status_code: Optional[int] = None
    transport_error: bool = False

    @classmethod
    def failure(cls, error: str, status_code: Optional[int] = None, **kwargs) -> "ApiResponse":
        return cls(success=False, error=error, status_code=status_code, **kwargs)


def _error_message(body: Any, response: httpx.Response) -> str:
    fallback = f"Server error: {response.status_code} {response.reason_phrase}"
    if not isinstance(body, dict):
        return fallback

    message = body.get("error") or body.get("message") or fallback
    field_errors = body.get("data")
    if isinstance(field_errors, list) and field_errors:
        parts = []
        for err in field_errors:
            if isinstance(err, dict):
                if err.get("field"):
                    parts.append(f"{err.get('field')}: {err.get('message', '')}".strip())
                else:
                    parts.append(str(err.get("message") or err))
            else:
                parts.append(str(err))
        message = f"{message}: {'; '.join(parts)}"
    return str(message)


class ResourceApiClient:
    """HTTP transport to the hospital resource API"""

    def __init__(self):
        self._client: Optional[httpx.AsyncClient] = None
        self._token: Optional[str] = None

    async def connect(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Open the underlying connection pool"""
        self._token = token
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )
        logger.info(f"Resource API client ready base_url={base_url}")

    async def disconnect(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("Resource API client closed")

    @property
    def client(self) -> httpx.AsyncClient:
        if not self._client:
            raise RuntimeError("Resource API client is not connected")
        return self._client

    def _headers(self) -> Dict[str, str]:
        if self._token:
            return {"Authorization": f"Bearer {self._token}"}
        return {}

    async def request(
        self,
        method: str,
        path: str,
        json: Optional[Any] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> ApiResponse:
        """Issue one call and normalize the outcome into an ApiResponse"""
        try:
            response = await self.client.request(
                method, path, json=json, params=params, headers=self._headers()
            )
        except httpx.HTTPError as e:
            logger.error(f"Resource API transport error method={method} path={path}: {e}")
            return ApiResponse.failure(
                error=str(e) or e.__class__.__name__, transport_error=True
            )

        if response.status_code == 401:
            logger.warning(f"Resource API rejected credentials path={path}")
            return ApiResponse.failure(error=SESSION_EXPIRED_MESSAGE, status_code=401)

        if response.status_code == 204:
            return ApiResponse(success=True, status_code=204)

        body = None
        if response.content:
            try:
                body = response.json()
            except ValueError:
                return ApiResponse.failure(
                    error=f"Server error: {response.status_code} {response.reason_phrase}",
                    status_code=response.status_code,
                )

        if not response.is_success:
            error = _error_message(body, response)
            logger.error(
                f"Resource API error method={method} path={path} "
                f"status={response.status_code} error={error}"
            )
            return ApiResponse.failure(error=error, status_code=response.status_code)

        if isinstance(body, dict):
            return ApiResponse(
                success=True,
                data=body.get("data"),
                message=body.get("message"),
                status_code=response.status_code,
            )
        return ApiResponse(success=True, data=body, status_code=response.status_code)

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> ApiResponse:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, json: Optional[Any] = None) -> ApiResponse:
        return await self.request("POST", path, json=json)

    async def put(self, path: str, json: Optional[Any] = None) -> ApiResponse:
        return await self.request("PUT", path, json=json)

    async def patch(
        self, path: str, json: Optional[Any] = None, params: Optional[Dict[str, Any]] = None
    ) -> ApiResponse:
        return await self.request("PATCH", path, json=json, params=params)


# Global resource API client instance
resource_api = ResourceApiClient()
