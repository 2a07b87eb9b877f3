from typing import Any, Dict

import aiohttp
from pydantic import BaseModel, Field

from task_dispatcher.exceptions import HandlerFailure


class HttpCallPayload(BaseModel):
    url: str = Field(..., description="The URL to make the HTTP request to")
    method: str = Field("GET", description="The HTTP method to use (e.g. GET, POST, PUT, DELETE)")
    headers: Dict[str, str] = Field(default={}, description="Optional headers to include in the request")
    body: Dict[str, Any] = Field(default={}, description="Optional body payload for the request")
    params: Dict[str, str] = Field(default={}, description="Optional query parameters for the request")
    timeout: float = Field(30.0, gt=0, description="Total request timeout in seconds")
    raise_for_status: bool = Field(False, description="Treat 4xx/5xx responses as a failed attempt")


class HttpRequestHandler:
    """
    Handler for ``http-request`` tasks, making the call with aiohttp.
    """

    async def __call__(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            request = HttpCallPayload.model_validate(payload)
        except ValueError as e:
            raise HandlerFailure(f"Invalid payload: {str(e)}")

        try:
            timeout = aiohttp.ClientTimeout(total=request.timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(
                    method=request.method,
                    url=request.url,
                    headers=request.headers,
                    params=request.params,
                    json=request.body or None,
                ) as response:
                    result: Dict[str, Any] = {
                        "status": response.status,
                        "headers": dict(response.headers),
                        "body": await response.text(),
                    }
        except Exception as e:
            raise HandlerFailure(f"Unexpected error: {str(e)}")

        if request.raise_for_status and result["status"] >= 400:
            raise HandlerFailure(f"HTTP {result['status']} from {request.url}")
        return result
