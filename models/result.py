from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from core.errors import FetchError
from core.timer import TimerResult
from models.domain import Domain
from models.tls import TLSSummary


@dataclass(frozen=True)
class Response:
    """Normalized data of one HTTP response. A default instance means "no response"."""
    remote: bool = False  # effective host differs from the requested host
    code: int = 0
    url: str = ""  # effective URL after redirects, with the real hostname
    headers: Dict[str, List[str]] = field(default_factory=dict)
    content_length: int = 0
    tls: Optional[TLSSummary] = None
    body: str = ""  # primary requests only

    def to_dict(self, include_body: bool = False) -> Dict[str, Any]:
        data = {
            "remote": self.remote,
            "code": self.code,
            "url": self.url,
            "headers": {k: list(v) for k, v in self.headers.items()},
            "content_length": self.content_length,
            "tls": self.tls.to_dict() if self.tls else None,
        }
        if include_body:
            data["body"] = self.body
        return data


@dataclass
class Resource:
    """One fetched static asset (css, js, images) of a page."""
    request: Domain
    url: str = ""
    response: Response = field(default_factory=Response)
    error: Optional[FetchError] = None
    time: Optional[TimerResult] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "request": self.request.to_dict(),
            "response": self.response.to_dict(),
            "error": self.error.to_dict() if self.error else None,
            "time": self.time.to_dict() if self.time else None,
        }

    def __str__(self) -> str:
        if self.response.url and self.time is not None:
            return (
                f"<[Resource] request:{self.request.url} response:{self.response.url} "
                f"ip:{self.request.ip!r} code:{self.response.code} time:{self.time.milli}ms err:{self.error}>"
            )
        return f"<[Resource] request:{self.request.url} ip:{self.request.ip!r} err:{self.error}>"


@dataclass
class FetchResult(Resource):
    """Everything gathered while crawling one Domain."""
    assets: List[Resource] = field(default_factory=list)
    resource_time: Optional[TimerResult] = None  # asset phase
    total_time: Optional[TimerResult] = None  # whole domain

    @property
    def successful(self) -> bool:
        return self.error is None

    def to_dict(self, include_body: bool = False) -> Dict[str, Any]:
        data = super().to_dict()
        data["response"] = self.response.to_dict(include_body=include_body)
        data["assets"] = [a.to_dict() for a in self.assets]
        data["resource_time"] = self.resource_time.to_dict() if self.resource_time else None
        data["total_time"] = self.total_time.to_dict() if self.total_time else None
        return data

    def __str__(self) -> str:
        if self.resource_time is not None and self.total_time is not None and self.error is None:
            return (
                f"<[Results] request:{self.request.url} response:{self.response.url} ip:{self.request.ip!r} "
                f"code:{self.response.code} resources:{len(self.assets)} "
                f"resource-time:{self.resource_time.milli}ms total-time:{self.total_time.milli}ms err:{self.error}>"
            )
        return f"<[Results] request:{self.request.url} response:{self.url} ip:{self.request.ip!r} err:{self.error}>"
