"""
Tagged results returned by the shipping orchestrator

Exceptions stay inside the shipping module; the orchestrator hands the
routes one of these values and the routes turn it into a response with
to_response(). The status mapping lives here and nowhere else.
"""
from dataclasses import dataclass
from typing import Any, Dict, Generic, Optional, TypeVar, Union

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

T = TypeVar("T")


@dataclass
class Ok(Generic[T]):
    value: T
    created: bool = False

    status_code = 200

    @property
    def ok(self) -> bool:
        return True


@dataclass
class Failure:
    message: str

    status_code = 500

    @property
    def ok(self) -> bool:
        return False

    def body(self) -> Dict[str, Any]:
        return {"error": self.message}


@dataclass
class ValidationError(Failure):
    field: Optional[str] = None

    status_code = 400

    def body(self) -> Dict[str, Any]:
        data = {"error": self.message}
        if self.field:
            data["field"] = self.field
        return data


@dataclass
class ConfigError(Failure):
    status_code = 400


@dataclass
class Unauthorized(Failure):
    message: str = "Unauthorized"

    status_code = 401


@dataclass
class NotFound(Failure):
    status_code = 404


@dataclass
class CarrierFailure(Failure):
    status_code = 502


@dataclass
class CarrierAuthFailure(Failure):
    status_code = 502


@dataclass
class CarrierTimeout(Failure):
    status_code = 504


@dataclass
class Unexpected(Failure):
    status_code = 500


Result = Union[Ok, ValidationError, ConfigError, Unauthorized, NotFound,
               CarrierFailure, CarrierAuthFailure, CarrierTimeout, Unexpected]


def to_response(result: Result) -> JSONResponse:
    """Map a result to its HTTP response."""
    if isinstance(result, Ok):
        return JSONResponse(
            status_code=201 if result.created else 200,
            content=jsonable_encoder(result.value),
        )
    return JSONResponse(status_code=result.status_code, content=result.body())
