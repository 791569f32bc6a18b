import gzip
import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Type, TypeVar
from urllib.parse import quote

import requests
from pydantic import BaseModel
from requests.adapters import BaseAdapter, HTTPAdapter

from .models import (
    AppConfig,
    AuthenticateRequest,
    AuthResult,
    Booking,
    BookingList,
    BookingRequest,
    Credentials,
    FilterResult,
    ListStudiosRequest,
    ScheduleResult,
    StudioListResult,
)
from .transport import add_header, chain

AUTH_FLOW = "USER_PASSWORD_AUTH"
AUTH_TARGET = "AWSCognitoIdentityProviderService.InitiateAuth"
AUTH_CONTENT_TYPE = "application/x-amz-json-1.1"

STUDIO_IDS_PARAM = "studio_ids"

ModelT = TypeVar("ModelT", bound=BaseModel)


class OTFError(Exception):
    """Base error for booking API failures."""


class AuthenticationError(OTFError):
    """Raised when the credential exchange does not yield a token."""


class NotAuthenticatedError(OTFError):
    """Raised when a resource call is made without a bearer token."""


class TokenExpiredError(NotAuthenticatedError):
    """Raised when the bearer token has outlived its validity window."""


class TransportError(OTFError):
    """Raised when a request cannot be sent or times out."""


class ResponseError(OTFError):
    """Raised for non-2xx responses. Carries the raw response body."""

    def __init__(self, operation: str, status_code: int, body: str):
        self.operation = operation
        self.status_code = status_code
        self.body = body
        super().__init__(f"{operation} request failed with status code: {status_code}, response body: {body}")


class DecodeError(OTFError):
    """Raised when a 2xx response body does not match the expected shape."""


def _join(base: str, *parts: str) -> str:
    return "/".join([base.rstrip("/"), *(part.strip("/") for part in parts)])


def _format_coordinate(value: float) -> str:
    return f"{value:.15f}"


def _format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    text = value.isoformat(timespec="seconds")
    if text.endswith("+00:00"):
        text = text[:-6] + "Z"
    return text


def response_text(response: requests.Response) -> str:
    """Body text of a response, gunzipping it if the transport left it compressed."""
    body = response.content or b""
    if "gzip" in response.headers.get("Content-Encoding", "").lower() and body[:2] == b"\x1f\x8b":
        try:
            body = gzip.decompress(body)
        except (OSError, EOFError) as e:
            raise DecodeError(f"failed to decompress gzip response body (status {response.status_code}): {e}") from e
    return body.decode(response.encoding or "utf-8", errors="replace")


class OTFBookingService:
    def __init__(
        self,
        config: AppConfig,
        transport: Optional[BaseAdapter] = None,
        session: Optional[requests.Session] = None,
    ):
        self.config = config
        self.io_base_url = config.io_base_url
        self.co_base_url = config.co_base_url
        self.auth_url = config.auth_url
        self.auth: Optional[AuthResult] = None

        self.session = session or requests.Session()
        self._install_transport(transport or HTTPAdapter())

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self) -> None:
        self.session.close()

    @property
    def token(self) -> str:
        return self.auth.token if self.auth else ""

    def need_auth(self) -> bool:
        return self.token == ""

    def _install_transport(self, adapter: BaseAdapter) -> None:
        # The API hosts are mounted too; requests picks the longest matching prefix.
        self.transport = adapter
        for prefix in ("https://", "http://", self.io_base_url, self.co_base_url, self.auth_url):
            self.session.mount(prefix, adapter)

    def authenticate(self, username: str, password: str, timeout: Optional[float] = None) -> None:
        """Exchange credentials for a bearer token.

        Does nothing once a token is held. On success every later request sent
        through this service carries the token in its Authorization header.
        """
        if not self.need_auth():
            return

        payload = AuthenticateRequest(
            auth_parameters=Credentials(username=username, password=password),
            auth_flow=AUTH_FLOW,
            client_id=self.config.client_id,
        )
        headers = {
            "Content-Type": AUTH_CONTENT_TYPE,
            "X-Amz-Target": AUTH_TARGET,
        }

        try:
            response = self.session.post(
                self.auth_url,
                data=payload.model_dump_json(by_alias=True),
                headers=headers,
                timeout=self._timeout(timeout),
            )
        except requests.exceptions.RequestException as e:
            logging.error(f"Network error during authentication for {username}: {e}")
            raise AuthenticationError(f"error authenticating: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            logging.error(f"Authentication response for {username} is not JSON (status {response.status_code})")
            raise AuthenticationError(f"error parsing authentication response: {e}") from e

        result = data.get("AuthenticationResult") if isinstance(data, dict) else None
        if not isinstance(result, dict):
            result = {}
        token = result.get("IdToken")
        if not token:
            logging.error(f"Authentication response for {username} missing IdToken (status {response.status_code})")
            raise AuthenticationError(f"authentication response missing IdToken (status code: {response.status_code})")

        try:
            expires_in = int(result.get("ExpiresIn") or self.config.token_ttl)
        except (TypeError, ValueError) as e:
            logging.error(f"Authentication response for {username} has invalid ExpiresIn: {result.get('ExpiresIn')!r}")
            raise AuthenticationError(f"invalid ExpiresIn in authentication response: {e}") from e

        self.auth = AuthResult(token=token, issued_at=datetime.now(timezone.utc), expires_in=expires_in)
        self._install_transport(chain(
            self.transport,
            add_header("Authorization", f"Bearer {token}"),
            add_header("Content-Type", "application/json"),
        ))
        logging.info(f"Successfully authenticated as {username}")

    def list_studios(
        self,
        latitude: float,
        longitude: float,
        distance: float,
        timeout: Optional[float] = None,
    ) -> StudioListResult:
        """Studios within distance miles of the point. Only the first page is fetched."""
        try:
            query = ListStudiosRequest(latitude=latitude, longitude=longitude, distance=distance)
        except ValueError as e:
            raise ValueError(f"invalid studio search parameters: {e}") from e

        params = {
            "latitude": _format_coordinate(query.latitude),
            "longitude": _format_coordinate(query.longitude),
            "distance": _format_coordinate(query.distance),
        }
        response = self._send("list studios", "GET", _join(self.co_base_url, "studios"), params=params, timeout=timeout)
        result = self._decode("list studios", response, StudioListResult)
        logging.info(f"Found {len(result.data.studios)} studios within {distance} miles")
        return result

    def get_studios_schedules(self, studio_ids: Iterable[str], timeout: Optional[float] = None) -> ScheduleResult:
        ids = [studio_id for studio_id in studio_ids if studio_id]
        if not ids:
            raise ValueError("at least one studio id is required")

        response = self._send(
            "get schedules",
            "GET",
            _join(self.io_base_url, "classes"),
            params={STUDIO_IDS_PARAM: ids},
            timeout=timeout,
        )
        return self._decode("get schedules", response, ScheduleResult)

    def get_class_type_filter(self, timeout: Optional[float] = None) -> FilterResult:
        response = self._send("get class type filter", "GET", _join(self.io_base_url, "classes/filters"), timeout=timeout)
        return self._decode("get class type filter", response, FilterResult)

    def book_class(
        self,
        class_id: str,
        confirmed: bool = False,
        waitlist: bool = False,
        timeout: Optional[float] = None,
    ) -> None:
        booking_request = BookingRequest(class_id=class_id, confirmed=confirmed, waitlist=waitlist)
        payload = booking_request.to_payload(self.config.booking_class_id_field)
        logging.debug(f"Booking request body: {payload}")

        self._send("booking", "POST", _join(self.io_base_url, "bookings/me"), json_body=payload, timeout=timeout)
        logging.info(f"Booked class {class_id} (waitlist={waitlist})")

    def cancel_booking(self, booking_id: str, timeout: Optional[float] = None) -> None:
        url = _join(self.io_base_url, "bookings/me", quote(booking_id, safe=""))
        self._send("cancel", "DELETE", url, timeout=timeout)
        logging.info(f"Canceled booking {booking_id}")

    def get_bookings(
        self,
        starts_after: datetime,
        ends_before: datetime,
        include_canceled: bool,
        timeout: Optional[float] = None,
    ) -> List[Booking]:
        params = {
            "starts_after": _format_timestamp(starts_after),
            "ends_before": _format_timestamp(ends_before),
            "include_canceled": "true" if include_canceled else "false",
        }
        response = self._send("get bookings", "GET", _join(self.io_base_url, "bookings/me"), params=params, timeout=timeout)
        return self._decode("get bookings", response, BookingList).items

    def _timeout(self, timeout: Optional[float]) -> float:
        return self.config.timeout if timeout is None else timeout

    def _require_auth(self) -> None:
        if self.need_auth():
            raise NotAuthenticatedError("authenticate must succeed before calling the booking API")
        if self.auth.expired():
            raise TokenExpiredError(f"bearer token expired at {self.auth.expires_at.isoformat()}")

    def _send(
        self,
        operation: str,
        method: str,
        url: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
        timeout: Optional[float] = None,
    ) -> requests.Response:
        self._require_auth()
        try:
            response = self.session.request(
                method,
                url,
                params=params,
                json=json_body,
                timeout=self._timeout(timeout),
            )
        except requests.exceptions.RequestException as e:
            logging.error(f"Error executing {operation} request: {e}")
            raise TransportError(f"error executing {operation} request: {e}") from e

        if not 200 <= response.status_code < 300:
            body = response_text(response)
            logging.error(f"{operation} failed with status {response.status_code}. Response: {body}")
            raise ResponseError(operation, response.status_code, body)
        return response

    def _decode(self, operation: str, response: requests.Response, model: Type[ModelT]) -> ModelT:
        try:
            return model.model_validate(response.json())
        except ValueError as e:
            logging.error(f"Unexpected {operation} response format: {response.text[:200]}")
            raise DecodeError(f"error parsing {operation} response: {e}") from e
