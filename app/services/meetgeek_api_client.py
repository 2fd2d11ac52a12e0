import http.client
import json
from typing import Any
from urllib import error, parse, request


class MeetGeekApiError(Exception):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MeetGeekApiClient:
    def __init__(
        self,
        api_url: str,
        api_key: str,
        timeout_seconds: float = 10.0,
        user_agent: str = "MeetingSyncBackend/1.0",
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self.user_agent = user_agent

    def fetch_meeting(self, meeting_id: str) -> dict[str, Any] | None:
        """
        Returns the meeting metadata, or None while MeetGeek reports 404.
        """
        payload = self._request_json(self._meeting_path(meeting_id))
        if payload is None:
            return None
        if not isinstance(payload, dict):
            raise MeetGeekApiError("MeetGeek meeting response must be a JSON object.")
        return payload

    def fetch_transcript(self, meeting_id: str) -> Any:
        return self._request_json(f"{self._meeting_path(meeting_id)}/transcript")

    def fetch_summary(self, meeting_id: str) -> Any:
        return self._request_json(f"{self._meeting_path(meeting_id)}/summary")

    def fetch_highlights(self, meeting_id: str) -> Any:
        return self._request_json(f"{self._meeting_path(meeting_id)}/highlights")

    def _meeting_path(self, meeting_id: str) -> str:
        return f"/v1/meetings/{parse.quote(meeting_id.strip(), safe='')}"

    def _authorization_header(self) -> str:
        # Keys are sometimes pasted with the scheme already attached.
        if self.api_key.startswith("Bearer "):
            return self.api_key
        return f"Bearer {self.api_key}"

    def _request_json(self, path: str) -> Any:
        req = request.Request(
            f"{self.api_url}{path}",
            headers={
                "Authorization": self._authorization_header(),
                "Accept": "application/json",
                "User-Agent": self.user_agent,
            },
            method="GET",
        )

        try:
            with request.urlopen(req, timeout=self.timeout_seconds) as response:
                response_body = response.read()
        except error.HTTPError as exc:
            if exc.code == 404:
                return None
            body = exc.read().decode("utf-8", errors="ignore")
            raise MeetGeekApiError(
                f"MeetGeek API HTTP {exc.code}: {body or 'empty response body'}",
                status_code=exc.code,
            ) from exc
        except error.URLError as exc:
            raise MeetGeekApiError(f"MeetGeek API connection error: {exc.reason}") from exc
        except TimeoutError as exc:
            raise MeetGeekApiError(
                f"MeetGeek API timed out after {self.timeout_seconds}s.",
            ) from exc
        except (OSError, http.client.HTTPException) as exc:
            # Resets and truncated bodies are raised outside urllib's URLError.
            raise MeetGeekApiError(f"MeetGeek API connection failed: {exc!r}") from exc

        if not response_body:
            return None
        try:
            return json.loads(response_body.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise MeetGeekApiError("MeetGeek API returned invalid JSON.") from exc
