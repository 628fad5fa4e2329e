import json
import requests
import msal
import logging
from typing import List, Dict, Any, Optional
from .config import config


class AuthenticationError(RuntimeError):
    """Token acquisition failed; nothing can be done against the directory."""


class GraphAPIError(RuntimeError):
    def __init__(self, status_code: int, text: str, method: str = "GET", url: str = ""):
        self.status_code = status_code
        self.text = text
        self.method = method
        self.url = url
        self.code, self.message = _parse_error_body(text)
        super().__init__(f"Graph API error {status_code}: {self.code or ''} {self.message or text}".strip())

    @property
    def unauthorized(self) -> bool:
        return self.status_code == 401

    @property
    def auth_failure(self) -> bool:
        """Rejected token or missing consent; no later call in the run can succeed."""
        return self.status_code in (401, 403)


def _parse_error_body(text: str):
    try:
        err = json.loads(text).get("error") or {}
        return err.get("code"), err.get("message")
    except (ValueError, AttributeError):
        return None, None


def _print_device_flow(flow: Dict[str, Any]) -> None:
    print(flow.get("message") or f"Open {flow.get('verification_uri')} and enter {flow.get('user_code')}")


class GraphClient:
    def __init__(
        self,
        token: Optional[str] = None,
        tenant_id: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        auth_method: Optional[str] = None,
        timeout: Optional[int] = None,
    ):
        self.tenant_id = tenant_id or config.TENANT_ID
        self.client_id = client_id or config.CLIENT_ID
        self.client_secret = client_secret if client_secret is not None else config.CLIENT_SECRET
        self.auth_method = (auth_method or config.AUTH_METHOD or "auto").strip().lower()
        self.timeout = timeout or config.REQUEST_TIMEOUT
        self.token = token or self._get_token()

    @property
    def authority(self) -> str:
        return f"https://login.microsoftonline.com/{self.tenant_id}"

    def _get_token(self) -> str:
        if self.auth_method not in ("auto", "client-secret", "device-code", "interactive"):
            raise AuthenticationError(
                f"Invalid auth method {self.auth_method!r}. Use one of: auto, client-secret, device-code, interactive"
            )

        if self.auth_method == "client-secret" or (self.auth_method == "auto" and self.client_secret):
            if not self.client_secret or self.tenant_id in ("organizations", "common"):
                raise AuthenticationError("client-secret auth needs a tenant id, client id and client secret")
            app = msal.ConfidentialClientApplication(
                self.client_id,
                authority=self.authority,
                client_credential=self.client_secret,
            )
            result = app.acquire_token_for_client(scopes=config.APP_ONLY_SCOPES)
        else:
            app = msal.PublicClientApplication(self.client_id, authority=self.authority)
            if self.auth_method == "interactive":
                result = app.acquire_token_interactive(scopes=config.DELEGATED_SCOPES)
            else:
                flow = app.initiate_device_flow(scopes=config.DELEGATED_SCOPES)
                if "user_code" not in flow:
                    raise AuthenticationError(f"Failed to start device code flow: {flow.get('error_description') or flow}")
                _print_device_flow(flow)
                result = app.acquire_token_by_device_flow(flow)

        if "access_token" not in result:
            logging.error("Failed to acquire token: %s", result)
            raise AuthenticationError(
                f"Failed to acquire token: {result.get('error')}: {result.get('error_description')}"
            )
        logging.info("Authenticated to Microsoft Graph (tenant=%s, method=%s)", self.tenant_id, self.auth_method)
        return result["access_token"]

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {"Authorization": f"Bearer {self.token}"}
        if extra:
            headers.update(extra)
        return headers

    def _check(self, resp: requests.Response, method: str, url: str) -> None:
        if resp.status_code >= 400:
            logging.error("Graph API error %s %s -> %s: %s", method, url, resp.status_code, resp.text)
            raise GraphAPIError(resp.status_code, resp.text, method=method, url=url)

    def get(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        resp = requests.get(url, headers=self._headers(headers), params=params, timeout=self.timeout)
        self._check(resp, "GET", url)
        return resp.json()

    def paged_get(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        items = []
        while url:
            data = self.get(url, params, headers)
            items.extend(data.get("value", []))
            if limit is not None and len(items) >= limit:
                return items[:limit]
            url = data.get("@odata.nextLink")
            # nextLink already carries the query string
            params = None
        return items

    def post(self, url: str, body: Dict[str, Any]) -> Dict[str, Any]:
        resp = requests.post(
            url,
            headers=self._headers({"Content-Type": "application/json"}),
            json=body,
            timeout=self.timeout,
        )
        self._check(resp, "POST", url)
        if resp.status_code == 204 or not resp.content:
            return {}
        return resp.json()

    def delete(self, url: str) -> None:
        resp = requests.delete(url, headers=self._headers(), timeout=self.timeout)
        self._check(resp, "DELETE", url)
