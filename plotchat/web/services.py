"""HTTP helpers for the Streamlit front-end to talk to the PlotChat API."""
from __future__ import annotations

from typing import Any, Dict, List

import requests

from plotchat.errors import APIRequestError, AuthError


def _url(base_url: str, path: str) -> str:
    return f"{base_url.rstrip('/')}{path}"


def _error_message(response: requests.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return f"{response.status_code} {response.reason}"
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return f"{response.status_code} {response.reason}"


def call_healthcheck(base_url: str, *, timeout: int = 10) -> Dict[str, Any]:
    try:
        response = requests.get(_url(base_url, "/health"), timeout=timeout)
        response.raise_for_status()
        return response.json()
    except requests.RequestException as exc:
        raise APIRequestError(str(exc)) from exc


def verify_password(base_url: str, password: str, *, timeout: int = 10) -> bool:
    """Check the shared secret; a rejected secret is ``False``, not an error."""
    try:
        response = requests.post(
            _url(base_url, "/api/verify-password"),
            json={"sharedSecret": password},
            timeout=timeout,
        )
    except requests.RequestException as exc:
        raise APIRequestError(str(exc)) from exc
    if response.status_code == 401:
        return False
    if not response.ok:
        raise APIRequestError(_error_message(response))
    return response.json().get("valid") is True


def call_chat_api(base_url: str, payload: Dict[str, Any], *, timeout: int = 120) -> Dict[str, Any]:
    try:
        response = requests.post(_url(base_url, "/api/chat"), json=payload, timeout=timeout)
    except requests.RequestException as exc:
        raise APIRequestError(str(exc)) from exc
    if response.status_code == 401:
        raise AuthError(_error_message(response))
    if not response.ok:
        raise APIRequestError(_error_message(response))
    return response.json()


def fetch_saved_plots(base_url: str, *, timeout: int = 30) -> List[Dict[str, Any]]:
    try:
        response = requests.get(_url(base_url, "/api/plots"), timeout=timeout)
        data = response.json()
    except requests.RequestException as exc:
        raise APIRequestError(str(exc)) from exc
    except ValueError as exc:
        raise APIRequestError(f"Invalid response from plot service: {exc}") from exc
    if not data.get("success"):
        raise APIRequestError(str(data.get("error") or "Failed to fetch plots"))
    return data.get("data") or []


def save_plot(base_url: str, name: str, spec: Dict[str, Any], *, timeout: int = 30) -> Dict[str, Any]:
    """Save ``spec`` under ``name``; a blank name is refused before any request."""
    name = (name or "").strip()
    if not name:
        raise ValueError("Please enter a name for the plot")
    try:
        response = requests.post(
            _url(base_url, "/api/plots"),
            json={"name": name, "spec": spec},
            timeout=timeout,
        )
        data = response.json()
    except requests.RequestException as exc:
        raise APIRequestError(str(exc)) from exc
    except ValueError as exc:
        raise APIRequestError(f"Invalid response from plot service: {exc}") from exc
    if not data.get("success"):
        raise APIRequestError(str(data.get("error") or "Failed to save plot"))
    return data["data"]
