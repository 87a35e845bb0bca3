#!/usr/bin/env python3
"""
# ccbridge
# Copyright (c) 2026 Dale Chapman
# Licensed under the MIT License. See LICENSE in the project root.

google_client.py

Clients for the Google services the artifact stage uses, built on the
google-api-python-client discovery services:

- Drive v3: folder search/creation, media uploads, metadata, moves
- Docs (via Drive import): HTML -> Google Doc
- Forms v1: create, settings, read, batchUpdate
- Apps Script API v1: scripts.run side channel for form item insertion

SECURITY: The access token lives only in the google.oauth2 Credentials and
is never logged unmasked. Every call has a socket timeout and passes the
shared rate limiter; transient failures are retried by retry_call.
"""

from __future__ import annotations

import io
import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import google_auth_httplib2
import httplib2
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import HttpRequest, MediaIoBaseUpload

from ccbridge.errors import ServiceAPIError, http_error
from ccbridge.retry import RetryConfig, retry_call
from ccbridge.security_utils import (
    DEFAULT_TIMEOUT,
    UPLOAD_TIMEOUT,
    RateLimiter,
    get_rate_limiter,
    mask_sensitive,
)

logger = logging.getLogger(__name__)


# ============================================================================
# APIs and MIME types
# ============================================================================

API_VERSIONS = {
    "drive": "v3",
    "forms": "v1",
    "script": "v1",
}

FOLDER_MIME = "application/vnd.google-apps.folder"
DOCUMENT_MIME = "application/vnd.google-apps.document"
FORM_MIME = "application/vnd.google-apps.form"

FILE_FIELDS = "id, name, mimeType, webViewLink, thumbnailLink, appProperties, parents"


def escape_query_value(value: str) -> str:
    """Escape a value for a single-quoted Drive query literal."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


# ============================================================================
# Session
# ============================================================================

class GoogleSession:
    """
    Discovery services for one access token, plus rate limiting, retries
    and translation of HttpError to ServiceAPIError.

    httplib2 connections must not be shared between threads, so every
    worker thread builds its own service objects on first use.

    Args:
        access_token: OAuth bearer token
        retry_config: Retry policy for execute()
        rate_limiter: Shared client-side limiter
        timeout: Socket timeout (seconds) for ordinary calls
        upload_timeout: Socket timeout for uploads and script runs
        service_factory: googleapiclient.discovery.build or a test double
    """

    def __init__(
        self,
        access_token: str,
        retry_config: Optional[RetryConfig] = None,
        rate_limiter: Optional[RateLimiter] = None,
        timeout: float = DEFAULT_TIMEOUT,
        upload_timeout: float = UPLOAD_TIMEOUT,
        service_factory: Optional[Callable[..., Any]] = None,
    ):
        self.credentials = Credentials(token=access_token)
        self.retry_config = retry_config or RetryConfig()
        self.rate_limiter = rate_limiter or get_rate_limiter()
        self.timeout = timeout
        self.upload_timeout = upload_timeout
        self.service_factory = service_factory or build
        self._local = threading.local()
        logger.debug(f"[google] Session ready (token {mask_sensitive(access_token)})")

    def service(self, api: str, long_running: bool = False) -> Any:
        """This thread's discovery service for api ("drive", "forms" or "script")."""
        services = getattr(self._local, "services", None)
        if services is None:
            services = self._local.services = {}

        key = (api, long_running)
        if key not in services:
            timeout = self.upload_timeout if long_running else self.timeout
            http = google_auth_httplib2.AuthorizedHttp(self.credentials, http=httplib2.Http(timeout=timeout))
            services[key] = self.service_factory(api, API_VERSIONS[api], http=http, cache_discovery=False)
        return services[key]

    def execute(self, request: HttpRequest, operation: str) -> Dict[str, Any]:
        """
        Execute one API request with retries and return its decoded body.

        Raises:
            ServiceAPIError: Non-retryable failure
            RetryExhaustedError: Transient failures outlasted the retry policy
        """
        def attempt() -> Dict[str, Any]:
            self.rate_limiter.wait_if_needed()
            try:
                return request.execute() or {}
            except HttpError as e:
                raise self._translate(e, operation) from e

        return retry_call(attempt, self.retry_config, operation)

    def _translate(self, error: HttpError, operation: str) -> ServiceAPIError:
        status = error.resp.status
        if status == 429:
            retry_after = error.resp.get("retry-after")
            try:
                self.rate_limiter.handle_rate_limit_response(float(retry_after) if retry_after else 30.0)
            except ValueError:
                self.rate_limiter.handle_rate_limit_response()

        content = error.content or b""
        try:
            payload = json.loads(content.decode("utf-8"))
        except (ValueError, UnicodeDecodeError):
            payload = content.decode("utf-8", errors="replace")
        return http_error(status, error.resp.reason, operation, payload)


# ============================================================================
# Drive
# ============================================================================

class DriveClient:
    def __init__(self, session: GoogleSession):
        self.session = session

    def _files(self, long_running: bool = False):
        return self.session.service("drive", long_running).files()

    def list_files(self, query: str, fields: str = FILE_FIELDS) -> List[Dict[str, Any]]:
        request = self._files().list(q=query, fields=f"files({fields})", spaces="drive")
        return self.session.execute(request, "Drive search").get("files", [])

    def search_by_property(
        self,
        parent_id: Optional[str],
        key: str,
        value: str,
        mime_type: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Files under parent_id whose appProperties[key] == value."""
        clauses = [
            f"appProperties has {{ key='{escape_query_value(key)}' and value='{escape_query_value(value)}' }}",
            "trashed = false",
        ]
        if parent_id:
            clauses.insert(0, f"'{escape_query_value(parent_id)}' in parents")
        if mime_type:
            clauses.append(f"mimeType='{mime_type}'")
        return self.list_files(" and ".join(clauses))

    def find_folder_by_name(self, name: str, parent_id: str) -> Optional[Dict[str, Any]]:
        query = (
            f"name='{escape_query_value(name)}' and '{escape_query_value(parent_id)}' in parents "
            f"and mimeType='{FOLDER_MIME}' and trashed = false"
        )
        files = self.list_files(query, "id, name")
        return files[0] if files else None

    def create_folder(
        self,
        name: str,
        parent_id: Optional[str] = None,
        app_properties: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {"name": name, "mimeType": FOLDER_MIME}
        if parent_id:
            metadata["parents"] = [parent_id]
        if app_properties:
            metadata["appProperties"] = app_properties
        request = self._files().create(body=metadata, fields="id, name")
        folder = self.session.execute(request, f"Create folder '{name}'")
        logger.info(f"[drive] Created folder '{name}' ({folder.get('id')})")
        return folder

    def upload_file(
        self,
        name: str,
        data: bytes,
        mime_type: str,
        parent_id: Optional[str] = None,
        app_properties: Optional[Dict[str, str]] = None,
        target_mime_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Upload bytes with their metadata in one request.

        target_mime_type asks Drive to convert on import (e.g. HTML -> Doc).
        """
        metadata: Dict[str, Any] = {"name": name}
        if parent_id:
            metadata["parents"] = [parent_id]
        if app_properties:
            metadata["appProperties"] = app_properties
        if target_mime_type:
            metadata["mimeType"] = target_mime_type

        media = MediaIoBaseUpload(io.BytesIO(data), mimetype=mime_type, resumable=False)
        request = self._files(long_running=True).create(
            body=metadata,
            media_body=media,
            fields="id, name, webViewLink, thumbnailLink",
        )
        uploaded = self.session.execute(request, f"Upload '{name}'")
        logger.info(f"[drive] Uploaded '{name}' ({uploaded.get('id')})")
        return uploaded

    def get_file_metadata(self, file_id: str, fields: str = FILE_FIELDS) -> Dict[str, Any]:
        request = self._files().get(fileId=file_id, fields=fields)
        return self.session.execute(request, f"Get metadata {file_id}")

    def patch_file(
        self,
        file_id: str,
        app_properties: Optional[Dict[str, str]] = None,
        add_parents: Optional[str] = None,
        remove_parents: Optional[str] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {"fileId": file_id, "fields": "id, name, webViewLink, parents"}
        if add_parents:
            params["addParents"] = add_parents
        if remove_parents:
            params["removeParents"] = remove_parents
        body = {"appProperties": app_properties} if app_properties else {}
        request = self._files().update(body=body, **params)
        return self.session.execute(request, f"Update file {file_id}")


# ============================================================================
# Docs
# ============================================================================

class DocsClient:
    """Creates Google Docs by importing HTML through Drive."""

    def __init__(self, drive: DriveClient):
        self.drive = drive

    def create_from_html(
        self,
        html: str,
        title: str,
        parent_id: Optional[str] = None,
        app_properties: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        created = self.drive.upload_file(
            name=title,
            data=html.encode("utf-8"),
            mime_type="text/html",
            parent_id=parent_id,
            app_properties=app_properties,
            target_mime_type=DOCUMENT_MIME,
        )
        doc_id = created["id"]
        return {
            "id": doc_id,
            "title": created.get("name", title),
            "viewUrl": created.get("webViewLink") or f"https://docs.google.com/document/d/{doc_id}/edit",
        }


# ============================================================================
# Forms
# ============================================================================

class FormsClient:
    def __init__(self, session: GoogleSession):
        self.session = session

    def _forms(self):
        return self.session.service("forms").forms()

    def create_form(self, title: str) -> Dict[str, Any]:
        request = self._forms().create(body={"info": {"title": title, "documentTitle": title}})
        form = self.session.execute(request, f"Create form '{title}'")
        logger.info(f"[forms] Created form '{title}' ({form.get('formId')})")
        return form

    def batch_update(
        self,
        form_id: str,
        requests_: List[Dict[str, Any]],
        include_form_in_response: bool = False,
    ) -> Dict[str, Any]:
        request = self._forms().batchUpdate(
            formId=form_id,
            body={"requests": requests_, "includeFormInResponse": include_form_in_response},
        )
        return self.session.execute(request, f"Update form {form_id}")

    def update_settings(
        self,
        form_id: str,
        settings: Optional[Dict[str, Any]] = None,
        update_mask: str = "quizSettings.isQuiz",
    ) -> Dict[str, Any]:
        """Defaults to turning the form into a quiz."""
        settings = settings or {"quizSettings": {"isQuiz": True}}
        return self.batch_update(
            form_id, [{"updateSettings": {"settings": settings, "updateMask": update_mask}}]
        )

    def get_form(self, form_id: str, fields: Optional[str] = None) -> Dict[str, Any]:
        params = {"fields": fields} if fields else {}
        request = self._forms().get(formId=form_id, **params)
        return self.session.execute(request, f"Get form {form_id}")


def form_url(form: Dict[str, Any]) -> str:
    return form.get("responderUri") or f"https://docs.google.com/forms/d/{form['formId']}/viewform"


# ============================================================================
# Apps Script
# ============================================================================

class ScriptClient:
    """Runs a deployed Apps Script function through the Apps Script API."""

    def __init__(self, session: GoogleSession, script_id: str):
        self.session = session
        self.script_id = script_id

    def run(self, function: str, parameters: List[Any]) -> Any:
        """
        Execute function(*parameters) and return its result.

        Raises:
            ServiceAPIError: If the script itself reported an error
        """
        request = self.session.service("script", long_running=True).scripts().run(
            scriptId=self.script_id,
            body={"function": function, "parameters": parameters, "devMode": False},
        )
        response = self.session.execute(request, f"Run script {function}")
        if response.get("error"):
            error = response["error"]
            details = error.get("details") or [{}]
            message = details[0].get("errorMessage") or error.get("message") or "Unknown Apps Script error"
            raise ServiceAPIError(
                message=f"Apps Script {function} failed: {message}",
                operation=f"Run script {function}",
                context={"script_id": self.script_id},
            )
        return (response.get("response") or {}).get("result")


# ============================================================================
# Service bundle
# ============================================================================

@dataclass
class GoogleServices:
    drive: DriveClient
    docs: DocsClient
    forms: FormsClient
    script: Optional[ScriptClient] = None


def build_services(access_token: str, config=None) -> GoogleServices:
    """Wire the clients over one shared session, using a CcBridgeConfig when given."""
    retry_config = RetryConfig.from_config(config) if config else RetryConfig()
    session = GoogleSession(
        access_token,
        retry_config=retry_config,
        rate_limiter=get_rate_limiter(config.rate_limit_per_minute) if config else None,
        timeout=config.request_timeout if config else DEFAULT_TIMEOUT,
        upload_timeout=config.upload_timeout if config else UPLOAD_TIMEOUT,
    )
    drive = DriveClient(session)
    script_id = getattr(config, "forms_script_id", None) if config else None
    return GoogleServices(
        drive=drive,
        docs=DocsClient(drive),
        forms=FormsClient(session),
        script=ScriptClient(session, script_id) if script_id else None,
    )
