# tests/conftest.py
"""
Shared fixtures for ccbridge tests

Packages are built in memory as PackageFile lists; Google services are
replaced by recording fakes so no test touches the network.
"""
import itertools
import sys
import threading
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from ccbridge.errors import ServiceAPIError  # noqa: E402
from ccbridge.google_client import DOCUMENT_MIME, FOLDER_MIME, FORM_MIME, GoogleServices  # noqa: E402
from ccbridge.package import make_package_file  # noqa: E402


# ============================================================================
# Package builders
# ============================================================================

MANIFEST_HEAD = (
    '<?xml version="1.0" encoding="UTF-8"?>\n'
    '<manifest identifier="M1" xmlns="http://www.imsglobal.org/xsd/imsccv1p1/imscp_v1p1"'
    ' xmlns:lom="http://ltsc.ieee.org/xsd/imsccv1p1/LOM/resource"'
    ' xmlns:lomimscc="http://ltsc.ieee.org/xsd/imsccv1p1/LOM/manifest">\n'
)


def manifest_xml(organization="", resources="", course_title="Biology 101"):
    """Wrap organization items and resources in a minimal cartridge manifest."""
    metadata = ""
    if course_title:
        metadata = (
            "<metadata><lomimscc:lom><lomimscc:general><lomimscc:title>"
            f"<lomimscc:string>{course_title}</lomimscc:string>"
            "</lomimscc:title></lomimscc:general></lomimscc:lom></metadata>"
        )
    organizations = ""
    if organization is not None:
        organizations = (
            "<organizations><organization identifier=\"O1\" structure=\"rooted-hierarchy\">"
            f"{organization}</organization></organizations>"
        )
    return f"{MANIFEST_HEAD}{metadata}{organizations}<resources>{resources}</resources></manifest>"


def build_package(manifest, files=None):
    """PackageFile list with imsmanifest.xml plus {name: str|bytes} files."""
    package = [make_package_file("imsmanifest.xml", manifest.encode("utf-8"))]
    for name, content in (files or {}).items():
        raw = content.encode("utf-8") if isinstance(content, str) else content
        package.append(make_package_file(name, raw))
    return package


@pytest.fixture
def package_builder():
    """build_package(manifest, files) as a fixture."""
    return build_package


@pytest.fixture
def week_one_package():
    """One 'Week 1' folder holding an HTML page with a local image."""
    organization = (
        '<item identifier="root">'
        '<item identifier="I1"><title>Week 1</title>'
        '<item identifier="I2" identifierref="R1"><title>Intro</title></item>'
        '</item></item>'
    )
    resources = (
        '<resource identifier="R1" type="webcontent" href="wiki/intro.html">'
        '<file href="wiki/intro.html"/></resource>'
    )
    files = {
        "wiki/intro.html": '<p>Hello</p><img src="../img/a.png" alt="Diagram">',
        "img/a.png": b"\x89PNG\r\n\x1a\nfake",
    }
    return build_package(manifest_xml(organization, resources), files)


# ============================================================================
# Google fakes
# ============================================================================

class FakeDrive:
    """Records Drive calls and keeps created files in memory."""

    def __init__(self, create_delay=None):
        self.files = {}
        self.calls = []
        self.create_delay = create_delay
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def _new_id(self, prefix):
        with self._lock:
            return f"{prefix}{next(self._ids)}"

    def _record(self, name, *args):
        with self._lock:
            self.calls.append((name,) + args)

    def count(self, name):
        return sum(1 for call in self.calls if call[0] == name)

    def search_by_property(self, parent_id, key, value, mime_type=None):
        self._record("search_by_property", parent_id, key, value)
        return [
            f for f in self.files.values()
            if parent_id in f.get("parents", [])
            and (f.get("appProperties") or {}).get(key) == value
            and (mime_type is None or f.get("mimeType") == mime_type)
        ]

    def find_folder_by_name(self, name, parent_id):
        self._record("find_folder_by_name", name, parent_id)
        for f in self.files.values():
            if f["name"] == name and parent_id in f.get("parents", []) and f.get("mimeType") == FOLDER_MIME:
                return f
        return None

    def create_folder(self, name, parent_id=None, app_properties=None):
        self._record("create_folder", name, parent_id)
        if self.create_delay:
            self.create_delay()
        folder = {
            "id": self._new_id("folder"),
            "name": name,
            "mimeType": FOLDER_MIME,
            "parents": [parent_id],
            "appProperties": dict(app_properties or {}),
        }
        self.files[folder["id"]] = folder
        return folder

    def upload_file(self, name, data, mime_type, parent_id=None, app_properties=None, target_mime_type=None):
        self._record("upload_file", name, parent_id)
        file_id = self._new_id("file")
        uploaded = {
            "id": file_id,
            "name": name,
            "mimeType": target_mime_type or mime_type,
            "parents": [parent_id],
            "appProperties": dict(app_properties or {}),
            "webViewLink": f"https://drive.example/{file_id}",
            "thumbnailLink": f"https://lh3.googleusercontent.com/{file_id}=s220",
        }
        self.files[file_id] = uploaded
        return uploaded

    def patch_file(self, file_id, app_properties=None, add_parents=None, remove_parents=None):
        self._record("patch_file", file_id, add_parents, remove_parents)
        entry = self.files.setdefault(file_id, {"id": file_id, "name": file_id, "mimeType": FORM_MIME, "parents": ["root"]})
        if app_properties:
            entry.setdefault("appProperties", {}).update(app_properties)
        if add_parents:
            entry["parents"] = [add_parents]
        return entry


class FakeDocs:
    def __init__(self, drive):
        self.drive = drive
        self.created = []

    def create_from_html(self, html, title, parent_id=None, app_properties=None):
        created = self.drive.upload_file(title, html.encode("utf-8"), "text/html", parent_id, app_properties, DOCUMENT_MIME)
        self.created.append(title)
        return {"id": created["id"], "title": title, "viewUrl": created["webViewLink"]}


class FakeForms:
    """
    Minimal Forms API: keeps an ordered item list per form.

    processed_uri(source) decides the contentUri a placeholder image gets.
    """

    def __init__(self, processed_uri=None, fail_placeholders=False):
        self.forms = {}
        self.batches = []
        self.processed_uri = processed_uri or (lambda source: f"https://lh7-rt.googleusercontent.com/forms/{abs(hash(source))}")
        self.fail_placeholders = fail_placeholders
        self._ids = itertools.count(1)

    def create_form(self, title):
        form_id = f"form{next(self._ids)}"
        self.forms[form_id] = []
        return {"formId": form_id, "responderUri": f"https://docs.google.com/forms/d/{form_id}/viewform"}

    def update_settings(self, form_id, settings=None, update_mask="quizSettings.isQuiz"):
        return {}

    def batch_update(self, form_id, requests_, include_form_in_response=False):
        self.batches.append(requests_)
        items = self.forms[form_id]
        replies = []
        for request in requests_:
            if "createItem" in request:
                item = dict(request["createItem"]["item"])
                if self.fail_placeholders and item.get("title", "").startswith("TEMP_IMG"):
                    raise ServiceAPIError("placeholder rejected", status_code=400)
                item["itemId"] = f"item{next(self._ids)}"
                image = (item.get("imageItem") or {}).get("image")
                if image and item.get("title", "").startswith("TEMP_IMG"):
                    image["contentUri"] = self.processed_uri(image["sourceUri"])
                items.insert(request["createItem"]["location"]["index"], item)
                replies.append({"createItem": {"itemId": item["itemId"]}})
            elif "deleteItem" in request:
                del items[request["deleteItem"]["location"]["index"]]
                replies.append({})
        return {"replies": replies}

    def get_form(self, form_id, fields=None):
        return {"formId": form_id, "items": [dict(i) for i in self.forms[form_id]]}


@pytest.fixture
def fake_drive():
    return FakeDrive()


@pytest.fixture
def fake_forms():
    return FakeForms()


@pytest.fixture
def manifest_builder():
    """manifest_xml(organization, resources, course_title) as a fixture."""
    return manifest_xml


@pytest.fixture
def drive_factory():
    return FakeDrive


@pytest.fixture
def forms_factory():
    return FakeForms


@pytest.fixture
def google_services(fake_drive, fake_forms):
    return GoogleServices(drive=fake_drive, docs=FakeDocs(fake_drive), forms=fake_forms, script=None)
