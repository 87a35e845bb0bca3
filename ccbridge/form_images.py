#!/usr/bin/env python3
"""
# ccbridge
# Copyright (c) 2026 Dale Chapman
# Licensed under the MIT License. See LICENSE in the project root.

form_images.py

Quiz form assembly and the image resolution protocol it needs.

Google Forms only shows question images from content URIs it produced
itself. Before the real items are submitted, every image goes through
four sequential passes:

    1. Placeholder: add a throwaway image item with a temporary title,
       letting Forms fetch the source image.
    2. Fetch: read the form back and find each placeholder's contentUri.
    3. Validate: keep the processed URI if it passes is_secure_image_url,
       else fall back to the original URI, else drop the image.
    4. Substitute and submit: patch the URIs into the real requests,
       delete the placeholders, submit the real items.

Individual image failures only cost that image. Only a failed final
submission fails the form.
"""

from __future__ import annotations

import copy
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ccbridge.errors import FormBuildError, ServiceAPIError
from ccbridge.google_client import FormsClient, ScriptClient, form_url
from ccbridge.models import QuestionDef
from ccbridge.qti_parser import build_form_requests
from ccbridge.security_utils import is_secure_image_url

logger = logging.getLogger(__name__)

TEMP_TITLE_PREFIX = "TEMP_IMG_FOR_REQ_INDEX_"
PLACEHOLDER_FIELDS = "items(title,itemId,imageItem(image(contentUri)))"
SCRIPT_FUNCTION = "createFormItemsInGoogleForm"


@dataclass
class ImageProcessInfo:
    """Bookkeeping for one image moving through the passes."""
    request_index: int
    temp_title: str
    original_uri: str
    item_id: Optional[str] = None
    position: Optional[int] = None
    processed_uri: Optional[str] = None
    final_uri: Optional[str] = None
    failed: bool = False


@dataclass
class FormSubmitResult:
    success: bool
    message: str = ""
    created_items: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "created_items": self.created_items,
            "errors": list(self.errors),
        }


def _image_slot(item: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """The image dict of a questionItem or imageItem, if it has a sourceUri."""
    for container in ("questionItem", "imageItem"):
        image = (item.get(container) or {}).get("image")
        if image and image.get("sourceUri"):
            return image
    return None


class FormImageResolver:
    """
    Runs the four-pass protocol against one form.

    Args:
        forms: Forms client
        script: Optional Apps Script client; when given the final batch
            goes through the script side channel instead of batchUpdate
    """

    def __init__(self, forms: FormsClient, script: Optional[ScriptClient] = None):
        self.forms = forms
        self.script = script

    def resolve_and_submit(self, form_id: str, requests_: List[Dict[str, Any]]) -> FormSubmitResult:
        """
        Resolve images in requests_ and submit them to form_id.

        Raises:
            FormBuildError: The final submission failed
        """
        payload = copy.deepcopy(requests_)
        errors: List[str] = []

        infos = self.create_placeholders(form_id, payload, errors)
        if infos:
            self.fetch_content_uris(form_id, infos, errors)
            payload = self.validate_and_substitute(payload, infos, errors)
            self.delete_placeholders(form_id, infos, errors)

        created = self.submit(form_id, payload)
        message = f"Created {created} item(s)"
        if errors:
            message += f" with {len(errors)} image issue(s)"
        logger.info(f"[forms] {message} in form {form_id}")
        return FormSubmitResult(success=True, message=message, created_items=created, errors=errors)

    # -------------------------------------------------------------------------
    # Pass 1
    # -------------------------------------------------------------------------

    def create_placeholders(
        self,
        form_id: str,
        payload: List[Dict[str, Any]],
        errors: List[str],
    ) -> List[ImageProcessInfo]:
        infos: List[ImageProcessInfo] = []
        created = 0
        for index, request in enumerate(payload):
            item = (request.get("createItem") or {}).get("item") or {}
            image = _image_slot(item)
            if image is None:
                continue

            info = ImageProcessInfo(
                request_index=index,
                temp_title=f"{TEMP_TITLE_PREFIX}{index}_{uuid.uuid4().hex[:8]}",
                original_uri=image["sourceUri"],
            )
            infos.append(info)

            placeholder = {
                "createItem": {
                    "item": {"title": info.temp_title, "imageItem": {"image": {"sourceUri": info.original_uri}}},
                    "location": {"index": created},
                }
            }
            try:
                response = self.forms.batch_update(form_id, [placeholder])
                replies = response.get("replies") or [{}]
                info.item_id = (replies[0].get("createItem") or {}).get("itemId")
                info.position = created
                created += 1
            except ServiceAPIError as e:
                info.failed = True
                errors.append(f"Temp image creation failed (index {index}, source {info.original_uri}): {e.message}")
                logger.warning(f"[forms] Placeholder for request {index} failed: {e.message}")
        return infos

    # -------------------------------------------------------------------------
    # Pass 2
    # -------------------------------------------------------------------------

    def fetch_content_uris(self, form_id: str, infos: List[ImageProcessInfo], errors: List[str]) -> None:
        pending = [i for i in infos if not i.failed]
        if not pending:
            return
        try:
            form = self.forms.get_form(form_id, PLACEHOLDER_FIELDS)
        except ServiceAPIError as e:
            errors.append(f"Could not read placeholder images back: {e.message}")
            logger.warning(f"[forms] Reading form {form_id} failed: {e.message}")
            return

        by_title = {}
        for position, item in enumerate(form.get("items") or []):
            by_title[item.get("title")] = (position, item)

        for info in pending:
            found = by_title.get(info.temp_title)
            if found is None:
                errors.append(f"Placeholder {info.temp_title} not found in form")
                continue
            position, item = found
            info.position = position
            info.item_id = item.get("itemId") or info.item_id
            info.processed_uri = ((item.get("imageItem") or {}).get("image") or {}).get("contentUri")

    # -------------------------------------------------------------------------
    # Pass 3 + substitution
    # -------------------------------------------------------------------------

    def validate_and_substitute(
        self,
        payload: List[Dict[str, Any]],
        infos: List[ImageProcessInfo],
        errors: List[str],
    ) -> List[Dict[str, Any]]:
        dropped = set()
        for info in infos:
            item = payload[info.request_index]["createItem"]["item"]
            if is_secure_image_url(info.processed_uri):
                info.final_uri = info.processed_uri
            elif is_secure_image_url(info.original_uri):
                logger.debug(f"[forms] Using original image URI for request {info.request_index}")
                info.final_uri = info.original_uri
            else:
                reason = (
                    f"Image removed from request {info.request_index} "
                    f"('{item.get('title', '')}'): no secure URI"
                )
                errors.append(reason)
                logger.warning(f"[forms] {reason}")
                if "imageItem" in item:
                    dropped.add(info.request_index)
                else:
                    item["questionItem"].pop("image", None)
                continue
            _image_slot(item)["sourceUri"] = info.final_uri

        kept = [r for i, r in enumerate(payload) if i not in dropped]
        for index, request in enumerate(kept):
            request["createItem"]["location"] = {"index": index}
        return kept

    # -------------------------------------------------------------------------
    # Pass 4
    # -------------------------------------------------------------------------

    def delete_placeholders(self, form_id: str, infos: List[ImageProcessInfo], errors: List[str]) -> None:
        positions = sorted({i.position for i in infos if i.position is not None}, reverse=True)
        if not positions:
            return
        try:
            self.forms.batch_update(
                form_id, [{"deleteItem": {"location": {"index": p}}} for p in positions]
            )
        except ServiceAPIError as e:
            errors.append(f"Placeholder cleanup failed: {e.message}")
            logger.warning(f"[forms] Could not delete placeholders in {form_id}: {e.message}")

    def submit(self, form_id: str, payload: List[Dict[str, Any]]) -> int:
        if not payload:
            return 0
        try:
            if self.script is not None:
                result = self.script.run(SCRIPT_FUNCTION, [form_id, payload]) or {}
                if not isinstance(result, dict):
                    raise FormBuildError(
                        message=f"{SCRIPT_FUNCTION} returned an unexpected result for form {form_id}",
                        context={"form_id": form_id, "result": repr(result)[:200]},
                    )
                if result.get("success") is False:
                    raise FormBuildError(
                        message=f"Adding {len(payload)} item(s) to form {form_id} failed: "
                                f"{result.get('message') or 'script reported failure'}",
                        context={"form_id": form_id, "created_items": result.get("createdItems", 0)},
                    )
                return int(result.get("createdItems", len(payload)))
            self.forms.batch_update(form_id, payload)
            return len(payload)
        except ServiceAPIError as e:
            raise FormBuildError(
                message=f"Adding {len(payload)} item(s) to form {form_id} failed",
                context={"form_id": form_id},
                cause=e,
            )


class QuizFormBuilder:
    """Creates a quiz form from question definitions."""

    def __init__(self, forms: FormsClient, script: Optional[ScriptClient] = None):
        self.forms = forms
        self.resolver = FormImageResolver(forms, script)

    def build(self, title: str, definitions: List[QuestionDef]) -> Dict[str, Any]:
        """
        Returns:
            {formId, formUrl, title, result}
        """
        form = self.forms.create_form(title)
        form_id = form.get("formId")
        if not form_id:
            raise FormBuildError(message=f"Form creation for '{title}' returned no id")

        self.forms.update_settings(form_id)
        requests_ = build_form_requests(definitions)
        if not definitions:
            logger.warning(f"[forms] '{title}' has no questions; leaving the form empty")
        result = self.resolver.resolve_and_submit(form_id, requests_)
        return {
            "formId": form_id,
            "formUrl": form_url(form),
            "title": title,
            "result": result.to_dict(),
        }
