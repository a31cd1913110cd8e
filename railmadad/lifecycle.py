# Complaint lifecycle: create / update / delete / withdraw / resubmit

import base64
import binascii
import logging
import re
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import ValidationError

from . import config
from .errors import AuthorizationFailure, ComplaintError, ExtractionEmpty, NotFound
from .identifiers import new_id
from .models import (
    UPDATE_PROTECTED_FIELDS, WITHDRAWABLE_STATUSES, Caller, ComplaintBase, ComplaintSource, Media,
    MediaType, MediaUpload, Priority, Status, normalize_area, now_utc, parse_complaint,
    to_wire_keys, touch,
)
from .store import ComplaintRepository
from .views import filter_for_caller

logger = logging.getLogger(__name__)

# Keys the controller always sets itself on a new record
SERVER_FIELDS = frozenset({
    "id", "title", "status", "priority", "source", "ownerEmail", "createdAt", "updatedAt",
    "media", "analysis", "assignedTo",
})

FieldMap = Dict[str, Any]
MediaInput = Union[MediaUpload, Dict[str, Any]]
DATA_URL_RE = re.compile(r"^data:([^;,]*);base64,(.*)$", re.DOTALL)

# ---------------------------------------------------------------------------
# Media encoding
# ---------------------------------------------------------------------------
def media_type_for(content_type: str) -> MediaType:
    if content_type.startswith("image"):
        return MediaType.IMAGE
    if content_type.startswith("video"):
        return MediaType.VIDEO
    return MediaType.AUDIO

def encode_media(complaint_id: str, upload: MediaInput) -> Media:
    """Turn an uploaded file into a Media entry carrying a data URL."""
    if not isinstance(upload, MediaUpload):
        upload = MediaUpload.model_validate(upload)
    content_type = upload.content_type
    if isinstance(upload.data, str):
        payload = upload.data
        data_url = DATA_URL_RE.match(payload)
        if data_url:
            content_type = content_type or data_url.group(1)
            payload = data_url.group(2)
        raw = base64.b64decode(payload, validate=True)
    else:
        raw = bytes(upload.data)
    mime = content_type or "application/octet-stream"
    encoded = base64.b64encode(raw).decode("ascii")
    return Media(id=f"{complaint_id}-{upload.name}", name=upload.name,
                 type=media_type_for(content_type), url=f"data:{mime};base64,{encoded}")

def encode_all(complaint_id: str, uploads: Optional[Iterable[MediaInput]]) -> List[Media]:
    media = []
    for upload in uploads or []:
        try:
            media.append(encode_media(complaint_id, upload))
        except (binascii.Error, ValueError, TypeError) as e:
            name = upload.get("name") if isinstance(upload, dict) else getattr(upload, "name", "?")
            logger.error("Failed to process file %s: %s", name, e)
    return media

# ---------------------------------------------------------------------------
# Record assembly
# ---------------------------------------------------------------------------
def build_complaint(fields: FieldMap, *, complaint_id: str, owner_email: str,
                    source: ComplaintSource = ComplaintSource.FORM,
                    media: Optional[List[Media]] = None) -> ComplaintBase:
    data = {k: v for k, v in to_wire_keys(dict(fields)).items() if k not in SERVER_FIELDS}
    data["complaintArea"] = normalize_area(data.get("complaintArea"))
    title_type = data.get("complaintType") or config.DEFAULT_TITLE_TYPE
    title_sub_type = data.get("complaintSubType") or config.DEFAULT_TITLE_SUBTYPE
    now = now_utc()
    data.update({
        "id": complaint_id,
        "title": f"{title_type}: {title_sub_type}",
        "complaintType": title_type,
        "complaintSubType": title_sub_type,
        "status": Status.REGISTERED,
        "priority": Priority.MEDIUM,
        "source": source,
        "ownerEmail": owner_email,
        "createdAt": now,
        "updatedAt": now,
        "media": media or [],
    })
    return parse_complaint(data)

def merge_fields(current: ComplaintBase, partial: FieldMap) -> ComplaintBase:
    """Whole-record merge of ``partial`` into ``current``; protected keys are dropped."""
    updates = to_wire_keys(dict(partial))
    ignored = sorted(k for k in updates if k in UPDATE_PROTECTED_FIELDS)
    if ignored:
        logger.warning("Ignoring protected fields %s on complaint %s", ignored, current.id)
    data = current.to_wire()
    data.update({k: v for k, v in updates.items() if k not in UPDATE_PROTECTED_FIELDS})
    data["updatedAt"] = touch(current.created_at, current.updated_at)
    return parse_complaint(data)

# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------
class ComplaintLifecycle:
    """Complaint operations on behalf of one caller.

    Holds the caller's filtered view of the store. Every public operation
    catches its own failures, logs them and reports ``None``/``False``.
    """

    def __init__(self, repository: ComplaintRepository, caller: Caller,
                 enrichment=None, extraction=None):
        self.repository = repository
        self.caller = caller
        self.enrichment = enrichment
        self.extraction = extraction
        self._complaints: List[ComplaintBase] = []
        if enrichment is not None:
            enrichment.add_listener(self._on_enriched)
        self.refresh()

    @property
    def complaints(self) -> List[ComplaintBase]:
        return list(self._complaints)

    def close(self) -> None:
        if self.enrichment is not None:
            self.enrichment.remove_listener(self._on_enriched)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    # -- view --------------------------------------------------------------
    def refresh(self) -> bool:
        """Reload from the store and re-apply the caller's view filter."""
        try:
            records = self.repository.load_all()
        except ComplaintError as e:
            logger.error("Error refreshing complaints: %s", e)
            return False
        self._complaints = filter_for_caller(records, self.caller)
        return True

    def get_by_id(self, complaint_id: str) -> Optional[ComplaintBase]:
        return next((c for c in self._complaints if c.id == complaint_id), None)

    def _visible(self, complaint: ComplaintBase) -> bool:
        return bool(filter_for_caller([complaint], self.caller))

    def _put_in_view(self, complaint: ComplaintBase) -> None:
        for i, existing in enumerate(self._complaints):
            if existing.id == complaint.id:
                self._complaints[i] = complaint
                return
        if self._visible(complaint):
            self._complaints.insert(0, complaint)

    def _on_enriched(self, complaint: ComplaintBase) -> None:
        if self.get_by_id(complaint.id) is not None:
            self._put_in_view(complaint)

    def _require_author(self) -> None:
        if self.caller.is_admin:
            raise AuthorizationFailure("Administrators cannot submit complaints")

    def _require_member(self, complaint_id: str) -> ComplaintBase:
        if not self.caller.is_authenticated:
            raise AuthorizationFailure("User not authenticated")
        current = self.get_by_id(complaint_id)
        if current is None:
            raise NotFound(f"Complaint {complaint_id} is not in the current view")
        return current

    def _schedule(self, complaint_id: str) -> None:
        if self.enrichment is not None:
            self.enrichment.schedule(complaint_id)

    def _persist(self, complaint: ComplaintBase) -> None:
        self.repository.merge_write([complaint])
        self._put_in_view(complaint)

    # -- creation ----------------------------------------------------------
    async def create(self, fields: FieldMap,
                     media_files: Optional[Iterable[MediaInput]] = None) -> Optional[ComplaintBase]:
        """File a complaint from the submission form. Guests may submit."""
        try:
            self._require_author()
            complaint_id = new_id(fields.get("complaint_area") or fields.get("complaintArea"))
            complaint = build_complaint(
                fields, complaint_id=complaint_id,
                owner_email=self.caller.email or config.ANONYMOUS_EMAIL,
                source=ComplaintSource.FORM, media=encode_all(complaint_id, media_files))
            self._persist(complaint)
        except AuthorizationFailure as e:
            logger.error("Rejected complaint submission by %s: %s", self.caller.email, e)
            return None
        except (ComplaintError, ValidationError, ValueError, TypeError, AttributeError) as e:
            logger.error("Error adding complaint: %s", e)
            return None
        self._schedule(complaint.id)
        logger.info("Complaint %s registered by %s", complaint.id, complaint.owner_email)
        return complaint

    async def create_from_conversation(self, summary: str, bot_context: str = "") -> Optional[ComplaintBase]:
        """File a complaint from a chat-bot summary. No enrichment is scheduled."""
        if not self.caller.is_authenticated:
            logger.error("User not authenticated")
            return None
        if self.caller.is_admin:
            logger.error("Only passengers can submit complaints via chatbot")
            return None
        if self.extraction is None:
            logger.error("No extraction service configured for chatbot complaints")
            return None
        try:
            extracted = await self.extraction.extract(summary, bot_context)
        except Exception as e:
            logger.error("Error extracting chatbot complaint: %s", e)
            return None
        try:
            fields = to_wire_keys(dict(extracted or {}))
            if not fields.get("description") or not fields.get("complaintArea"):
                raise ExtractionEmpty("Chat extraction gave no description or complaint area")
            if not fields.get("incidentDate"):
                fields["incidentDate"] = date.today().isoformat()
            complaint = build_complaint(
                fields, complaint_id=new_id(fields["complaintArea"]),
                owner_email=self.caller.email, source=ComplaintSource.CHATBOT)
            self._persist(complaint)
        except ExtractionEmpty as e:
            logger.info("%s", e)
            return None
        except (ComplaintError, ValidationError, ValueError, TypeError) as e:
            logger.error("Error adding chatbot complaint: %s", e)
            return None
        logger.info("Chatbot complaint %s registered by %s", complaint.id, complaint.owner_email)
        return complaint

    async def create_from_structured_input(self, fields: FieldMap) -> Optional[ComplaintBase]:
        """File a complaint from already-structured fields (chat function calls)."""
        if not self.caller.is_authenticated:
            logger.error("User not authenticated")
            return None
        try:
            self._require_author()
            data = to_wire_keys(dict(fields))
            data["description"] = data.get("description") or "No description provided"
            data["complaintArea"] = data.get("complaintArea") or "TRAIN"
            data["incidentDate"] = data.get("incidentDate") or date.today().isoformat()
            complaint = build_complaint(
                data, complaint_id=new_id(data["complaintArea"]),
                owner_email=self.caller.email, source=ComplaintSource.CHATBOT)
            self._persist(complaint)
        except AuthorizationFailure as e:
            logger.error("Rejected function-call complaint by %s: %s", self.caller.email, e)
            return None
        except (ComplaintError, ValidationError, ValueError, TypeError, AttributeError) as e:
            logger.error("Error adding function call complaint: %s", e)
            return None
        self._schedule(complaint.id)
        logger.info("Function-call complaint %s registered by %s", complaint.id, complaint.owner_email)
        return complaint

    # -- mutation ----------------------------------------------------------
    async def update(self, complaint_id: str, partial_fields: FieldMap) -> bool:
        try:
            current = self._require_member(complaint_id)
            self._persist(merge_fields(current, partial_fields))
        except (AuthorizationFailure, NotFound) as e:
            logger.warning("Update of %s refused: %s", complaint_id, e)
            return False
        except (ComplaintError, ValidationError, ValueError, TypeError) as e:
            logger.error("Error in update for %s: %s", complaint_id, e)
            return False
        return True

    async def delete(self, complaint_id: str) -> bool:
        try:
            self._require_member(complaint_id)
            self.repository.remove([complaint_id])
        except (AuthorizationFailure, NotFound) as e:
            logger.warning("Delete of %s refused: %s", complaint_id, e)
            return False
        except ComplaintError as e:
            logger.error("Error in delete for %s: %s", complaint_id, e)
            return False
        if self.enrichment is not None and self.enrichment.cancel(complaint_id):
            logger.info("Cancelled pending analysis for deleted complaint %s", complaint_id)
        self._complaints = [c for c in self._complaints if c.id != complaint_id]
        return True

    async def withdraw(self, complaint_id: str) -> bool:
        """Take a complaint back. The prior status is not checked."""
        try:
            current = self._require_member(complaint_id)
            if current.status not in WITHDRAWABLE_STATUSES:
                logger.warning("Withdrawing complaint %s from status %s", complaint_id, current.status.value)
            self._persist(current.model_copy(update={
                "status": Status.WITHDRAWN, "updated_at": touch(current.created_at, current.updated_at)}))
        except (AuthorizationFailure, NotFound) as e:
            logger.warning("Withdraw of %s refused: %s", complaint_id, e)
            return False
        except ComplaintError as e:
            logger.error("Error in withdraw for %s: %s", complaint_id, e)
            return False
        logger.info("Complaint %s withdrawn", complaint_id)
        return True

    async def resubmit(self, complaint_id: str, partial_fields: Optional[FieldMap] = None,
                       new_media_files: Optional[Iterable[MediaInput]] = None) -> bool:
        """Put a complaint back into the queue with edits and extra media."""
        try:
            current = self._require_member(complaint_id)
            new_media = encode_all(complaint_id, new_media_files)
            merged = merge_fields(current, partial_fields or {})
            self._persist(merged.model_copy(update={
                "status": Status.REGISTERED,
                "analysis": None,
                "media": current.media + new_media,
            }))
        except (AuthorizationFailure, NotFound) as e:
            logger.warning("Resubmit of %s refused: %s", complaint_id, e)
            return False
        except (ComplaintError, ValidationError, ValueError, TypeError) as e:
            logger.error("Error in resubmit for %s: %s", complaint_id, e)
            return False
        self._schedule(complaint_id)
        logger.info("Complaint %s resubmitted", complaint_id)
        return True

    async def override_status(self, complaint_id: str, status: Union[Status, str]) -> bool:
        """Operator escape hatch: set any status, bypassing the state machine."""
        try:
            if not self.caller.is_admin:
                raise AuthorizationFailure("Only administrators may override status")
            current = self._require_member(complaint_id)
            self._persist(current.model_copy(update={
                "status": Status(status), "updated_at": touch(current.created_at, current.updated_at)}))
        except (AuthorizationFailure, NotFound) as e:
            logger.warning("Status override of %s refused: %s", complaint_id, e)
            return False
        except (ComplaintError, ValueError) as e:
            logger.error("Error in status override for %s: %s", complaint_id, e)
            return False
        logger.info("Complaint %s status overridden to %s by %s", complaint_id, Status(status).value,
                    self.caller.email)
        return True
