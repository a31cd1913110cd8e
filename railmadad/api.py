# Rail Madad complaint service
# FastAPI + pydantic + OpenAI over a single-blob complaint store

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import Depends, FastAPI, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from . import config
from .ai import AnalysisService, ExtractionService
from .enrichment import EnrichmentPipeline
from .identifiers import is_valid_crn
from .lifecycle import ComplaintLifecycle
from .models import GUEST, Caller, ComplaintBase, MediaUpload, Role, Status
from .notifier import ChangeNotifier
from .store import ComplaintRepository, build_backend
from .views import summarize_view

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

if not config.JWT_SECRET or len(config.JWT_SECRET) < 32:
    raise RuntimeError(
        "FATAL: JWT_SECRET must be set in the environment and be at least 32 characters. "
        "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(48))\""
    )
JWT_EXPIRE_HOURS = 2

bearer_scheme = HTTPBearer(auto_error=False)

# ---------------------------------------------------------------------------
# Request Models
# ---------------------------------------------------------------------------
class ComplaintSubmission(BaseModel):
    """Form fields are passed through to the record; only media is typed here."""
    model_config = ConfigDict(extra="allow")
    media: List[MediaUpload] = Field(default_factory=list)

    def fields(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"media"})

class ComplaintEdit(BaseModel):
    model_config = ConfigDict(extra="allow")

class ResubmitRequest(ComplaintSubmission):
    pass

class ChatSubmission(BaseModel):
    summary: str = Field(..., max_length=5000)
    bot_response: str = Field("", max_length=5000)

class StatusOverride(BaseModel):
    status: Status

# ---------------------------------------------------------------------------
# App & Globals
# ---------------------------------------------------------------------------
repository: Optional[ComplaintRepository] = None
enrichment: Optional[EnrichmentPipeline] = None
extraction: Optional[ExtractionService] = None
notifier: Optional[ChangeNotifier] = None
# Service-wide view of every record, kept current by the change notifier
overview: Optional[ComplaintLifecycle] = None

OVERVIEW_CALLER = Caller(email="system@railmadad", role=Role.SUPER_ADMIN)

def startup_store(backend=None) -> None:
    global repository, enrichment, extraction, notifier, overview
    repository = ComplaintRepository(backend if backend is not None else build_backend())
    enrichment = EnrichmentPipeline(repository, AnalysisService())
    extraction = ExtractionService()
    overview = ComplaintLifecycle(repository, OVERVIEW_CALLER, enrichment=enrichment)
    notifier = ChangeNotifier(repository)
    notifier.watch(overview)
    logger.info("Complaint store ready (%s) | OpenAI model: %s",
                type(repository.backend).__name__, config.OPENAI_MODEL)

@asynccontextmanager
async def lifespan(app: FastAPI):
    startup_store()
    notifier.start()
    yield
    await notifier.stop()
    notifier.unwatch(overview)
    overview.close()
    await enrichment.shutdown()

app = FastAPI(title="Rail Madad Complaint Service", lifespan=lifespan)
limiter = Limiter(key_func=get_remote_address)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response

app.add_middleware(SecurityHeadersMiddleware)

# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------
def create_access_token(email: str, role: Role) -> str:
    to_encode = {"sub": email, "role": Role(role).value,
                 "exp": datetime.now(timezone.utc) + timedelta(hours=JWT_EXPIRE_HOURS)}
    return jwt.encode(to_encode, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)

async def get_optional_caller(
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> Caller:
    if credentials is None:
        return GUEST
    try:
        payload = jwt.decode(credentials.credentials, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
        return Caller(email=payload.get("sub"), role=payload.get("role"))
    except (JWTError, ValidationError):
        return GUEST

async def get_current_caller(caller: Caller = Depends(get_optional_caller)) -> Caller:
    if not caller.is_authenticated:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return caller

def _open_lifecycle(caller: Caller) -> ComplaintLifecycle:
    if repository is None:
        raise HTTPException(status_code=503, detail="Complaint store not ready")
    return ComplaintLifecycle(repository, caller, enrichment=enrichment, extraction=extraction)

def _refresh_overview(request: Request) -> None:
    # Writes made in this process are not external changes; pick them up here
    if overview is not None and request.method != "GET":
        overview.refresh()

async def get_lifecycle(request: Request, caller: Caller = Depends(get_optional_caller)):
    with _open_lifecycle(caller) as lifecycle:
        yield lifecycle
    _refresh_overview(request)

async def get_member_lifecycle(request: Request, caller: Caller = Depends(get_current_caller)):
    with _open_lifecycle(caller) as lifecycle:
        yield lifecycle
    _refresh_overview(request)

def complaint_or_404(lifecycle: ComplaintLifecycle, complaint_id: str) -> ComplaintBase:
    complaint = lifecycle.get_by_id(complaint_id)
    if complaint is None:
        raise HTTPException(status_code=404, detail="Complaint not found")
    return complaint

# ---------------------------------------------------------------------------
# COMPLAINT ENDPOINTS
# ---------------------------------------------------------------------------
@app.post("/complaints")
@limiter.limit("10/minute")
async def create_complaint(request: Request, submission: ComplaintSubmission,
                           lifecycle: ComplaintLifecycle = Depends(get_lifecycle)):
    if lifecycle.caller.is_admin:
        raise HTTPException(status_code=403, detail="Administrators cannot submit complaints")
    complaint = await lifecycle.create(submission.fields(), submission.media)
    if complaint is None:
        raise HTTPException(status_code=422, detail="Complaint could not be registered")
    return complaint.to_wire()

@app.post("/complaints/chat")
@limiter.limit("10/minute")
async def create_chat_complaint(request: Request, chat: ChatSubmission,
                                lifecycle: ComplaintLifecycle = Depends(get_member_lifecycle)):
    if lifecycle.caller.is_admin:
        raise HTTPException(status_code=403, detail="Only passengers can submit complaints via chatbot")
    complaint = await lifecycle.create_from_conversation(chat.summary, chat.bot_response)
    if complaint is None:
        raise HTTPException(status_code=422, detail="No complaint could be extracted from the conversation")
    return complaint.to_wire()

@app.post("/complaints/structured")
async def create_structured_complaint(edit: ComplaintEdit,
                                      lifecycle: ComplaintLifecycle = Depends(get_member_lifecycle)):
    if lifecycle.caller.is_admin:
        raise HTTPException(status_code=403, detail="Administrators cannot submit complaints")
    complaint = await lifecycle.create_from_structured_input(edit.model_dump())
    if complaint is None:
        raise HTTPException(status_code=422, detail="Complaint could not be registered")
    return complaint.to_wire()

@app.get("/complaints")
async def list_complaints(status: Optional[Status] = None,
                          lifecycle: ComplaintLifecycle = Depends(get_member_lifecycle)):
    complaints = lifecycle.complaints
    if status:
        complaints = [c for c in complaints if c.status == status]
    return [c.to_wire() for c in complaints]

@app.get("/complaints/summary")
async def complaint_summary(lifecycle: ComplaintLifecycle = Depends(get_member_lifecycle)):
    return summarize_view(lifecycle.complaints)

@app.get("/complaints/track/{complaint_id}")
@limiter.limit("10/minute")
async def track_complaint(request: Request, complaint_id: str):
    if not is_valid_crn(complaint_id):
        raise HTTPException(status_code=400, detail="Invalid complaint reference number")
    if repository is None:
        raise HTTPException(status_code=503, detail="Complaint store not ready")
    complaint = repository.get(complaint_id)
    if complaint is None:
        raise HTTPException(status_code=404, detail="Complaint not found")
    return {
        "id": complaint.id, "title": complaint.title, "status": complaint.status.value,
        "complaintArea": complaint.complaint_area, "assignedTo": complaint.assigned_to,
        "createdAt": complaint.created_at, "updatedAt": complaint.updated_at,
    }

@app.get("/complaints/{complaint_id}")
async def get_complaint(complaint_id: str, lifecycle: ComplaintLifecycle = Depends(get_member_lifecycle)):
    return complaint_or_404(lifecycle, complaint_id).to_wire()

@app.patch("/complaints/{complaint_id}")
async def update_complaint(complaint_id: str, edit: ComplaintEdit,
                           lifecycle: ComplaintLifecycle = Depends(get_member_lifecycle)):
    complaint_or_404(lifecycle, complaint_id)
    if not await lifecycle.update(complaint_id, edit.model_dump()):
        raise HTTPException(status_code=422, detail="Complaint could not be updated")
    return lifecycle.get_by_id(complaint_id).to_wire()

@app.delete("/complaints/{complaint_id}")
async def delete_complaint(complaint_id: str, lifecycle: ComplaintLifecycle = Depends(get_member_lifecycle)):
    complaint_or_404(lifecycle, complaint_id)
    if not await lifecycle.delete(complaint_id):
        raise HTTPException(status_code=500, detail="Complaint could not be deleted")
    return {"detail": f"Complaint '{complaint_id}' deleted"}

@app.post("/complaints/{complaint_id}/withdraw")
async def withdraw_complaint(complaint_id: str, lifecycle: ComplaintLifecycle = Depends(get_member_lifecycle)):
    complaint_or_404(lifecycle, complaint_id)
    if not await lifecycle.withdraw(complaint_id):
        raise HTTPException(status_code=500, detail="Complaint could not be withdrawn")
    return lifecycle.get_by_id(complaint_id).to_wire()

@app.post("/complaints/{complaint_id}/resubmit")
async def resubmit_complaint(complaint_id: str, submission: ResubmitRequest,
                             lifecycle: ComplaintLifecycle = Depends(get_member_lifecycle)):
    complaint_or_404(lifecycle, complaint_id)
    if not await lifecycle.resubmit(complaint_id, submission.fields(), submission.media):
        raise HTTPException(status_code=422, detail="Complaint could not be resubmitted")
    return lifecycle.get_by_id(complaint_id).to_wire()

@app.put("/complaints/{complaint_id}/status")
async def override_complaint_status(complaint_id: str, override: StatusOverride,
                                    lifecycle: ComplaintLifecycle = Depends(get_member_lifecycle)):
    if not lifecycle.caller.is_admin:
        raise HTTPException(status_code=403, detail="Insufficient permissions")
    complaint_or_404(lifecycle, complaint_id)
    if not await lifecycle.override_status(complaint_id, override.status):
        raise HTTPException(status_code=500, detail="Status could not be changed")
    return lifecycle.get_by_id(complaint_id).to_wire()

# ---------------------------------------------------------------------------
# HEALTH
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    return {"status": "healthy", "system": "Rail Madad Complaint Service",
            "complaints": len(overview.complaints) if overview else 0,
            "pending_analyses": len(enrichment.pending()) if enrichment else 0,
            "watching_changes": notifier.running if notifier else False,
            "timestamp": datetime.now(timezone.utc)}


def main():
    uvicorn.run(app, host="0.0.0.0", port=8000)

if __name__ == "__main__":
    main()
