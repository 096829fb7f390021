import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .auth import AuthSystem, ReplayGuard, message_matches
from .config import Settings, configure_logging, get_settings
from .core import ResearchLedger, build_ledger
from .errors import LedgerError
from .models import Capability, Citation, LedgerEvent, Paper, RoyaltyPayment, normalize_principal

logger = logging.getLogger(__name__)

auth_system = AuthSystem()
router = APIRouter()


# Request models
class RoleRequest(BaseModel):
    principal: str

class PaperCreate(BaseModel):
    content_hash: str
    title: str
    metadata_uri: str = ""
    keywords: List[str] = []
    co_authors: List[str] = []

class CiteRequest(BaseModel):
    citing_paper_id: int
    cited_paper_id: int

class CitationRecordRequest(BaseModel):
    citing_paper_id: int
    cited_paper_id: int
    creator: str

class RoyaltyPayRequest(BaseModel):
    paper_id: int
    researcher: str
    reason: str
    amount: int

class BatchPayRequest(BaseModel):
    paper_ids: List[int]
    researchers: List[str]
    reasons: List[str]
    amounts: List[int]
    total_funds: Optional[int] = None

class FeeUpdateRequest(BaseModel):
    fee_basis_points: int

class TreasuryUpdateRequest(BaseModel):
    treasury: str

class SignMessageRequest(BaseModel):
    private_key: str
    message: str


# Dependencies
def get_ledger(request: Request) -> ResearchLedger:
    return request.app.state.ledger

def get_caller(
    request: Request,
    x_caller: str = Header(...),
    x_message: Optional[str] = Header(None),
    x_signature: Optional[str] = Header(None),
) -> str:
    """Resolve the calling principal, proven by a wallet signature unless disabled.

    The signed message must name this request's method and path, carry a
    fresh timestamp, and not have been accepted before.
    """
    settings: Settings = request.app.state.settings
    if settings.require_signatures:
        if not x_message or not x_signature:
            raise HTTPException(status_code=401, detail="Missing x-message/x-signature headers")
        if not message_matches(x_message, request.method, request.url.path, settings.signature_max_age_seconds):
            raise HTTPException(status_code=401, detail="Signed message does not match this request or has expired")
        if not auth_system.verify_signature(x_caller, x_message, x_signature):
            raise HTTPException(status_code=401, detail="Invalid caller signature")
        if not request.app.state.replay_guard.first_use(x_caller, x_message):
            raise HTTPException(status_code=401, detail="Signed message was already used")
    return normalize_principal(x_caller)


# Roles
@router.post("/roles/{capability}/grant")
def grant_role(capability: Capability, body: RoleRequest, caller: str = Depends(get_caller),
        ledger: ResearchLedger = Depends(get_ledger)):
    ledger.grant(capability, body.principal, caller)
    return {"success": True, "capability": capability.value, "principal": normalize_principal(body.principal)}

@router.post("/roles/{capability}/revoke")
def revoke_role(capability: Capability, body: RoleRequest, caller: str = Depends(get_caller),
        ledger: ResearchLedger = Depends(get_ledger)):
    ledger.revoke(capability, body.principal, caller)
    return {"success": True, "capability": capability.value, "principal": normalize_principal(body.principal)}

@router.get("/roles/{capability}/{principal}")
def has_role(capability: Capability, principal: str, ledger: ResearchLedger = Depends(get_ledger)):
    decision = ledger.roles.check(capability, principal)
    return {"capability": capability.value, "principal": decision.principal, "granted": decision.allowed}


# Papers
@router.post("/papers")
def register_paper(body: PaperCreate, caller: str = Depends(get_caller),
        ledger: ResearchLedger = Depends(get_ledger)):
    paper_id = ledger.register_paper(
        body.content_hash, body.title, body.metadata_uri, body.keywords, body.co_authors, caller
    )
    return {"success": True, "paper_id": paper_id}

@router.get("/papers", response_model=List[Paper])
def get_papers(ledger: ResearchLedger = Depends(get_ledger)):
    return ledger.registry.get_papers()

@router.post("/papers/cite")
def cite_paper(body: CiteRequest, caller: str = Depends(get_caller),
        ledger: ResearchLedger = Depends(get_ledger)):
    citation_id = ledger.cite_paper(body.citing_paper_id, body.cited_paper_id, caller)
    return {"success": True, "citation_id": citation_id}

@router.post("/papers/verify/{paper_id}")
def verify_paper(paper_id: int, caller: str = Depends(get_caller),
        ledger: ResearchLedger = Depends(get_ledger)):
    ledger.verify_paper(paper_id, caller)
    return {"success": True, "paper_id": paper_id}

@router.get("/papers/researcher/{address}")
def get_papers_by_researcher(address: str, ledger: ResearchLedger = Depends(get_ledger)):
    return {"papers": ledger.registry.get_papers_by_author(address)}

@router.get("/papers/keyword/{keyword}")
def get_papers_by_keyword(keyword: str, ledger: ResearchLedger = Depends(get_ledger)):
    return {"papers": ledger.registry.get_papers_by_keyword(keyword)}

@router.get("/papers/{paper_id}", response_model=Paper)
def get_paper(paper_id: int, ledger: ResearchLedger = Depends(get_ledger)):
    return ledger.registry.get_paper(paper_id)

@router.get("/papers/{paper_id}/co-authors/{principal}")
def is_co_author(paper_id: int, principal: str, ledger: ResearchLedger = Depends(get_ledger)):
    return {"paper_id": paper_id, "principal": normalize_principal(principal),
            "is_co_author": ledger.registry.is_co_author(paper_id, principal)}


# Citations
@router.post("/citations/record")
def record_citation(body: CitationRecordRequest, caller: str = Depends(get_caller),
        ledger: ResearchLedger = Depends(get_ledger)):
    citation_id = ledger.record_citation(body.citing_paper_id, body.cited_paper_id, body.creator, caller)
    return {"success": True, "citation_id": citation_id}

@router.post("/citations/verify/{citation_id}")
def verify_citation(citation_id: int, caller: str = Depends(get_caller),
        ledger: ResearchLedger = Depends(get_ledger)):
    ledger.verify_citation(citation_id, caller)
    return {"success": True, "citation_id": citation_id}

@router.get("/citations/paper/{paper_id}")
def get_citations_of(paper_id: int, ledger: ResearchLedger = Depends(get_ledger)):
    return {"paper_id": paper_id, "citations": ledger.citations.get_citations_of(paper_id)}

@router.get("/citations/cited-by/{paper_id}")
def get_references_of(paper_id: int, ledger: ResearchLedger = Depends(get_ledger)):
    return {"paper_id": paper_id, "citations": ledger.citations.get_references_of(paper_id)}

@router.get("/citations/count/{paper_id}")
def get_citation_count(paper_id: int, ledger: ResearchLedger = Depends(get_ledger)):
    return {"paper_id": paper_id, "count": ledger.citations.get_citation_count(paper_id)}

@router.get("/citations/verified-count/{paper_id}")
def get_verified_citation_count(paper_id: int, ledger: ResearchLedger = Depends(get_ledger)):
    return {"paper_id": paper_id, "count": ledger.citations.get_verified_citation_count(paper_id)}

@router.get("/citations/{citation_id}", response_model=Citation)
def get_citation(citation_id: int, ledger: ResearchLedger = Depends(get_ledger)):
    return ledger.citations.get_citation_details(citation_id)


# Royalties
@router.post("/royalties/pay")
def pay_royalty(body: RoyaltyPayRequest, caller: str = Depends(get_caller),
        ledger: ResearchLedger = Depends(get_ledger)):
    payment_id = ledger.pay_royalty(body.paper_id, body.researcher, body.reason, body.amount, caller)
    payment = ledger.royalties.get_payment_details(payment_id)
    return {"success": True, "payment_id": payment_id, "amount": payment.amount, "fee": payment.fee}

@router.post("/royalties/batch-pay")
def batch_pay_royalties(body: BatchPayRequest, caller: str = Depends(get_caller),
        ledger: ResearchLedger = Depends(get_ledger)):
    payment_ids = ledger.royalties.batch_pay_royalty_columns(
        body.paper_ids, body.researchers, body.reasons, body.amounts, caller, body.total_funds
    )
    return {"success": True, "payment_ids": payment_ids, "total_amount": sum(body.amounts)}

@router.post("/royalties/withdraw")
def withdraw_royalties(caller: str = Depends(get_caller), ledger: ResearchLedger = Depends(get_ledger)):
    amount = ledger.withdraw_royalties(caller)
    return {"success": True, "amount": amount}

@router.post("/royalties/fee")
def update_fee(body: FeeUpdateRequest, caller: str = Depends(get_caller),
        ledger: ResearchLedger = Depends(get_ledger)):
    ledger.update_fee_basis_points(body.fee_basis_points, caller)
    return {"success": True, "fee_basis_points": body.fee_basis_points}

@router.post("/royalties/treasury")
def update_treasury(body: TreasuryUpdateRequest, caller: str = Depends(get_caller),
        ledger: ResearchLedger = Depends(get_ledger)):
    ledger.update_treasury(body.treasury, caller)
    return {"success": True, "treasury": ledger.royalties.treasury}

@router.get("/royalties/balance/{address}")
def get_balance(address: str, ledger: ResearchLedger = Depends(get_ledger)):
    return {"address": normalize_principal(address), "balance": ledger.royalties.get_balance(address)}

@router.get("/royalties/paper/{paper_id}")
def get_paper_payments(paper_id: int, ledger: ResearchLedger = Depends(get_ledger)):
    return {"paper_id": paper_id, "payments": ledger.royalties.get_payments_for_paper(paper_id)}

@router.get("/royalties/researcher/{address}")
def get_researcher_payments(address: str, ledger: ResearchLedger = Depends(get_ledger)):
    return {"address": normalize_principal(address), "payments": ledger.royalties.get_payments_for_researcher(address)}

@router.get("/royalties/payment/{payment_id}", response_model=RoyaltyPayment)
def get_payment(payment_id: int, ledger: ResearchLedger = Depends(get_ledger)):
    return ledger.royalties.get_payment_details(payment_id)

@router.get("/royalties/total/{paper_id}")
def get_total_royalties(paper_id: int, ledger: ResearchLedger = Depends(get_ledger)):
    return {"paper_id": paper_id, "total": ledger.royalties.get_total_royalties_for_paper(paper_id)}


# Statistics
@router.get("/stats/network")
def get_network_stats(ledger: ResearchLedger = Depends(get_ledger)):
    return ledger.citations.get_network_stats()

@router.get("/stats/pagerank")
def get_pagerank(damping: float = 0.85, ledger: ResearchLedger = Depends(get_ledger)):
    return {str(paper_id): rank for paper_id, rank in ledger.citations.calculate_pagerank(damping=damping).items()}

@router.get("/stats/royalties")
def get_royalty_stats(ledger: ResearchLedger = Depends(get_ledger)):
    return ledger.royalties.get_ledger_stats()

@router.get("/events", response_model=List[LedgerEvent])
def get_events(name: Optional[str] = None, ledger: ResearchLedger = Depends(get_ledger)):
    return ledger.get_events(name)


# Developer tools
dev_router = APIRouter(prefix="/auth")

@dev_router.post("/generate-keys")
def generate_keys():
    return auth_system.generate_key_pair()

@dev_router.post("/sign")
def sign_message(request: SignMessageRequest):
    """Sign a message with a private key (local development only)."""
    try:
        signature = auth_system.sign_message(request.private_key, request.message)
    except (ValueError, TypeError) as e:
        logger.warning("Error in sign_message: %s", e)
        raise HTTPException(status_code=400, detail=str(e))
    return {"signature": signature}


async def ledger_error_handler(request: Request, exc: LedgerError):
    logger.warning("%s %s rejected: %s (%s)", request.method, request.url.path, exc.kind, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.kind, "detail": exc.detail})


def create_app(ledger: Optional[ResearchLedger] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(title=settings.app_name)
    app.state.settings = settings
    app.state.ledger = ledger or build_ledger(settings)
    # a message stays acceptable for max_age on either side of its timestamp
    app.state.replay_guard = ReplayGuard(2 * settings.signature_max_age_seconds)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(LedgerError, ledger_error_handler)
    app.include_router(router)
    if settings.dev_tools:
        app.include_router(dev_router)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.debug("Request: %s %s", request.method, request.url)
        response = await call_next(request)
        logger.debug("Response: %s %s -> %d", request.method, request.url.path, response.status_code)
        return response

    return app


def main() -> None:
    import uvicorn

    settings = get_settings()
    configure_logging(settings)
    uvicorn.run(create_app(settings=settings), host=settings.host, port=settings.port)
