"""
FastAPI surface for the eligibility ledger.

Mutating requests are signed by the calling account; see
``cloak.server.auth`` for the headers they carry.

Endpoints:
- POST /inputs/encrypt - Server-side encryption, development only (off by default)
- POST /users/register - Register encrypted attributes
- GET /users/{account} - Read a user record (handles only)
- POST /applications - Publish criteria
- GET /applications/{app_id} - Read criteria
- POST /applications/{app_id}/close - Close an application (creator only)
- POST /applications/{app_id}/submit - Apply and get the encrypted verdict
- GET /applications/{app_id}/results/{account} - Latest verdict handle
- POST /decrypt - User decryption through the gateway
"""
import base64
import binascii
import logging
from contextlib import asynccontextmanager
from typing import List, Optional, Union

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, model_validator

from cloak.config import Settings, build_fabric, configure_logging
from cloak.fabric.gateway import DecryptionGateway
from cloak.server.auth import RequestAuthenticator, SignedCaller
from cloak.server.ledger import EligibilityLedger
from cloak.shared import locations
from cloak.shared.errors import (
    ApplicationInactive,
    CloakError,
    InvalidArgument,
    InvalidInputProof,
    NotCreator,
    NotFound,
    NotRegistered,
    Unauthorized,
)
from cloak.shared.protocol import DecryptRequest, ExternalHandle, FheType, Handle

logger = logging.getLogger(__name__)

STATUS_CODES = {
    NotFound: 404,
    Unauthorized: 403,
    NotCreator: 403,
    InvalidInputProof: 400,
    InvalidArgument: 400,
    NotRegistered: 409,
    ApplicationInactive: 409,
}

DIGEST_PATTERN = r"^(0x)?[0-9a-f]{64}$"


# Pydantic models for API
class HandleModel(BaseModel):
    """Ciphertext handle reference."""
    handle: str = Field(..., pattern=DIGEST_PATTERN)
    fhe_type: FheType

    @classmethod
    def from_handle(cls, handle: Handle) -> "HandleModel":
        return cls(handle=str(handle), fhe_type=handle.fhe_type)

    def to_handle(self) -> Handle:
        return Handle(digest=_strip(self.handle), fhe_type=self.fhe_type)


class ExternalHandleModel(BaseModel):
    """Unverified client-encrypted input."""
    handle: str = Field(..., pattern=DIGEST_PATTERN)
    fhe_type: FheType
    index: int = Field(..., ge=0)

    def to_external(self) -> ExternalHandle:
        return ExternalHandle(digest=_strip(self.handle), fhe_type=self.fhe_type, index=self.index)


class EncryptInputsRequest(BaseModel):
    """Plaintext attributes to encrypt on the caller's behalf (development only)."""
    country: int = Field(..., ge=0)
    city: int = Field(..., ge=0)
    salary: int = Field(..., ge=0)
    birth_year: int = Field(..., ge=0)


class InputBundleModel(BaseModel):
    handles: List[ExternalHandleModel]
    proof_b64: str


class RegisterRequest(BaseModel):
    """Registration with encrypted country, city, salary, birth year."""
    username: str = Field(..., max_length=64)
    handles: List[ExternalHandleModel] = Field(..., min_length=4, max_length=4)
    proof_b64: str


class UserResponse(BaseModel):
    username: str
    country: HandleModel
    city: HandleModel
    salary: HandleModel
    birth_year: HandleModel
    registered: bool


class CreateApplicationRequest(BaseModel):
    """Criteria to publish. 0 means "no constraint" for every field."""
    country_id: int = Field(0, ge=0)
    city_id: int = Field(0, ge=0)
    min_salary: int = Field(0, ge=0)
    max_salary: int = Field(0, ge=0)
    min_birth_year: int = Field(0, ge=0)
    max_birth_year: int = Field(0, ge=0)

    @model_validator(mode="after")
    def check_consistency(self) -> "CreateApplicationRequest":
        if self.min_salary and self.max_salary and self.max_salary < self.min_salary:
            raise ValueError("max_salary must not be below min_salary")
        if self.min_birth_year and self.max_birth_year and self.max_birth_year < self.min_birth_year:
            raise ValueError("max_birth_year must not be below min_birth_year")
        if self.country_id and self.city_id and not locations.city_in_country(self.city_id, self.country_id):
            raise ValueError(f"city {self.city_id} is not in country {self.country_id}")
        return self


class ApplicationResponse(BaseModel):
    app_id: int
    creator: str
    active: bool
    country_id: int
    city_id: int
    min_salary: int
    max_salary: int
    min_birth_year: int
    max_birth_year: int


class DecryptRequestModel(BaseModel):
    """Signed user-decryption request."""
    account: str
    public_key_pem: str
    handles: List[HandleModel] = Field(..., min_length=1)
    signature_b64: str


class DecryptResponse(BaseModel):
    values: List[Union[bool, int]]


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    fabric: str
    ledger_address: str
    block: int
    next_app_id: int


def _strip(digest: str) -> str:
    return digest[2:] if digest.startswith("0x") else digest


def _b64decode(value: str, name: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail=f"{name} is not valid base64")


# Server state
class ServerState:
    """Server state container."""
    def __init__(self):
        self.settings: Optional[Settings] = None
        self.ledger: Optional[EligibilityLedger] = None
        self.gateway: Optional[DecryptionGateway] = None
        self.authenticator: Optional[RequestAuthenticator] = None


state = ServerState()


def _initialize(settings: Settings) -> None:
    fabric = build_fabric(settings)
    state.settings = settings
    state.ledger = EligibilityLedger(fabric, address=settings.ledger_address)
    state.gateway = DecryptionGateway(fabric, lambda: state.ledger.acl)
    state.authenticator = RequestAuthenticator(state.ledger.address)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize the ledger on startup unless one was injected."""
    if state.ledger is None:
        settings = Settings.from_env()
        configure_logging(settings.log_level)
        _initialize(settings)
    logger.info(
        "Ledger %s ready with %s fabric", state.ledger.address, state.ledger.fabric.name
    )
    yield
    logger.info("Server shutting down at block %d", state.ledger.block)


app = FastAPI(
    title="Cloak",
    description="Confidential eligibility matching API",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(CloakError)
async def cloak_error_handler(request: Request, exc: CloakError):
    status_code = STATUS_CODES.get(type(exc), 400)
    return JSONResponse(status_code=status_code, content={"error": exc.kind, "detail": exc.message})


def _ledger() -> EligibilityLedger:
    if state.ledger is None:
        raise HTTPException(status_code=500, detail="Server not initialized")
    return state.ledger


def signed_caller(
    x_account: str = Header(...),
    x_public_key: str = Header(...),
    x_nonce: int = Header(..., ge=0),
    x_signature: str = Header(...),
) -> SignedCaller:
    return SignedCaller(
        account=x_account,
        public_key_b64=x_public_key,
        nonce=x_nonce,
        signature_b64=x_signature,
    )


def _authenticate(caller: SignedCaller, action: str, *fields: object) -> str:
    if state.authenticator is None:
        raise HTTPException(status_code=500, detail="Server not initialized")
    return state.authenticator.verify(caller, action, *fields)


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    ledger = _ledger()
    return HealthResponse(
        status="healthy",
        fabric=ledger.fabric.name,
        ledger_address=ledger.address,
        block=ledger.block,
        next_app_id=ledger.next_app_id,
    )


@app.post("/inputs/encrypt", response_model=InputBundleModel)
def encrypt_inputs(request: EncryptInputsRequest, caller: SignedCaller = Depends(signed_caller)):
    """
    Encrypt attributes and return handles plus proof bound to the caller.

    The plaintexts reach the server, so this is only served when
    ``Settings.dev_encryption`` is set; clients normally encrypt with
    ``CryptoClient.encrypt_profile`` and post the bundle to /users/register.
    """
    if state.settings is None or not state.settings.dev_encryption:
        raise HTTPException(status_code=404, detail="Server-side encryption is disabled")
    account = _authenticate(
        caller, "encrypt", request.country, request.city, request.salary, request.birth_year
    )
    ledger = _ledger()
    bundle = ledger.fabric.encrypt_inputs(
        ledger.address,
        account,
        [
            (FheType.EUINT32, request.country),
            (FheType.EUINT32, request.city),
            (FheType.EUINT64, request.salary),
            (FheType.EUINT16, request.birth_year),
        ],
    )
    return InputBundleModel(
        handles=[
            ExternalHandleModel(handle=f"0x{h.digest}", fhe_type=h.fhe_type, index=h.index)
            for h in bundle.handles
        ],
        proof_b64=base64.b64encode(bundle.proof).decode("utf-8"),
    )


@app.post("/users/register")
def register_user(request: RegisterRequest, caller: SignedCaller = Depends(signed_caller)):
    """Register the caller's client-encrypted attributes."""
    externals = [h.to_external() for h in request.handles]
    account = _authenticate(
        caller, "register", request.username, *[e.digest for e in externals], request.proof_b64
    )
    proof = _b64decode(request.proof_b64, "proof_b64")
    _ledger().register(account, request.username, *externals, proof)
    return {"status": "registered", "account": account}


@app.get("/users/{account}", response_model=UserResponse)
def get_user(account: str):
    username, country, city, salary, birth_year, registered = _ledger().get_user(account)
    return UserResponse(
        username=username,
        country=HandleModel.from_handle(country),
        city=HandleModel.from_handle(city),
        salary=HandleModel.from_handle(salary),
        birth_year=HandleModel.from_handle(birth_year),
        registered=registered,
    )


@app.post("/applications")
def create_application(request: CreateApplicationRequest, caller: SignedCaller = Depends(signed_caller)):
    """Publish criteria; returns the new application id."""
    bounds = (
        request.country_id,
        request.city_id,
        request.min_salary,
        request.max_salary,
        request.min_birth_year,
        request.max_birth_year,
    )
    account = _authenticate(caller, "create_application", *bounds)
    return {"app_id": _ledger().create_application(account, *bounds)}


@app.get("/applications/next-id")
def next_app_id():
    return {"next_app_id": _ledger().next_app_id}


@app.get("/applications/{app_id}", response_model=ApplicationResponse)
def get_application(app_id: int):
    (creator, active, country_id, city_id,
     min_salary, max_salary, min_birth_year, max_birth_year) = _ledger().get_application(app_id)
    return ApplicationResponse(
        app_id=app_id,
        creator=creator,
        active=active,
        country_id=country_id,
        city_id=city_id,
        min_salary=min_salary,
        max_salary=max_salary,
        min_birth_year=min_birth_year,
        max_birth_year=max_birth_year,
    )


@app.post("/applications/{app_id}/close")
def close_application(app_id: int, caller: SignedCaller = Depends(signed_caller)):
    account = _authenticate(caller, "close_application", app_id)
    closed = _ledger().close_application(account, app_id)
    return {"app_id": app_id, "closed": closed}


@app.post("/applications/{app_id}/submit", response_model=HandleModel)
def submit_application(app_id: int, caller: SignedCaller = Depends(signed_caller)):
    """Apply to an application; the verdict is decryptable by the caller only."""
    account = _authenticate(caller, "submit_application", app_id)
    return HandleModel.from_handle(_ledger().submit_application(account, app_id))


@app.get("/applications/{app_id}/results/{account}", response_model=HandleModel)
def get_application_result(app_id: int, account: str):
    return HandleModel.from_handle(_ledger().get_application_result(app_id, account))


@app.post("/decrypt", response_model=DecryptResponse)
def user_decrypt(request: DecryptRequestModel):
    """Decrypt granted handles for a signed request."""
    if state.gateway is None:
        raise HTTPException(status_code=500, detail="Server not initialized")
    decrypt_request = DecryptRequest(
        account=request.account,
        public_key_pem=request.public_key_pem,
        handles=tuple(h.to_handle() for h in request.handles),
        signature=_b64decode(request.signature_b64, "signature_b64"),
    )
    return DecryptResponse(values=state.gateway.user_decrypt(decrypt_request))


def create_app(
    ledger: Optional[EligibilityLedger] = None,
    gateway: Optional[DecryptionGateway] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI app.

    For programmatic use in tests and demos.
    """
    if ledger is None:
        _initialize(settings or Settings())
    else:
        state.settings = settings or Settings(ledger_address=ledger.address)
        state.ledger = ledger
        state.gateway = gateway or DecryptionGateway(ledger.fabric, lambda: ledger.acl)
        state.authenticator = RequestAuthenticator(ledger.address)
    return app


def run_server(host: Optional[str] = None, port: Optional[int] = None):
    """Run the server directly."""
    import uvicorn
    settings = Settings.from_env()
    uvicorn.run(app, host=host or settings.host, port=port or settings.port)


if __name__ == "__main__":
    run_server()
